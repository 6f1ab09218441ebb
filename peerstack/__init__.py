"""
Multi-region peered deployment orchestration.

Builds the graph of deployable units spanning a primary and a secondary
region, applies it through a resource engine in dependency order, and
issues the out-of-band control-plane calls the engine cannot express.
"""

__version__ = "0.1.0"
