"""
Configuration management for peerstack.

This module provides centralized configuration management using Pydantic
for type safety, validation, and environment-based settings.
"""

from .settings import AppSettings, DeploymentConfig, get_settings, reload_settings

__all__ = ["get_settings", "reload_settings", "AppSettings", "DeploymentConfig"]
