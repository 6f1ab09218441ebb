"""
Tests for the unit dependency graph.

Tests cover:
- Topological ordering and dependency levels
- Cycle detection and reverse edge rejection
- Required input validation
- Peering address range validation
"""

import pytest

from peerstack.errors import (
    CycleError,
    PeeringOverlapError,
    StructuralError,
    UnitStateError,
)
from peerstack.graph.builder import DeploymentGraph
from peerstack.graph.models import Edge, LiteralValue, MaterializeSlot, UnitStatus


@pytest.fixture
def graph(make_unit):
    """Diamond: a -> b, a -> c, b -> d, c -> d."""
    graph = DeploymentGraph("diamond")
    for unit_id in ("a", "b", "c", "d"):
        graph.add_unit(make_unit(unit_id))
    graph.connect("a", "out", "b", "in")
    graph.connect("a", "out", "c", "in")
    graph.connect("b", "out", "d", "left")
    graph.connect("c", "out", "d", "right")
    return graph


class TestTopologicalOrder:
    """Test ordering of units."""

    def test_every_producer_precedes_its_consumer(self, graph):
        """Test that each edge points forward in the computed order."""
        order = graph.topological_order()

        assert sorted(order) == ["a", "b", "c", "d"]
        for edge in graph.edges:
            assert order.index(edge.from_unit) < order.index(edge.to_unit)

    def test_levels_group_independent_units(self, graph):
        """Test that units without edges between them share a level."""
        assert graph.levels() == [["a"], ["b", "c"], ["d"]]

    def test_order_is_deterministic(self, make_unit):
        """Test that independent units keep insertion order."""
        graph = DeploymentGraph()
        for unit_id in ("z", "y", "x"):
            graph.add_unit(make_unit(unit_id))

        assert graph.topological_order() == ["z", "y", "x"]

    def test_ordering_edge_carries_no_value(self, make_unit):
        """Test depends_on orders units without wiring an input."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("first"))
        graph.add_unit(make_unit("second"))

        edge = graph.depends_on("second", "first")

        assert edge.is_ordering
        assert graph.topological_order() == ["first", "second"]

    def test_transitive_dependents(self, graph):
        """Test the downstream closure of a unit."""
        assert graph.transitive_dependents("b") == {"d"}
        assert graph.transitive_dependents("a") == {"b", "c", "d"}
        assert graph.ancestors("d") == {"a", "b", "c"}


class TestCycles:
    """Test cycle detection."""

    def test_reverse_edge_rejected_when_connecting(self, graph):
        """Test that an edge back to an ancestor is rejected immediately."""
        with pytest.raises(StructuralError, match="Reverse edge rejected"):
            graph.connect("d", "out", "a", "feedback")

        assert len(graph.edges) == 4

    def test_reverse_rule_rejected(self, graph):
        """Test that a rule pointing at a not-yet-existing unit is rejected."""
        with pytest.raises(StructuralError, match="Reverse rule rejected"):
            graph.connect("c", "security_group_id", "a", "ingress", rule=True)

    def test_self_edge_is_a_cycle(self, make_unit):
        """Test that a unit cannot feed itself."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("loop"))

        with pytest.raises(CycleError) as exc_info:
            graph.connect("loop", "out", "loop", "in")

        assert exc_info.value.units == ["loop"]

    def test_cycle_added_without_checks_fails_validation(self, make_unit):
        """Test that validate names the units of a cycle."""
        graph = DeploymentGraph()
        for unit_id in ("a", "b", "c"):
            graph.add_unit(make_unit(unit_id))
        graph.add_edge(Edge(from_unit="a", from_output="x", to_unit="b", to_input="x"))
        graph.add_edge(Edge(from_unit="b", from_output="x", to_unit="c", to_input="x"))
        graph.add_edge(Edge(from_unit="c", from_output="x", to_unit="b", to_input="y"))

        with pytest.raises(CycleError) as exc_info:
            graph.validate()

        assert exc_info.value.units == ["b", "c"]
        assert "Circular dependency" in str(exc_info.value)


class TestValidation:
    """Test structural validation."""

    def test_duplicate_unit(self, make_unit):
        """Test that unit ids are unique."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("a"))

        with pytest.raises(StructuralError, match="Duplicate unit"):
            graph.add_unit(make_unit("a"))

    def test_unknown_unit_in_edge(self, make_unit):
        """Test that edges must reference known units."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("a"))

        with pytest.raises(StructuralError, match="Unknown unit"):
            graph.connect("a", "out", "ghost", "in")

    def test_missing_required_input(self, make_unit):
        """Test that an unwired required input is reported."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("a", required_inputs=["vpc_id", "name"]))

        with pytest.raises(StructuralError, match="missing required inputs: vpc_id, name"):
            graph.validate()

    def test_required_input_satisfied_by_edge_literal_or_slot(self, make_unit):
        """Test the three ways a required input can be provided."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("producer"))
        graph.add_unit(
            make_unit(
                "consumer",
                inputs={"name": LiteralValue(value="web")},
                required_inputs=["vpc_id", "name", "secret_arn"],
                materialize={"secret_arn": MaterializeSlot(secret_name="app/secret")},
            )
        )
        graph.connect("producer", "vpc_id", "consumer", "vpc_id")

        assert graph.validate() == ["producer", "consumer"]

    def test_empty_literal_does_not_satisfy_required_input(self, make_unit):
        """Test that an empty literal counts as missing."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("a", inputs={"name": LiteralValue(value="")}, required_inputs=["name"]))

        with pytest.raises(StructuralError, match="name"):
            graph.validate()

    def test_input_wired_twice(self, make_unit):
        """Test that one input cannot be fed by two edges."""
        graph = DeploymentGraph()
        for unit_id in ("a", "b", "c"):
            graph.add_unit(make_unit(unit_id))
        graph.connect("a", "out", "c", "in")
        graph.connect("b", "out", "c", "in")

        with pytest.raises(StructuralError, match="fed by both"):
            graph.validate()

    def test_input_set_and_wired(self, make_unit):
        """Test that a literal input cannot also be wired."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("a"))
        graph.add_unit(make_unit("b", inputs={"in": LiteralValue(value=1)}))
        graph.connect("a", "out", "b", "in")

        with pytest.raises(StructuralError, match="set directly"):
            graph.validate()


class TestPeeringValidation:
    """Test address range checks on peered networks."""

    def _peered_graph(self, make_unit, primary_region, secondary_region, left, right):
        graph = DeploymentGraph()
        graph.add_unit(make_unit("left", primary_region, inputs={"cidr": LiteralValue(value=left)}))
        graph.add_unit(
            make_unit("right", secondary_region, inputs={"cidr": LiteralValue(value=right)})
        )
        graph.add_unit(make_unit("peering", primary_region))
        graph.depends_on("peering", "left")
        graph.depends_on("peering", "right")
        graph.add_peering("left", "right", "peering")
        return graph

    def test_disjoint_ranges_pass(self, make_unit, primary_region, secondary_region):
        """Test 10.0.0.0/22 and 10.0.5.0/22 can be peered."""
        graph = self._peered_graph(
            make_unit, primary_region, secondary_region, "10.0.0.0/22", "10.0.5.0/22"
        )

        assert graph.validate()[-1] == "peering"

    def test_overlapping_ranges_fail(self, make_unit, primary_region, secondary_region):
        """Test 10.0.0.0/22 and 10.0.2.0/22 are rejected before peering."""
        graph = self._peered_graph(
            make_unit, primary_region, secondary_region, "10.0.0.0/22", "10.0.2.0/22"
        )

        with pytest.raises(PeeringOverlapError, match="overlapping"):
            graph.validate()

    def test_peering_unit_must_follow_both_networks(
        self, make_unit, primary_region, secondary_region
    ):
        """Test the peering unit is ordered after both peered units."""
        graph = DeploymentGraph()
        graph.add_unit(make_unit("left", primary_region, inputs={"cidr": "10.0.0.0/22"}))
        graph.add_unit(make_unit("right", secondary_region, inputs={"cidr": "10.0.5.0/22"}))
        graph.add_unit(make_unit("peering", primary_region))
        graph.depends_on("peering", "left")
        graph.add_peering("left", "right", "peering")

        with pytest.raises(StructuralError, match="must be ordered after right"):
            graph.validate()


class TestUnitLifecycle:
    """Test unit status transitions."""

    def test_applied_unit_is_terminal(self, make_unit):
        """Test an applied unit cannot be applied or failed again."""
        unit = make_unit("net")
        unit.mark_applied({"cidr": "10.0.0.0/22"}, {})

        assert unit.status == UnitStatus.APPLIED
        assert unit.applied_at is not None
        with pytest.raises(UnitStateError, match="already applied"):
            unit.mark_applied({"cidr": "10.0.4.0/22"}, {})
        with pytest.raises(UnitStateError):
            unit.mark_failed("late failure")
        assert unit.outputs == {"cidr": "10.0.0.0/22"}

    def test_skipped_failure(self, make_unit):
        """Test a dependent failed without being applied is marked skipped."""
        unit = make_unit("app")
        unit.mark_failed("Upstream unit net failed", skipped=True)

        assert unit.status == UnitStatus.FAILED
        assert unit.skipped
        assert unit.is_terminal

    def test_provisioned_unit_needs_teardown_after_failure(self, make_unit):
        """Test a unit whose resources exist still needs teardown once failed."""
        unit = make_unit("peering")
        unit.mark_provisioned({"peering_connection_id": "pcx-1"}, {})

        assert not unit.is_terminal
        assert unit.needs_teardown
        unit.mark_failed("effect failed")

        assert unit.status == UnitStatus.FAILED
        assert unit.needs_teardown
        assert not make_unit("routes").needs_teardown
