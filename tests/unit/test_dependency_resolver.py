"""
Unit tests for the dependency resolver.
"""
import pytest

from devtopo.errors import CircularDependency, ConfigurationError, MissingDependency
from devtopo.RUNNERS.dependency_resolver import DependencyResolver


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_dependencies_start_first(self, make_service):
        """Test that every dependency precedes its dependents."""
        configs = [
            make_service("web", depends_on=["api"]),
            make_service("api", depends_on=["db", "cache"]),
            make_service("db"),
            make_service("cache"),
        ]
        order = DependencyResolver().resolve_order(configs)
        assert sorted(order) == ["api", "cache", "db", "web"]
        for config in configs:
            for dep in config.depends_on:
                assert order.index(dep) < order.index(config.name)

    def test_unconstrained_groups_keep_input_order(self, make_service):
        configs = [make_service("b"), make_service("a"), make_service("c")]
        assert DependencyResolver().resolve_order(configs) == ["b", "a", "c"]

    def test_healthy_edge_orders_and_reverses(self, make_service):
        """Test A, B(depends on A healthy) -> start [A, B], stop [B, A]."""
        configs = [
            make_service("B", depends_on={"A": {"condition": "healthy"}}),
            make_service("A"),
        ]
        resolver = DependencyResolver()
        assert resolver.resolve_order(configs) == ["A", "B"]
        assert resolver.shutdown_order(configs) == ["B", "A"]

    def test_shutdown_order_is_exact_reverse(self, make_service):
        configs = [
            make_service("front", depends_on=["left", "right"]),
            make_service("left", depends_on=["base"]),
            make_service("right", depends_on=["base"]),
            make_service("base"),
        ]
        resolver = DependencyResolver()
        assert resolver.shutdown_order(configs) == list(reversed(resolver.resolve_order(configs)))

    def test_cycle_is_rejected(self, make_service):
        """Test that A -> B -> A raises CircularDependency naming a group on the cycle."""
        configs = [
            make_service("A", depends_on=["B"]),
            make_service("B", depends_on=["A"]),
        ]
        with pytest.raises(CircularDependency) as exc_info:
            DependencyResolver().resolve_order(configs)
        assert exc_info.value.group in ("A", "B")
        assert "Circular dependency" in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self, make_service):
        with pytest.raises(CircularDependency) as exc_info:
            DependencyResolver().resolve_order([make_service("loop", depends_on=["loop"])])
        assert exc_info.value.group == "loop"

    def test_longer_cycle_behind_acyclic_prefix(self, make_service):
        configs = [
            make_service("entry", depends_on=["x"]),
            make_service("x", depends_on=["y"]),
            make_service("y", depends_on=["z"]),
            make_service("z", depends_on=["x"]),
        ]
        with pytest.raises(CircularDependency) as exc_info:
            DependencyResolver().resolve_order(configs)
        assert exc_info.value.group in ("x", "y", "z")

    def test_missing_dependency_is_rejected(self, make_service):
        with pytest.raises(MissingDependency) as exc_info:
            DependencyResolver().resolve_order([make_service("web", depends_on=["cache"])])
        assert exc_info.value.group == "web"
        assert exc_info.value.ref == "cache"

    def test_duplicate_names_are_rejected(self, make_service):
        with pytest.raises(ConfigurationError):
            DependencyResolver().resolve_order([make_service("db"), make_service("db")])

    def test_empty_batch(self):
        assert DependencyResolver().resolve_order([]) == []
