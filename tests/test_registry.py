"""
Unit tests for ProviderRegistry selection policy
"""
import pytest

from action_orchestrator.errors import NoProviderAvailable
from action_orchestrator.models import ActionKind


class TestSelection:
    """Deterministic provider selection"""

    @pytest.mark.parametrize("order", [("alpha", "beta"), ("beta", "alpha")])
    def test_fewest_errors_wins_regardless_of_order(self, registry, make_provider, order):
        providers = {name: make_provider(name) for name in order}
        providers["beta"].error_count = 1
        for name in order:
            registry.register(providers[name])

        for _ in range(3):
            assert registry.select_provider(ActionKind.VIEWS) is providers["alpha"]

    def test_longest_idle_breaks_error_ties(self, registry, make_provider, clock):
        recent = make_provider("recent")
        idle = make_provider("idle")
        recent.last_action_time = clock() - 10
        idle.last_action_time = clock() - 600
        registry.register(recent)
        registry.register(idle)

        assert registry.select_provider(ActionKind.VIEWS) is idle

    def test_full_tie_resolves_to_registration_order(self, registry, make_provider):
        first = make_provider("first")
        second = make_provider("second")
        registry.register(first)
        registry.register(second)

        assert registry.select_provider(ActionKind.VIEWS) is first

    def test_unavailable_and_rate_limited_are_skipped(self, registry, make_provider, clock):
        tripped = make_provider("tripped")
        tripped.is_available = False
        busy = make_provider("busy", between_actions=30)
        busy.last_action_time = clock() - 5
        ready = make_provider("ready", max_errors=5)
        ready.error_count = 2
        for provider in (tripped, busy, ready):
            registry.register(provider)

        assert registry.select_provider(ActionKind.VIEWS) is ready

    def test_unsupported_kind_is_skipped(self, registry, make_provider):
        registry.register(make_provider("likes_only", supported={ActionKind.LIKES}))

        assert registry.select_provider(ActionKind.VIEWS) is None
        assert registry.select_provider(ActionKind.LIKES).name == "likes_only"

    def test_require_provider_raises_when_empty(self, registry):
        with pytest.raises(NoProviderAvailable, match="no available providers"):
            registry.require_provider(ActionKind.VIEWS)


class TestRegistration:
    def test_duplicate_name_rejected(self, registry, make_provider):
        registry.register(make_provider("alpha"))

        with pytest.raises(ValueError):
            registry.register(make_provider("alpha"))

    def test_lookup_and_names(self, registry, make_provider):
        registry.register(make_provider("alpha"))
        registry.register(make_provider("beta"))

        assert registry.names() == ["alpha", "beta"]
        assert registry.get("beta").name == "beta"
        assert registry.get("gamma") is None
        assert registry.get(None) is None

    def test_reset_all(self, registry, make_provider):
        providers = [make_provider("alpha"), make_provider("beta")]
        for provider in providers:
            provider.is_available = False
            provider.error_count = 3
            registry.register(provider)

        registry.reset_all()

        assert all(provider.is_available for provider in providers)
        assert registry.get_stats()["alpha"]["error_count"] == 0
