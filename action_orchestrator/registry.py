"""
Provider Registry and Selection Policy

Holds registered providers in registration order and picks one eligible
provider per request: fewest consecutive errors first, then the provider
idle the longest, then registration order.
"""

from typing import Any, Dict, List, Optional

import structlog

from .errors import NoProviderAvailable
from .models import ActionKind
from .providers import BaseProvider


class ProviderRegistry:
    """Registered execution providers keyed by name"""

    def __init__(self):
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.providers: Dict[str, BaseProvider] = {}

    def register(self, provider: BaseProvider) -> None:
        if provider.name in self.providers:
            raise ValueError(f"Provider {provider.name} is already registered")

        self.providers[provider.name] = provider
        self.logger.info(
            "Provider registered",
            provider=provider.name,
            provider_count=len(self.providers),
        )

    def get(self, name: Optional[str]) -> Optional[BaseProvider]:
        if name is None:
            return None
        return self.providers.get(name)

    def names(self) -> List[str]:
        return list(self.providers)

    def select_provider(self, action_kind: ActionKind) -> Optional[BaseProvider]:
        """
        Pick the eligible provider for an action.

        Args:
            action_kind: Requested action

        Returns:
            Selected provider, or None when nothing is eligible
        """
        candidates = [
            provider
            for provider in self.providers.values()
            if provider.supports(action_kind) and provider.check_availability()
        ]

        if not candidates:
            self.logger.warning(
                "No available providers found", action_kind=action_kind.value
            )
            return None

        # Longest idle == oldest last_action_time. min() keeps the first of
        # equal keys, so full ties resolve to registration order.
        return min(
            candidates,
            key=lambda provider: (provider.error_count, provider.last_action_time),
        )

    def require_provider(self, action_kind: ActionKind) -> BaseProvider:
        provider = self.select_provider(action_kind)
        if provider is None:
            raise NoProviderAvailable()
        return provider

    def reset_all(self) -> None:
        for provider in self.providers.values():
            provider.reset_availability()
        self.logger.info("All providers reset", provider_count=len(self.providers))

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: provider.get_stats() for name, provider in self.providers.items()}
