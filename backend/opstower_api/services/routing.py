"""Routing engine - selects a payment gateway from preference and health."""

import logging
from typing import Optional

from opstower_shared.models import Provider
from opstower_api.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger("opstower.routing")


class RoutingEngine:

    def __init__(
        self,
        breakers: dict[Provider, CircuitBreaker],
        priority: list[Provider],
        default_provider: Provider,
    ):
        self.breakers = breakers
        self.priority = [p for p in priority if p in breakers]
        self.default_provider = default_provider

    def is_available(self, provider: Provider) -> bool:
        cb = self.breakers.get(provider)
        if cb is None:
            return False
        return cb.can_execute()

    def select_provider(self, preferred_provider: Optional[Provider] = None) -> Provider:
        # 1. Explicit preference, if its circuit allows calls
        if preferred_provider is not None:
            if self.is_available(preferred_provider):
                return preferred_provider
            logger.warning(f"Preferred provider {preferred_provider.value} unavailable, falling back")

        # 2. Configured priority order
        for provider in self.priority:
            if provider == preferred_provider:
                continue
            if self.is_available(provider):
                logger.info(f"Routing to {provider.value} by priority")
                return provider

        # 3. Everything reports unavailable: degrade to the configured default
        logger.error(
            f"No provider reports available, using default {self.default_provider.value}"
        )
        return self.default_provider
