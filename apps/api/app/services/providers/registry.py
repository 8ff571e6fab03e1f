"""Explicit ProviderType -> ticket provider registry."""

from __future__ import annotations

import logging
from typing import Callable

from app.db.enums import ProviderType
from app.services.providers.base import TicketProvider
from app.services.providers.github import GitHubTicketProvider
from app.services.providers.gitlab import GitLabTicketProvider
from app.services.providers.jira import JiraTicketProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], TicketProvider]


class ProviderRegistry:
    """Resolves provider clients by type; unknown types resolve to None."""

    def __init__(self, factories: dict[ProviderType, ProviderFactory] | None = None):
        self._factories: dict[ProviderType, ProviderFactory] = dict(factories or {})
        self._instances: dict[ProviderType, TicketProvider] = {}

    def is_supported(self, provider_type: ProviderType) -> bool:
        return provider_type in self._factories

    def get(self, provider_type: ProviderType) -> TicketProvider | None:
        if not self.is_supported(provider_type):
            logger.debug("No ticket provider registered for %s", provider_type)
            return None
        if provider_type not in self._instances:
            self._instances[provider_type] = self._factories[provider_type]()
        return self._instances[provider_type]


def build_default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        {
            ProviderType.JIRA: JiraTicketProvider,
            ProviderType.GITHUB: GitHubTicketProvider,
            ProviderType.GITLAB: GitLabTicketProvider,
        }
    )


default_registry = build_default_registry()
