"""External ticket providers."""

from app.services.providers.base import (
    CreatedIssue,
    ExternalTicket,
    ProviderComment,
    ProviderPage,
    TicketProvider,
)
from app.services.providers.registry import ProviderRegistry, build_default_registry

__all__ = [
    "CreatedIssue",
    "ExternalTicket",
    "ProviderComment",
    "ProviderPage",
    "ProviderRegistry",
    "TicketProvider",
    "build_default_registry",
]
