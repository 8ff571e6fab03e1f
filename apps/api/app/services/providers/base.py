"""Ticket provider abstraction.

One ``TicketProvider`` per external tracker. Providers return plain
dataclasses; mapping to API schemas happens in the ticket services.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from app.core.config import settings
from app.db.enums import ProviderType
from app.db.models import Integration
from app.services.http_service import request_with_retries
from app.services.ticket_exceptions import ProviderFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderComment:
    """Comment as returned by a provider."""

    id: str
    author: str
    content: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class ExternalTicket:
    """Provider-owned view of a ticket."""

    integration_id: Any
    external_ticket_id: str
    title: str
    description: str
    status_name: str
    status_color: str
    priority_name: str
    priority_color: str
    priority_value: int
    external_url: str
    comments: list[ProviderComment] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderPage:
    """One page from a provider plus its continuation signal."""

    tickets: list[ExternalTicket]
    is_last: bool
    next_page_token: str | None


@dataclass(frozen=True)
class CreatedIssue:
    """Result of creating an issue upstream.

    ``issue_key`` is the id the provider lists the issue under in its feed.
    """

    issue_key: str
    issue_url: str
    issue_id: str


class TicketProvider(ABC):
    """Abstract base class for ticket providers."""

    provider_type: ProviderType

    @abstractmethod
    async def fetch_tickets(
        self,
        integration: Integration,
        start_at: int = 0,
        max_results: int = 50,
        page_token: str | None = None,
    ) -> ProviderPage:
        """Fetch one page of tickets.

        ``page_token`` is the cursor this provider returned last time;
        ``is_last`` comes from the provider's explicit continuation signal.
        """

    @abstractmethod
    async def get_ticket_by_id(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        """Fetch a single ticket, or None when the provider has no such ticket."""

    @abstractmethod
    async def add_comment(
        self, integration: Integration, external_ticket_id: str, content: str, author: str
    ) -> ProviderComment:
        """Post a comment on an external ticket."""

    @abstractmethod
    async def create_issue(
        self, integration: Integration, summary: str, description: str, issue_type: str
    ) -> CreatedIssue:
        """Create a new issue upstream."""


class HttpTicketProvider(TicketProvider):
    """Shared httpx plumbing for REST-based providers."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        # Tests inject httpx.MockTransport here
        self._transport = transport

    def _client(self, *, base_url: str, headers: dict[str, str], auth=None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            auth=auth,
            timeout=settings.PROVIDER_HTTP_TIMEOUT,
            transport=self._transport,
        )

    async def _send(
        self,
        request_fn: Callable[[], Awaitable[httpx.Response]],
        *,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Run a request with retries; non-2xx becomes ProviderFetchError."""
        name = self.provider_type.value
        try:
            response = await request_with_retries(request_fn)
        except httpx.HTTPError as exc:
            raise ProviderFetchError(name, f"{exc.__class__.__name__}: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            raise ProviderFetchError(
                name, f"HTTP {response.status_code} for {response.request.method} {response.request.url.path}"
            )
        return response

    def _json(self, response: httpx.Response):
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderFetchError(self.provider_type.value, "malformed JSON response") from exc


# =============================================================================
# Page-number windows
# =============================================================================

PageFetcher = Callable[[int, int], Awaitable[tuple[list[Any], bool]]]


async def fetch_offset_window(
    fetch_page: PageFetcher, offset: int, count: int
) -> tuple[list[Any], bool]:
    """
    Read ``count`` items starting at item ``offset`` from a 1-indexed,
    page-number API.

    ``fetch_page(page, per_page)`` returns the page's items and whether the
    API advertised a next page. Budgets change between feed pages, so the
    cursor is an item offset rather than a page number; an unaligned offset
    costs at most one extra request.

    Returns the items and whether the window reached the end of the data.
    """
    per_page = max(count, 1)
    page = offset // per_page + 1
    skip = offset % per_page

    items, has_next = await fetch_page(page, per_page)
    window = list(items[skip:])
    if skip and has_next and len(window) < count:
        more, has_next = await fetch_page(page + 1, per_page)
        window.extend(more)

    taken = window[:count]
    is_last = not has_next and len(window) <= count
    return taken, is_last


def parse_offset_token(page_token: str | None, start_at: int = 0) -> int:
    if not page_token:
        return start_at
    try:
        return max(int(page_token), 0)
    except ValueError:
        logger.warning("Ignoring malformed provider page token %r", page_token)
        return start_at


# =============================================================================
# Label-based priority (GitHub / GitLab)
# =============================================================================

_LABEL_PRIORITY_KEYWORDS = ("priority", "urgent", "critical", "high", "medium", "low")


def priority_from_labels(labels: list[str]) -> tuple[str, str, int]:
    """Return (name, color, value) on the internal 1..4 scale from issue labels."""
    label = next(
        (name for name in labels if any(k in name.lower() for k in _LABEL_PRIORITY_KEYWORDS)),
        "Medium",
    )
    lowered = label.lower()
    if "critical" in lowered or "urgent" in lowered:
        return label, "bg-red-100 text-red-800", 4
    if "high" in lowered:
        return label, "bg-orange-100 text-orange-800", 3
    if "low" in lowered:
        return label, "bg-green-100 text-green-800", 1
    return label, "bg-yellow-100 text-yellow-800", 2


def state_color(state: str) -> str:
    lowered = (state or "").lower()
    if lowered in ("open", "opened"):
        return "bg-blue-100 text-blue-800"
    if lowered == "closed":
        return "bg-red-100 text-red-800"
    return "bg-gray-100 text-gray-800"
