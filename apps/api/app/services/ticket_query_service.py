"""Ticket feed queries: the internal-then-external page walk and single reads.

A feed page is drawn in two phases. The internal phase pages through the
workspace's pure internal tickets; once those run short, the leftover
budget of the same page is filled from the workspace's tracker
integrations and every later page stays in the external phase. The
position is carried in an opaque page token (see ``page_token``).
"""

from __future__ import annotations

import logging
import uuid
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import SOURCE_INTERNAL, PagePhase
from app.db.models import Integration, Ticket
from app.schemas.tickets import (
    CommentRead,
    TicketPageResponse,
    TicketPriorityRead,
    TicketRead,
    TicketStatusRead,
)
from app.services import (
    external_ticket_service,
    integration_service,
    page_token,
    ticket_domain,
    ticket_ref,
    ticket_repository,
    workspace_service,
)
from app.services.page_token import PageState
from app.services.providers.base import ExternalTicket
from app.services.providers.registry import ProviderRegistry
from app.services.sentiment_service import NEUTRAL_SCORE, SentimentAnalyzer, SentimentRequest
from app.services.ticket_exceptions import (
    IntegrationNotFoundError,
    InvalidTicketOperationError,
    TicketNotFoundError,
)

logger = logging.getLogger(__name__)

# Provider status/priority names get stable ids so repeated reads match
_PROVIDER_VALUE_NAMESPACE = uuid.UUID("8c6f6a52-2f4e-4a57-9a55-3c1b6f0b7d21")


def _provider_value_id(kind: str, name: str) -> UUID:
    return uuid.uuid5(_PROVIDER_VALUE_NAMESPACE, f"{kind}:{name.strip().lower()}")


# =============================================================================
# Mapping
# =============================================================================


def _local_comments(ticket: Ticket | None) -> list[CommentRead]:
    if ticket is None:
        return []
    return [
        CommentRead(id=str(c.id), author=c.author, content=c.content, timestamp=c.created_at)
        for c in ticket.comments
    ]


def _status_read(ticket: Ticket | None) -> TicketStatusRead | None:
    if ticket is None or ticket.status is None:
        return None
    return TicketStatusRead.model_validate(ticket.status)


def _priority_read(ticket: Ticket | None) -> TicketPriorityRead | None:
    if ticket is None or ticket.priority is None:
        return None
    return TicketPriorityRead.model_validate(ticket.priority)


def internal_to_read(ticket: Ticket) -> TicketRead:
    """Pure internal row -> API view (GUID id)."""
    return TicketRead(
        id=str(ticket.id),
        workspace_id=ticket.workspace_id,
        title=ticket.title,
        description=ticket.description or "",
        status=_status_read(ticket),
        priority=_priority_read(ticket),
        internal=True,
        source=SOURCE_INTERNAL,
        assigned_agent_id=ticket.assigned_agent_id,
        assigned_workflow_id=ticket.assigned_workflow_id,
        comments=_local_comments(ticket),
    )


def external_to_read(
    external: ExternalTicket, integration: Integration, local: Ticket | None
) -> TicketRead:
    """
    Provider ticket -> API view (composite id).

    Title and description always come from the provider. A materialized
    row contributes its assignment, local status/priority and local
    comments.
    """
    status = _status_read(local) or TicketStatusRead(
        id=_provider_value_id("status", external.status_name),
        name=external.status_name,
        color=external.status_color,
    )
    priority = _priority_read(local) or TicketPriorityRead(
        id=_provider_value_id("priority", external.priority_name),
        name=external.priority_name,
        color=external.priority_color,
        value=external.priority_value,
    )
    comments = [
        CommentRead(id=c.id, author=c.author, content=c.content, timestamp=c.created_at)
        for c in external.comments
    ]
    comments.extend(_local_comments(local))

    return TicketRead(
        id=ticket_ref.build_composite_id(integration.id, external.external_ticket_id),
        workspace_id=integration.workspace_id,
        title=external.title,
        description=external.description,
        status=status,
        priority=priority,
        internal=False,
        integration_id=integration.id,
        external_ticket_id=external.external_ticket_id,
        external_url=external.external_url or None,
        source=integration.provider.value.upper(),
        assigned_agent_id=local.assigned_agent_id if local else None,
        assigned_workflow_id=local.assigned_workflow_id if local else None,
        comments=comments,
    )


def materialized_to_read(ticket: Ticket) -> TicketRead:
    """Materialized row -> API view from its local snapshot, without a provider call."""
    source = ticket.integration.provider.value.upper() if ticket.integration else ""
    return TicketRead(
        id=ticket_ref.build_composite_id(ticket.integration_id, ticket.external_ticket_id),
        workspace_id=ticket.workspace_id,
        title=ticket.title,
        description=ticket.description or "",
        status=_status_read(ticket),
        priority=_priority_read(ticket),
        internal=False,
        integration_id=ticket.integration_id,
        external_ticket_id=ticket.external_ticket_id,
        source=source,
        assigned_agent_id=ticket.assigned_agent_id,
        assigned_workflow_id=ticket.assigned_workflow_id,
        comments=_local_comments(ticket),
    )


def _map_external_batch(
    db: Session, integrations: list[Integration], tickets: list[ExternalTicket]
) -> list[TicketRead]:
    """Map provider tickets, joining materialized rows with one query per integration."""
    by_id = {str(i.id): i for i in integrations}
    keys_by_integration: dict[str, list[str]] = {}
    for t in tickets:
        keys_by_integration.setdefault(str(t.integration_id), []).append(t.external_ticket_id)

    local_rows: dict[tuple[str, str], Ticket] = {}
    for integration_key, external_ids in keys_by_integration.items():
        integration = by_id.get(integration_key)
        if integration is None:
            continue
        rows = ticket_repository.get_materialized_by_external_ids(db, integration.id, external_ids)
        for external_id, row in rows.items():
            local_rows[(integration_key, external_id)] = row

    mapped = []
    for t in tickets:
        key = str(t.integration_id)
        integration = by_id.get(key)
        if integration is None:
            logger.warning("Dropping ticket from unknown integration %s", key)
            continue
        mapped.append(external_to_read(t, integration, local_rows.get((key, t.external_ticket_id))))
    return mapped


# =============================================================================
# Sentiment
# =============================================================================


def _is_pure_internal(ticket: TicketRead) -> bool:
    return ticket.internal and ticket.integration_id is None


async def enrich_sentiment(tickets: list[TicketRead], analyzer: SentimentAnalyzer) -> None:
    """
    Set ``satisfaction`` on every ticket in place.

    Pure internal tickets and tickets without comments score neutral. The
    rest go to the analyzer in one batch; if it fails, everything scores
    neutral and the page is still served.
    """
    requests = []
    for ticket in tickets:
        ticket.satisfaction = NEUTRAL_SCORE
        if _is_pure_internal(ticket):
            continue
        texts = [c.content for c in ticket.comments if c.content and c.content.strip()]
        if texts:
            requests.append(SentimentRequest(ticket_id=ticket.id, comments=texts))

    if not requests:
        return

    try:
        results = await analyzer.analyze_batch(requests)
    except Exception:
        logger.exception("Sentiment analysis failed for %s tickets", len(requests))
        return

    scores = {r.ticket_id: r.sentiment for r in results}
    for ticket in tickets:
        if ticket.id in scores:
            ticket.satisfaction = scores[ticket.id]


# =============================================================================
# Feed
# =============================================================================


def _dedupe(tickets: list[TicketRead]) -> list[TicketRead]:
    seen: set[str] = set()
    unique = []
    for ticket in tickets:
        if ticket.id in seen:
            continue
        seen.add(ticket.id)
        unique.append(ticket)
    return unique


async def get_tickets(
    db: Session,
    *,
    workspace_id: UUID,
    user_id: UUID,
    page_token_value: str | None,
    page_size: int | None,
    registry: ProviderRegistry,
    sentiment: SentimentAnalyzer,
) -> TicketPageResponse:
    """
    One page of the workspace's ticket feed.

    A malformed token restarts the feed from the first page. Provider
    failures propagate as ``ProviderFetchError``.
    """
    workspace_service.ensure_member(db, user_id, workspace_id)

    size = page_token.normalize_page_size(page_size)
    state = page_token.parse(page_token_value)
    log_context = build_log_context(
        user_id=str(user_id), workspace_id=str(workspace_id), phase=state.phase.value
    )

    if state.phase == PagePhase.INTERNAL:
        items, next_state = await _internal_phase(db, workspace_id, state, size, registry)
    else:
        items, next_state = await _external_phase(db, workspace_id, state, size, registry)

    items = _dedupe(items)
    await enrich_sentiment(items, sentiment)

    logger.info(
        "Served ticket page: %s items, last=%s", len(items), next_state is None, extra=log_context
    )
    return TicketPageResponse(
        items=items,
        next_page_token=page_token.serialize(next_state) if next_state else None,
        is_last=next_state is None,
    )


async def _internal_phase(
    db: Session,
    workspace_id: UUID,
    state: PageState,
    size: int,
    registry: ProviderRegistry,
) -> tuple[list[TicketRead], PageState | None]:
    rows = ticket_repository.get_internal_tickets(db, workspace_id, state.internal_offset, size)
    items = [internal_to_read(row) for row in rows]
    if len(rows) == size:
        return items, state.advance_internal(size)

    leftover = size - len(rows)
    integrations = integration_service.get_by_workspace_id(db, workspace_id)
    if leftover <= 0 or not integrations:
        return items, None

    result = await external_ticket_service.fetch_external_tickets(
        integrations, leftover, None, registry=registry
    )
    items.extend(_map_external_batch(db, integrations, result.tickets))
    if not result.has_more:
        return items, None
    return items, PageState(
        phase=PagePhase.EXTERNAL,
        internal_offset=state.internal_offset + len(rows),
        external_state=result.state,
    )


async def _external_phase(
    db: Session,
    workspace_id: UUID,
    state: PageState,
    size: int,
    registry: ProviderRegistry,
) -> tuple[list[TicketRead], PageState | None]:
    integrations = integration_service.get_by_workspace_id(db, workspace_id)
    if not integrations:
        return [], None

    result = await external_ticket_service.fetch_external_tickets(
        integrations, size, state.external_state, registry=registry
    )
    items = _map_external_batch(db, integrations, result.tickets)
    if not result.has_more:
        return items, None
    return items, PageState(
        phase=PagePhase.EXTERNAL,
        internal_offset=state.internal_offset,
        external_state=result.state,
    )


# =============================================================================
# Single ticket
# =============================================================================


async def get_ticket_by_id(
    db: Session,
    *,
    ticket_id: str,
    user_id: UUID,
    registry: ProviderRegistry,
    sentiment: SentimentAnalyzer,
) -> TicketRead:
    """Read one ticket by GUID or composite id."""
    ref = ticket_ref.parse(ticket_id)

    if isinstance(ref, ticket_ref.InternalRef):
        ticket = ticket_repository.get_ticket(db, ref.ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        workspace_service.ensure_member(db, user_id, ticket.workspace_id, target=ticket_id)
        if not ticket_domain.is_pure_internal(ticket) and ticket.external_ticket_id:
            ref = ticket_ref.ExternalRef(ticket.integration_id, ticket.external_ticket_id)
        else:
            result = internal_to_read(ticket)
            await enrich_sentiment([result], sentiment)
            return result

    integration, external = await fetch_external_ticket(
        db, ref, user_id=user_id, registry=registry
    )
    local = ticket_repository.get_by_external_id(db, integration.id, ref.external_id)
    result = external_to_read(external, integration, local)
    await enrich_sentiment([result], sentiment)
    return result


async def fetch_external_ticket(
    db: Session,
    ref: ticket_ref.ExternalRef,
    *,
    user_id: UUID,
    registry: ProviderRegistry,
) -> tuple[Integration, ExternalTicket]:
    """Resolve the integration, check access, and fetch the ticket from its provider."""
    integration = integration_service.get_integration(db, ref.integration_id)
    if integration is None:
        raise IntegrationNotFoundError(ref.integration_id)
    workspace_service.ensure_member(db, user_id, integration.workspace_id, target=str(ref))

    provider = registry.get(integration.provider)
    if provider is None:
        raise InvalidTicketOperationError(
            f"Provider '{integration.provider.value}' is not supported."
        )
    external = await provider.get_ticket_by_id(integration, ref.external_id)
    if external is None:
        raise TicketNotFoundError(str(ref))
    return integration, external


# =============================================================================
# Reference data and agent worker hooks
# =============================================================================


def get_all_statuses(db: Session) -> list[TicketStatusRead]:
    return [TicketStatusRead.model_validate(s) for s in ticket_repository.list_statuses(db)]


def get_all_priorities(db: Session) -> list[TicketPriorityRead]:
    return [TicketPriorityRead.model_validate(p) for p in ticket_repository.list_priorities(db)]


def get_internal_tickets_ready_for_agent(db: Session) -> list[TicketRead]:
    """Internal tickets with an assigned agent that are still in To Do."""
    return [internal_to_read(t) for t in ticket_repository.get_internal_tickets_ready_for_agent(db)]


def get_external_materialized_tickets_ready_for_agent(db: Session) -> list[TicketRead]:
    """Materialized external tickets with an assigned agent."""
    return [
        materialized_to_read(t)
        for t in ticket_repository.get_external_materialized_tickets_ready_for_agent(db)
    ]
