"""Materialization of external tickets into local rows.

An external ticket only gets a local row when something local-only has to
be stored for it (today: agent/workflow assignment).
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import DEFAULT_EXTERNAL_STATUS_ID
from app.db.models import Ticket, TicketPriority
from app.services import ticket_domain, ticket_repository
from app.services.providers.base import ExternalTicket
from app.services.ticket_exceptions import MaterializationError

logger = logging.getLogger(__name__)


def map_external_priority(db: Session, external_value: int) -> TicketPriority:
    """
    Closest internal priority to a provider priority value.

    Equidistant candidates resolve to the lower value so the mapping never
    depends on row order.
    """
    priorities = ticket_repository.list_priorities(db)
    if not priorities:
        raise MaterializationError("No priorities found in the system.")
    return min(priorities, key=lambda p: (abs(p.value - external_value), p.value))


def materialize_from_external(
    db: Session,
    *,
    integration_id: UUID,
    external_ticket_id: str,
    workspace_id: UUID,
    snapshot: ExternalTicket,
    assigned_agent_id: UUID | None,
    assigned_workflow_id: UUID | None,
) -> Ticket:
    """
    Create the local row for an external ticket, or update the existing one.

    A concurrent materialization of the same ticket loses on the
    (integration_id, external_ticket_id) unique constraint; the loser rolls
    back and applies its assignment to the row that won.
    """
    existing = ticket_repository.get_by_external_id(db, integration_id, external_ticket_id)
    if existing is not None:
        return _assign(db, existing, assigned_agent_id, assigned_workflow_id)

    priority = map_external_priority(db, snapshot.priority_value)
    ticket = ticket_domain.new_materialized_ticket(
        workspace_id=workspace_id,
        integration_id=integration_id,
        external_ticket_id=external_ticket_id,
        title=snapshot.title,
        description=snapshot.description,
        status_id=DEFAULT_EXTERNAL_STATUS_ID,
        priority_id=priority.id,
        assigned_agent_id=assigned_agent_id,
        assigned_workflow_id=assigned_workflow_id,
    )

    try:
        ticket = ticket_repository.save(db, ticket, touch=False)
    except IntegrityError:
        db.rollback()
        winner = ticket_repository.get_by_external_id(db, integration_id, external_ticket_id)
        if winner is None:
            raise
        logger.info(
            "Ticket already materialized concurrently, applying assignment",
            extra=build_log_context(
                workspace_id=str(workspace_id),
                integration_id=str(integration_id),
                phase="materialize",
            ),
        )
        return _assign(db, winner, assigned_agent_id, assigned_workflow_id)

    logger.info(
        "Materialized external ticket",
        extra=build_log_context(
            workspace_id=str(workspace_id),
            ticket_id=str(ticket.id),
            integration_id=str(integration_id),
            phase="materialize",
        ),
    )
    return ticket


def _assign(
    db: Session,
    ticket: Ticket,
    assigned_agent_id: UUID | None,
    assigned_workflow_id: UUID | None,
) -> Ticket:
    ticket.assigned_agent_id = assigned_agent_id
    ticket.assigned_workflow_id = assigned_workflow_id
    return ticket_repository.save(db, ticket)
