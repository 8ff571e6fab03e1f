"""Ticket persistence: internal reader, lookups, and save/delete."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.db.enums import DEFAULT_PRIORITY_VALUE, STATUS_TODO_ID
from app.db.models import (
    Agent,
    Ticket,
    TicketComment,
    TicketPriority,
    TicketStatus,
    Workflow,
    Workspace,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Reference data
# =============================================================================


def list_statuses(db: Session) -> list[TicketStatus]:
    return list(db.scalars(select(TicketStatus).order_by(TicketStatus.name)).all())


def list_priorities(db: Session) -> list[TicketPriority]:
    return list(
        db.scalars(select(TicketPriority).order_by(TicketPriority.value, TicketPriority.id)).all()
    )


def get_status(db: Session, status_id: UUID) -> TicketStatus | None:
    return db.get(TicketStatus, status_id)


def get_priority(db: Session, priority_id: UUID) -> TicketPriority | None:
    return db.get(TicketPriority, priority_id)


def get_workspace(db: Session, workspace_id: UUID) -> Workspace | None:
    return db.get(Workspace, workspace_id)


def get_agent(db: Session, agent_id: UUID) -> Agent | None:
    return db.get(Agent, agent_id)


def get_workflow(db: Session, workflow_id: UUID) -> Workflow | None:
    return db.get(Workflow, workflow_id)


# =============================================================================
# Internal reader
# =============================================================================


def get_internal_tickets(
    db: Session, workspace_id: UUID, offset: int, limit: int
) -> list[Ticket]:
    """
    Page of pure internal tickets for a workspace.

    Ordered by priority value desc (missing priority counts as medium),
    then updated_at desc, then id so equal rows never swap between pages.
    Materialized external rows are excluded; they surface in the external
    phase next to their integration's tickets.
    """
    priority_value = func.coalesce(TicketPriority.value, DEFAULT_PRIORITY_VALUE)
    stmt = (
        select(Ticket)
        .outerjoin(TicketPriority, Ticket.priority_id == TicketPriority.id)
        .where(Ticket.workspace_id == workspace_id, Ticket.is_internal.is_(True))
        .order_by(priority_value.desc(), Ticket.updated_at.desc(), Ticket.id)
        .offset(offset)
        .limit(limit)
        .options(selectinload(Ticket.comments))
    )
    return list(db.scalars(stmt).unique().all())


# =============================================================================
# Lookups
# =============================================================================


def get_ticket(db: Session, ticket_id: UUID) -> Ticket | None:
    stmt = (
        select(Ticket)
        .where(Ticket.id == ticket_id)
        .options(selectinload(Ticket.comments))
    )
    return db.scalars(stmt).unique().first()


def get_by_external_id(
    db: Session, integration_id: UUID, external_ticket_id: str
) -> Ticket | None:
    stmt = (
        select(Ticket)
        .where(
            Ticket.integration_id == integration_id,
            Ticket.external_ticket_id == external_ticket_id,
        )
        .options(selectinload(Ticket.comments))
    )
    return db.scalars(stmt).unique().first()


def get_materialized_by_external_ids(
    db: Session, integration_id: UUID, external_ticket_ids: list[str]
) -> dict[str, Ticket]:
    """Local rows for a batch of one integration's external keys."""
    if not external_ticket_ids:
        return {}
    stmt = (
        select(Ticket)
        .where(
            Ticket.integration_id == integration_id,
            Ticket.external_ticket_id.in_(external_ticket_ids),
        )
        .options(selectinload(Ticket.comments))
    )
    return {t.external_ticket_id: t for t in db.scalars(stmt).unique().all()}


# =============================================================================
# Agent worker queries
# =============================================================================


def get_internal_tickets_ready_for_agent(db: Session) -> list[Ticket]:
    stmt = select(Ticket).where(
        Ticket.is_internal.is_(True),
        Ticket.assigned_agent_id.is_not(None),
        Ticket.status_id == STATUS_TODO_ID,
    )
    return list(db.scalars(stmt).unique().all())


def get_external_materialized_tickets_ready_for_agent(db: Session) -> list[Ticket]:
    stmt = select(Ticket).where(
        Ticket.is_internal.is_(False),
        Ticket.assigned_agent_id.is_not(None),
        Ticket.integration_id.is_not(None),
        or_(Ticket.status_id == STATUS_TODO_ID, Ticket.status_id.is_(None)),
    )
    return list(db.scalars(stmt).unique().all())


# =============================================================================
# Writes
# =============================================================================


def save(db: Session, ticket: Ticket, *, touch: bool = True) -> Ticket:
    """Persist a ticket (insert or update) and return the refreshed row."""
    if touch:
        ticket.updated_at = _now_utc()
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


def delete(db: Session, ticket: Ticket) -> None:
    db.delete(ticket)
    db.commit()


def add_comment(db: Session, comment: TicketComment) -> TicketComment:
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment
