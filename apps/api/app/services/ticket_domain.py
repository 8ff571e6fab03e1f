"""Ticket lifecycle rules.

Builders return new ``Ticket`` rows; mutators change a loaded row in place
and leave persistence to ``ticket_repository.save``. Rule violations raise
``ValueError``; callers wrap them into ``InvalidTicketOperationError``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from app.db.models import Ticket
from app.services.ticket_exceptions import InvalidWorkspaceAssignmentError

MAX_DESCRIPTION_LENGTH = 5000


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_internal_ticket(
    *,
    workspace_id: UUID,
    title: str,
    description: str,
    status_id: UUID | None,
    priority_id: UUID | None,
) -> Ticket:
    if workspace_id is None:
        raise ValueError("Workspace ID is required.")
    if not title or not title.strip():
        raise ValueError("Title cannot be empty.")
    if priority_id is None:
        raise ValueError("Priority ID is required for internal tickets.")
    if status_id is None:
        raise ValueError("Status ID is required for internal tickets.")

    now = _now_utc()
    return Ticket(
        workspace_id=workspace_id,
        title=title.strip(),
        description=description or "",
        status_id=status_id,
        priority_id=priority_id,
        is_internal=True,
        created_at=now,
        updated_at=now,
    )


def new_materialized_ticket(
    *,
    workspace_id: UUID,
    integration_id: UUID,
    external_ticket_id: str,
    title: str,
    description: str,
    status_id: UUID | None,
    priority_id: UUID | None,
    assigned_agent_id: UUID | None = None,
    assigned_workflow_id: UUID | None = None,
) -> Ticket:
    """Local row for an external ticket; title/description are a provider snapshot."""
    if workspace_id is None:
        raise ValueError("Workspace ID is required.")
    if integration_id is None:
        raise ValueError("Integration ID is required.")
    if not external_ticket_id or not external_ticket_id.strip():
        raise ValueError("External ticket ID is required.")

    now = _now_utc()
    return Ticket(
        workspace_id=workspace_id,
        integration_id=integration_id,
        external_ticket_id=external_ticket_id,
        is_internal=False,
        title=title or "",
        description=description or "",
        status_id=status_id,
        priority_id=priority_id,
        assigned_agent_id=assigned_agent_id,
        assigned_workflow_id=assigned_workflow_id,
        created_at=now,
        updated_at=now,
    )


def is_pure_internal(ticket: Ticket) -> bool:
    return ticket.is_internal and ticket.integration_id is None


def can_delete(ticket: Ticket) -> bool:
    """Only pure internal tickets may be deleted locally."""
    return is_pure_internal(ticket)


def update_status(ticket: Ticket, status_id: UUID) -> None:
    if status_id is None:
        raise ValueError("Status ID is required.")
    ticket.status_id = status_id


def update_priority(ticket: Ticket, priority_id: UUID) -> None:
    if priority_id is None:
        raise ValueError("Priority ID is required.")
    ticket.priority_id = priority_id


def update_description(ticket: Ticket, description: str) -> None:
    if not ticket.is_internal:
        raise ValueError(
            "Cannot update description of external tickets. "
            "Description is managed by the external provider."
        )
    if not description or not description.strip():
        raise ValueError("Description cannot be empty.")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters.")
    ticket.description = description


def check_assignment_workspace(
    workspace_id: UUID,
    *,
    assigned_agent_id: UUID | None,
    agent_workspace_id: UUID | None,
    assigned_workflow_id: UUID | None,
    workflow_workspace_id: UUID | None,
) -> None:
    """Agent and workflow must live in the ticket's workspace."""
    if assigned_agent_id is not None and agent_workspace_id is not None:
        if agent_workspace_id != workspace_id:
            raise InvalidWorkspaceAssignmentError(
                f"Agent '{assigned_agent_id}' belongs to workspace '{agent_workspace_id}' "
                f"but ticket belongs to workspace '{workspace_id}'."
            )
    if assigned_workflow_id is not None and workflow_workspace_id is not None:
        if workflow_workspace_id != workspace_id:
            raise InvalidWorkspaceAssignmentError(
                f"Workflow '{assigned_workflow_id}' belongs to workspace '{workflow_workspace_id}' "
                f"but ticket belongs to workspace '{workspace_id}'."
            )


def update_assignments(
    ticket: Ticket,
    *,
    assigned_agent_id: UUID | None,
    agent_workspace_id: UUID | None,
    assigned_workflow_id: UUID | None,
    workflow_workspace_id: UUID | None,
) -> None:
    """Replace both assignments after checking they share the ticket's workspace."""
    check_assignment_workspace(
        ticket.workspace_id,
        assigned_agent_id=assigned_agent_id,
        agent_workspace_id=agent_workspace_id,
        assigned_workflow_id=assigned_workflow_id,
        workflow_workspace_id=workflow_workspace_id,
    )
    ticket.assigned_agent_id = assigned_agent_id
    ticket.assigned_workflow_id = assigned_workflow_id


def convert_to_external(ticket: Ticket, *, integration_id: UUID, external_ticket_id: str) -> None:
    """One-way switch; the provider owns status and priority afterwards."""
    if not ticket.is_internal:
        raise ValueError("Cannot convert external tickets. Ticket is already external.")
    if integration_id is None:
        raise ValueError("Integration ID is required.")
    if not external_ticket_id or not external_ticket_id.strip():
        raise ValueError("External ticket ID is required.")
    ticket.integration_id = integration_id
    ticket.external_ticket_id = external_ticket_id
    ticket.is_internal = False
    ticket.status_id = None
    ticket.priority_id = None
