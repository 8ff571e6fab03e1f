"""Ticket mutations: create, update, delete, convert, comment.

Lookups and access checks run before any write. Domain rule violations
(``ValueError`` from ``ticket_domain``) surface as
``InvalidTicketOperationError`` with the original message.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import IntegrationType
from app.db.models import Ticket, TicketComment
from app.schemas.tickets import CommentRead, TicketCreate, TicketRead, TicketUpdate
from app.services import (
    integration_service,
    materialization_service,
    ticket_domain,
    ticket_query_service,
    ticket_ref,
    ticket_repository,
    workspace_service,
)
from app.services.providers.registry import ProviderRegistry
from app.services.sentiment_service import NEUTRAL_SCORE, SentimentAnalyzer
from app.services.ticket_exceptions import (
    AgentNotFoundError,
    IntegrationNotFoundError,
    InvalidTicketOperationError,
    PriorityNotFoundError,
    StatusNotFoundError,
    TicketNotFoundError,
    WorkflowNotFoundError,
    WorkspaceNotFoundError,
)

logger = logging.getLogger(__name__)


def _resolve_assignment_workspaces(
    db: Session, agent_id: UUID | None, workflow_id: UUID | None
) -> tuple[UUID | None, UUID | None]:
    """Workspace ids of the assigned agent/workflow; missing ones raise 404 errors."""
    agent_workspace_id = None
    workflow_workspace_id = None
    if agent_id is not None:
        agent = ticket_repository.get_agent(db, agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        agent_workspace_id = agent.workspace_id
    if workflow_id is not None:
        workflow = ticket_repository.get_workflow(db, workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        workflow_workspace_id = workflow.workspace_id
    return agent_workspace_id, workflow_workspace_id


def _requested_assignment(ticket: Ticket | None, request: TicketUpdate) -> tuple[UUID | None, UUID | None]:
    """Assignment after the update; fields missing from the payload keep their value."""
    fields = request.model_fields_set
    agent_id = request.assigned_agent_id if "assigned_agent_id" in fields else (
        ticket.assigned_agent_id if ticket else None
    )
    workflow_id = request.assigned_workflow_id if "assigned_workflow_id" in fields else (
        ticket.assigned_workflow_id if ticket else None
    )
    return agent_id, workflow_id


# =============================================================================
# Create
# =============================================================================


def create_ticket(db: Session, *, user_id: UUID, request: TicketCreate) -> TicketRead:
    """Create a pure internal ticket."""
    workspace_service.ensure_member(db, user_id, request.workspace_id)

    if ticket_repository.get_workspace(db, request.workspace_id) is None:
        raise WorkspaceNotFoundError(request.workspace_id)
    if ticket_repository.get_status(db, request.status_id) is None:
        raise StatusNotFoundError(request.status_id)
    if ticket_repository.get_priority(db, request.priority_id) is None:
        raise PriorityNotFoundError(request.priority_id)

    agent_workspace_id, workflow_workspace_id = _resolve_assignment_workspaces(
        db, request.assigned_agent_id, request.assigned_workflow_id
    )

    try:
        ticket = ticket_domain.new_internal_ticket(
            workspace_id=request.workspace_id,
            title=request.title,
            description=request.description,
            status_id=request.status_id,
            priority_id=request.priority_id,
        )
    except ValueError as exc:
        raise InvalidTicketOperationError(str(exc)) from exc

    ticket_domain.update_assignments(
        ticket,
        assigned_agent_id=request.assigned_agent_id,
        agent_workspace_id=agent_workspace_id,
        assigned_workflow_id=request.assigned_workflow_id,
        workflow_workspace_id=workflow_workspace_id,
    )
    ticket = ticket_repository.save(db, ticket)

    logger.info(
        "Created internal ticket",
        extra=build_log_context(
            user_id=str(user_id), workspace_id=str(ticket.workspace_id), ticket_id=str(ticket.id)
        ),
    )
    result = ticket_query_service.internal_to_read(ticket)
    result.satisfaction = NEUTRAL_SCORE
    return result


# =============================================================================
# Update
# =============================================================================


async def update_ticket(
    db: Session,
    *,
    ticket_id: str,
    user_id: UUID,
    request: TicketUpdate,
    registry: ProviderRegistry,
    sentiment: SentimentAnalyzer,
) -> TicketRead:
    """
    Update a ticket by GUID or composite id.

    External tickets only accept assignment changes. The first assignment
    on an external ticket materializes its local row.
    """
    if not request.has_changes():
        raise InvalidTicketOperationError("At least one field must be provided for update.")

    ref = ticket_ref.parse(ticket_id)
    if isinstance(ref, ticket_ref.InternalRef):
        ticket = _update_local(db, ref, user_id=user_id, request=request)
        result_id = str(ticket.id)
    else:
        await _update_external(db, ref, user_id=user_id, request=request, registry=registry)
        result_id = str(ref)

    return await ticket_query_service.get_ticket_by_id(
        db, ticket_id=result_id, user_id=user_id, registry=registry, sentiment=sentiment
    )


def _update_local(
    db: Session, ref: ticket_ref.InternalRef, *, user_id: UUID, request: TicketUpdate
) -> Ticket:
    ticket = ticket_repository.get_ticket(db, ref.ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ref.ticket_id)
    workspace_service.ensure_member(db, user_id, ticket.workspace_id, target=str(ref))

    if (request.status_id or request.priority_id) and not ticket.is_internal:
        raise InvalidTicketOperationError(
            "Cannot update status or priority of external tickets. "
            "They are managed by the external provider."
        )
    if request.status_id and ticket_repository.get_status(db, request.status_id) is None:
        raise StatusNotFoundError(request.status_id)
    if request.priority_id and ticket_repository.get_priority(db, request.priority_id) is None:
        raise PriorityNotFoundError(request.priority_id)

    agent_id, workflow_id = _requested_assignment(ticket, request)
    agent_workspace_id, workflow_workspace_id = None, None
    if request.touches_assignment():
        agent_workspace_id, workflow_workspace_id = _resolve_assignment_workspaces(
            db, agent_id, workflow_id
        )

    try:
        if request.status_id:
            ticket_domain.update_status(ticket, request.status_id)
        if request.priority_id:
            ticket_domain.update_priority(ticket, request.priority_id)
        if request.description:
            ticket_domain.update_description(ticket, request.description)
    except ValueError as exc:
        raise InvalidTicketOperationError(str(exc)) from exc

    if request.touches_assignment():
        ticket_domain.update_assignments(
            ticket,
            assigned_agent_id=agent_id,
            agent_workspace_id=agent_workspace_id,
            assigned_workflow_id=workflow_id,
            workflow_workspace_id=workflow_workspace_id,
        )

    return ticket_repository.save(db, ticket)


async def _update_external(
    db: Session,
    ref: ticket_ref.ExternalRef,
    *,
    user_id: UUID,
    request: TicketUpdate,
    registry: ProviderRegistry,
) -> Ticket:
    if request.status_id or request.priority_id:
        raise InvalidTicketOperationError(
            "Cannot update status or priority of external tickets. "
            "They are managed by the external provider."
        )

    integration = integration_service.get_integration(db, ref.integration_id)
    if integration is None:
        raise IntegrationNotFoundError(ref.integration_id)
    workspace_service.ensure_member(db, user_id, integration.workspace_id, target=str(ref))

    if request.description:
        raise InvalidTicketOperationError(
            "Cannot update description of external tickets. "
            "Description is managed by the external provider."
        )

    local = ticket_repository.get_by_external_id(db, integration.id, ref.external_id)
    if local is None and not request.touches_assignment():
        raise InvalidTicketOperationError(
            "External tickets only support assignment updates."
        )

    agent_id, workflow_id = _requested_assignment(local, request)
    agent_workspace_id, workflow_workspace_id = _resolve_assignment_workspaces(
        db, agent_id, workflow_id
    )

    if local is not None:
        ticket_domain.update_assignments(
            local,
            assigned_agent_id=agent_id,
            agent_workspace_id=agent_workspace_id,
            assigned_workflow_id=workflow_id,
            workflow_workspace_id=workflow_workspace_id,
        )
        return ticket_repository.save(db, local)

    if agent_id is None and workflow_id is None:
        raise InvalidTicketOperationError(
            "An agent or workflow is required to assign an external ticket."
        )
    ticket_domain.check_assignment_workspace(
        integration.workspace_id,
        assigned_agent_id=agent_id,
        agent_workspace_id=agent_workspace_id,
        assigned_workflow_id=workflow_id,
        workflow_workspace_id=workflow_workspace_id,
    )

    _, snapshot = await ticket_query_service.fetch_external_ticket(
        db, ref, user_id=user_id, registry=registry
    )
    return materialization_service.materialize_from_external(
        db,
        integration_id=integration.id,
        external_ticket_id=ref.external_id,
        workspace_id=integration.workspace_id,
        snapshot=snapshot,
        assigned_agent_id=agent_id,
        assigned_workflow_id=workflow_id,
    )


# =============================================================================
# Delete
# =============================================================================


def delete_ticket(db: Session, *, ticket_id: str, user_id: UUID) -> None:
    """Delete a pure internal ticket."""
    ref = ticket_ref.parse(ticket_id)
    if isinstance(ref, ticket_ref.ExternalRef):
        raise InvalidTicketOperationError(
            "Cannot delete external tickets. Delete them in the external provider."
        )

    ticket = ticket_repository.get_ticket(db, ref.ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    workspace_service.ensure_member(db, user_id, ticket.workspace_id, target=ticket_id)

    if not ticket_domain.can_delete(ticket):
        raise InvalidTicketOperationError(
            "Only internal tickets can be deleted. External tickets are managed by their provider."
        )

    ticket_repository.delete(db, ticket)
    logger.info(
        "Deleted ticket",
        extra=build_log_context(user_id=str(user_id), ticket_id=ticket_id),
    )


# =============================================================================
# Convert
# =============================================================================


async def convert_to_external(
    db: Session,
    *,
    ticket_id: str,
    user_id: UUID,
    integration_id: UUID,
    issue_type_name: str,
    registry: ProviderRegistry,
    sentiment: SentimentAnalyzer,
) -> TicketRead:
    """
    Create the ticket as an issue in a tracker and turn it external.

    The switch is one way; status and priority are cleared and owned by the
    provider afterwards.
    """
    ref = ticket_ref.parse(ticket_id)
    if isinstance(ref, ticket_ref.ExternalRef):
        raise InvalidTicketOperationError("Only internal tickets can be converted.")

    ticket = ticket_repository.get_ticket(db, ref.ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    if not ticket.is_internal:
        raise InvalidTicketOperationError("Ticket is already external.")
    workspace_service.ensure_member(db, user_id, ticket.workspace_id, target=ticket_id)

    integration = integration_service.get_integration(db, integration_id)
    if integration is None:
        raise IntegrationNotFoundError(integration_id)
    if integration.type != IntegrationType.TRACKER:
        raise InvalidTicketOperationError("Integration is not a ticket tracker.")
    if not integration.is_active:
        raise InvalidTicketOperationError("Integration is not active.")
    if integration.workspace_id != ticket.workspace_id:
        raise InvalidTicketOperationError("Integration belongs to a different workspace.")

    provider = registry.get(integration.provider)
    if provider is None:
        raise InvalidTicketOperationError(
            f"Provider '{integration.provider.value}' does not support issue creation."
        )

    try:
        created = await provider.create_issue(
            integration, ticket.title, ticket.description or "", issue_type_name
        )
        ticket_domain.convert_to_external(
            ticket, integration_id=integration.id, external_ticket_id=created.issue_key
        )
    except ValueError as exc:
        raise InvalidTicketOperationError(str(exc)) from exc

    ticket_repository.save(db, ticket)
    logger.info(
        "Converted ticket to external issue %s",
        created.issue_key,
        extra=build_log_context(
            user_id=str(user_id), ticket_id=ticket_id, integration_id=str(integration.id)
        ),
    )
    return await ticket_query_service.get_ticket_by_id(
        db,
        ticket_id=ticket_ref.build_composite_id(integration.id, created.issue_key),
        user_id=user_id,
        registry=registry,
        sentiment=sentiment,
    )


# =============================================================================
# Comments
# =============================================================================


async def add_comment(
    db: Session,
    *,
    ticket_id: str,
    user_id: UUID,
    author: str,
    content: str,
    registry: ProviderRegistry,
) -> CommentRead:
    """
    Comment on a ticket.

    Pure internal tickets keep the comment locally; external and
    materialized tickets post it to the provider.
    """
    if not content or not content.strip():
        raise InvalidTicketOperationError("Comment content cannot be empty.")

    ref = ticket_ref.parse(ticket_id)
    if isinstance(ref, ticket_ref.InternalRef):
        ticket = ticket_repository.get_ticket(db, ref.ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        workspace_service.ensure_member(db, user_id, ticket.workspace_id, target=ticket_id)
        if ticket_domain.is_pure_internal(ticket):
            comment = ticket_repository.add_comment(
                db, TicketComment(ticket_id=ticket.id, author=author, content=content)
            )
            return CommentRead(
                id=str(comment.id),
                author=comment.author,
                content=comment.content,
                timestamp=comment.created_at,
            )
        ref = ticket_ref.ExternalRef(ticket.integration_id, ticket.external_ticket_id)

    integration = integration_service.get_integration(db, ref.integration_id)
    if integration is None:
        raise IntegrationNotFoundError(ref.integration_id)
    workspace_service.ensure_member(db, user_id, integration.workspace_id, target=str(ref))

    provider = registry.get(integration.provider)
    if provider is None:
        raise InvalidTicketOperationError(
            f"Provider '{integration.provider.value}' is not supported."
        )
    try:
        posted = await provider.add_comment(integration, ref.external_id, content, author)
    except ValueError as exc:
        raise InvalidTicketOperationError(str(exc)) from exc
    return CommentRead(
        id=posted.id, author=posted.author, content=posted.content, timestamp=posted.created_at
    )
