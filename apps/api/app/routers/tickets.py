"""Cross-source ticket feed and ticket mutation APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import (
    get_current_user_id,
    get_db,
    get_provider_registry,
    get_sentiment_analyzer,
)
from app.schemas.tickets import (
    CommentCreate,
    CommentRead,
    TicketConvertRequest,
    TicketCreate,
    TicketPageResponse,
    TicketPriorityRead,
    TicketRead,
    TicketStatusRead,
    TicketUpdate,
)
from app.services import ticket_command_service, ticket_query_service
from app.services.providers.registry import ProviderRegistry
from app.services.sentiment_service import SentimentAnalyzer
from app.services.ticket_exceptions import (
    InvalidTicketIdError,
    InvalidTicketOperationError,
    InvalidWorkspaceAssignmentError,
    MaterializationError,
    NotFoundError,
    ProviderFetchError,
    TicketServiceError,
    UnauthorizedTicketAccessError,
)

router = APIRouter(prefix="/v1/tickets", tags=["Tickets"])


def _http_error(exc: TicketServiceError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UnauthorizedTicketAccessError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(
        exc, (InvalidTicketOperationError, InvalidWorkspaceAssignmentError, InvalidTicketIdError)
    ):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ProviderFetchError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, MaterializationError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=500, detail="Ticket operation failed")


# =============================================================================
# Feed
# =============================================================================


@router.get("", response_model=TicketPageResponse)
async def list_tickets(
    workspace_id: UUID = Query(..., alias="workspaceId"),
    page_token: str | None = Query(None, alias="pageToken"),
    page_size: int | None = Query(None, alias="pageSize"),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    sentiment: SentimentAnalyzer = Depends(get_sentiment_analyzer),
):
    """
    One page of a workspace's tickets: internal first, then every tracker
    integration. Pass ``nextPageToken`` back as ``pageToken`` until
    ``isLast`` is true.
    """
    try:
        return await ticket_query_service.get_tickets(
            db,
            workspace_id=workspace_id,
            user_id=user_id,
            page_token_value=page_token,
            page_size=page_size,
            registry=registry,
            sentiment=sentiment,
        )
    except TicketServiceError as e:
        raise _http_error(e)


@router.get("/statuses", response_model=list[TicketStatusRead])
def list_statuses(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ticket_query_service.get_all_statuses(db)


@router.get("/priorities", response_model=list[TicketPriorityRead])
def list_priorities(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ticket_query_service.get_all_priorities(db)


# =============================================================================
# Single ticket
# =============================================================================


@router.post("", response_model=TicketRead, status_code=201)
def create_ticket(
    data: TicketCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create an internal ticket."""
    try:
        return ticket_command_service.create_ticket(db, user_id=user_id, request=data)
    except TicketServiceError as e:
        raise _http_error(e)


@router.get("/{ticket_id}", response_model=TicketRead)
async def get_ticket(
    ticket_id: str,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    sentiment: SentimentAnalyzer = Depends(get_sentiment_analyzer),
):
    """Get a ticket by GUID or ``{integrationId}:{externalTicketId}``."""
    try:
        return await ticket_query_service.get_ticket_by_id(
            db, ticket_id=ticket_id, user_id=user_id, registry=registry, sentiment=sentiment
        )
    except TicketServiceError as e:
        raise _http_error(e)


@router.patch("/{ticket_id}", response_model=TicketRead)
async def update_ticket(
    ticket_id: str,
    data: TicketUpdate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    sentiment: SentimentAnalyzer = Depends(get_sentiment_analyzer),
):
    """
    Update a ticket.

    External tickets accept assignment changes only; the first one stores
    a local copy of the ticket.
    """
    try:
        return await ticket_command_service.update_ticket(
            db,
            ticket_id=ticket_id,
            user_id=user_id,
            request=data,
            registry=registry,
            sentiment=sentiment,
        )
    except TicketServiceError as e:
        raise _http_error(e)


@router.delete("/{ticket_id}", status_code=204)
def delete_ticket(
    ticket_id: str,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Delete an internal ticket."""
    try:
        ticket_command_service.delete_ticket(db, ticket_id=ticket_id, user_id=user_id)
    except TicketServiceError as e:
        raise _http_error(e)
    return None


@router.post("/{ticket_id}/convert", response_model=TicketRead)
async def convert_ticket(
    ticket_id: str,
    data: TicketConvertRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    sentiment: SentimentAnalyzer = Depends(get_sentiment_analyzer),
):
    """Create the ticket in a tracker integration and make it external."""
    try:
        return await ticket_command_service.convert_to_external(
            db,
            ticket_id=ticket_id,
            user_id=user_id,
            integration_id=data.integration_id,
            issue_type_name=data.issue_type_name,
            registry=registry,
            sentiment=sentiment,
        )
    except TicketServiceError as e:
        raise _http_error(e)


@router.post("/{ticket_id}/comments", response_model=CommentRead, status_code=201)
async def add_comment(
    ticket_id: str,
    data: CommentCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    try:
        return await ticket_command_service.add_comment(
            db,
            ticket_id=ticket_id,
            user_id=user_id,
            author=str(user_id),
            content=data.content,
            registry=registry,
        )
    except TicketServiceError as e:
        raise _http_error(e)
