"""Workspace membership checks."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import WorkspaceMember
from app.services.ticket_exceptions import UnauthorizedTicketAccessError


def is_member(db: Session, user_id: UUID, workspace_id: UUID) -> bool:
    stmt = select(WorkspaceMember.id).where(
        WorkspaceMember.user_id == user_id,
        WorkspaceMember.workspace_id == workspace_id,
    )
    return db.scalars(stmt).first() is not None


def ensure_member(db: Session, user_id: UUID, workspace_id: UUID, target=None) -> None:
    """Raise UnauthorizedTicketAccessError unless the user belongs to the workspace."""
    if not is_member(db, user_id, workspace_id):
        raise UnauthorizedTicketAccessError(user_id, target or workspace_id)
