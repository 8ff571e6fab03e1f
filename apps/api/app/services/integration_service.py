"""Integration lookups used by the ticket feed."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import IntegrationType
from app.db.models import Integration


def get_integration(db: Session, integration_id: UUID) -> Integration | None:
    return db.get(Integration, integration_id)


def get_by_workspace_id(db: Session, workspace_id: UUID) -> list[Integration]:
    """Active tracker integrations in a stable fan-out order."""
    stmt = (
        select(Integration)
        .where(
            Integration.workspace_id == workspace_id,
            Integration.is_active.is_(True),
            Integration.type == IntegrationType.TRACKER,
        )
        .order_by(Integration.created_at, Integration.id)
    )
    return list(db.scalars(stmt).all())
