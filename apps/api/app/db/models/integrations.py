"""Integration ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import IntegrationType, JiraType, ProviderType
from app.db.types import EncryptedString


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_type(enum_cls, *, name: str) -> Enum:
    """Store Python str-enums by value."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


class Integration(Base):
    """Connected external system for a workspace."""

    __tablename__ = "integrations"
    __table_args__ = (
        Index("idx_integrations_workspace_active", "workspace_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[IntegrationType] = mapped_column(
        _enum_type(IntegrationType, name="integration_type"), nullable=False
    )
    provider: Mapped[ProviderType] = mapped_column(
        _enum_type(ProviderType, name="provider_type"), nullable=False
    )
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_key: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    filter_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    jira_type: Mapped[JiraType | None] = mapped_column(
        _enum_type(JiraType, name="jira_type"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )
