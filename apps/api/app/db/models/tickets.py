"""Ticket, comment, and ticket reference-table ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:
    from app.db.models import Integration


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketStatus(Base):
    """Internal execution status."""

    __tablename__ = "ticket_statuses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(200), nullable=False, default="")


class TicketPriority(Base):
    """Internal priority; higher value sorts first."""

    __tablename__ = "ticket_priorities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    value: Mapped[int] = mapped_column(Integer, nullable=False)


class Ticket(Base):
    """
    Local ticket row.

    Pure internal tickets have is_internal=True and no integration.
    Materialized external tickets have is_internal=False plus
    integration_id/external_ticket_id; their title/description mirror
    the provider at read time.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint(
            "integration_id", "external_ticket_id", name="uq_tickets_integration_external"
        ),
        Index("idx_tickets_workspace", "workspace_id"),
        Index("idx_tickets_workspace_internal", "workspace_id", "is_internal"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ticket_statuses.id"), nullable=True
    )
    priority_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ticket_priorities.id"), nullable=True
    )
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    integration_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True
    )
    external_ticket_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    assigned_workflow_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    status: Mapped["TicketStatus | None"] = relationship(lazy="joined")
    priority: Mapped["TicketPriority | None"] = relationship(lazy="joined")
    integration: Mapped["Integration | None"] = relationship()
    comments: Mapped[list["TicketComment"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketComment.created_at",
    )


class TicketComment(Base):
    """Comment on a local ticket."""

    __tablename__ = "ticket_comments"
    __table_args__ = (Index("idx_ticket_comments_ticket", "ticket_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="comments")
