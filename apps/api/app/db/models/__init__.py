"""SQLAlchemy ORM models."""

from app.db.models.integrations import Integration
from app.db.models.tickets import Ticket, TicketComment, TicketPriority, TicketStatus
from app.db.models.workspaces import Agent, Workflow, Workspace, WorkspaceMember

__all__ = [
    "Agent",
    "Integration",
    "Ticket",
    "TicketComment",
    "TicketPriority",
    "TicketStatus",
    "Workflow",
    "Workspace",
    "WorkspaceMember",
]
