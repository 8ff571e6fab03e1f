"""Fixed ticket statuses and priorities.

The baseline migration inserts these rows; tests seed them onto a
``create_all`` schema with ``seed_reference_data``.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import (
    PRIORITY_CRITICAL_ID,
    PRIORITY_HIGH_ID,
    PRIORITY_LOW_ID,
    PRIORITY_MEDIUM_ID,
    STATUS_DONE_ID,
    STATUS_IN_PROGRESS_ID,
    STATUS_TODO_ID,
    STATUS_TODO_NAME,
)
from app.db.models import TicketPriority, TicketStatus

TICKET_PRIORITIES = [
    (PRIORITY_LOW_ID, "Low", "bg-slate-500/10 text-slate-400 border border-slate-500/20", 1),
    (PRIORITY_MEDIUM_ID, "Medium", "bg-blue-500/10 text-blue-400 border border-blue-500/20", 2),
    (PRIORITY_HIGH_ID, "High", "bg-orange-500/10 text-orange-400 border border-orange-500/20", 3),
    (PRIORITY_CRITICAL_ID, "Critical", "bg-red-500/10 text-red-400 border border-red-500/20", 4),
]

TICKET_STATUSES = [
    (STATUS_TODO_ID, STATUS_TODO_NAME, "bg-purple-500/20 text-purple-400"),
    (STATUS_IN_PROGRESS_ID, "In Progress", "bg-yellow-500/20 text-yellow-400"),
    (STATUS_DONE_ID, "Done", "bg-green-500/20 text-green-400"),
]


def seed_reference_data(db: Session) -> None:
    """Insert the fixed statuses and priorities when missing."""
    existing_priorities = set(db.scalars(select(TicketPriority.id)).all())
    for priority_id, name, color, value in TICKET_PRIORITIES:
        if priority_id not in existing_priorities:
            db.add(TicketPriority(id=priority_id, name=name, color=color, value=value))

    existing_statuses = set(db.scalars(select(TicketStatus.id)).all())
    for status_id, name, color in TICKET_STATUSES:
        if status_id not in existing_statuses:
            db.add(TicketStatus(id=status_id, name=name, color=color))

    db.commit()

