"""Ticket feed enums and fixed reference ids."""

from enum import Enum
from uuid import UUID


class PagePhase(str, Enum):
    """Which population a ticket page is drawing from."""

    INTERNAL = "internal"
    EXTERNAL = "external"


SOURCE_INTERNAL = "INTERNAL"

# Seeded reference rows (see app.db.seed)
PRIORITY_LOW_ID = UUID("11111111-1111-1111-1111-111111111111")
PRIORITY_MEDIUM_ID = UUID("22222222-2222-2222-2222-222222222222")
PRIORITY_HIGH_ID = UUID("33333333-3333-3333-3333-333333333333")
PRIORITY_CRITICAL_ID = UUID("44444444-4444-4444-4444-444444444444")

STATUS_TODO_ID = UUID("55555555-5555-5555-5555-555555555555")
STATUS_IN_PROGRESS_ID = UUID("66666666-6666-6666-6666-666666666666")
STATUS_DONE_ID = UUID("77777777-7777-7777-7777-777777777777")

STATUS_TODO_NAME = "To Do"

# Materialized external tickets start here
DEFAULT_EXTERNAL_STATUS_ID: UUID = STATUS_TODO_ID

# Priority value assumed for internal rows without a priority
DEFAULT_PRIORITY_VALUE = 2
