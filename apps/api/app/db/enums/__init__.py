"""Enum definitions for application constants."""

from app.db.enums.integrations import IntegrationType, JiraType, ProviderType
from app.db.enums.tickets import (
    DEFAULT_EXTERNAL_STATUS_ID,
    DEFAULT_PRIORITY_VALUE,
    PRIORITY_CRITICAL_ID,
    PRIORITY_HIGH_ID,
    PRIORITY_LOW_ID,
    PRIORITY_MEDIUM_ID,
    SOURCE_INTERNAL,
    STATUS_DONE_ID,
    STATUS_IN_PROGRESS_ID,
    STATUS_TODO_ID,
    STATUS_TODO_NAME,
    PagePhase,
)
