"""Pydantic schemas for the cross-source ticket feed APIs.

Serialized with camelCase keys (``nextPageToken``, ``isLast``...), the
contract the dashboard consumes.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TicketStatusRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    color: str


class TicketPriorityRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    color: str
    value: int


class CommentRead(CamelModel):
    """Comment from the local store or from a provider."""

    id: str
    author: str
    content: str
    timestamp: datetime | None = None


class TicketRead(CamelModel):
    """
    Unified ticket view.

    ``id`` is the GUID for pure internal tickets and the composite
    ``{integrationId}:{externalTicketId}`` for external ones (materialized
    or not).
    """

    id: str
    workspace_id: UUID
    title: str
    description: str = ""
    status: TicketStatusRead | None = None
    priority: TicketPriorityRead | None = None
    internal: bool
    integration_id: UUID | None = None
    external_ticket_id: str | None = None
    external_url: str | None = None
    source: str
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None
    comments: list[CommentRead] = Field(default_factory=list)
    satisfaction: int | None = None
    summary: str | None = None


class TicketPageResponse(CamelModel):
    """One page of the feed plus the token for the next one."""

    items: list[TicketRead]
    next_page_token: str | None = None
    is_last: bool


class TicketCreate(CamelModel):
    """Create a pure internal ticket."""

    workspace_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    status_id: UUID
    priority_id: UUID
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None


class TicketUpdate(CamelModel):
    """
    Partial update.

    Assignments are only touched when present in the payload; an explicit
    null clears the assignment.
    """

    status_id: UUID | None = None
    priority_id: UUID | None = None
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None
    description: str | None = None

    def has_changes(self) -> bool:
        provided = {
            name
            for name in self.model_fields_set
            if name in ("assigned_agent_id", "assigned_workflow_id")
            or getattr(self, name) not in (None, "")
        }
        return bool(provided)

    def touches_assignment(self) -> bool:
        return bool({"assigned_agent_id", "assigned_workflow_id"} & self.model_fields_set)


class TicketConvertRequest(CamelModel):
    integration_id: UUID
    issue_type_name: str = Field(min_length=1)


class CommentCreate(CamelModel):
    content: str = Field(min_length=1, max_length=10000)
