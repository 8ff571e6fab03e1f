"""Ticket identity parsing.

A ticket id is either an internal GUID or a composite
``{integrationId}:{externalTicketId}`` naming an external ticket.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from app.services.ticket_exceptions import InvalidTicketIdError


@dataclass(frozen=True)
class InternalRef:
    """Local ticket row (pure internal or materialized)."""

    ticket_id: UUID

    def __str__(self) -> str:
        return str(self.ticket_id)


@dataclass(frozen=True)
class ExternalRef:
    """External ticket addressed by integration + provider key."""

    integration_id: UUID
    external_id: str

    def __str__(self) -> str:
        return build_composite_id(self.integration_id, self.external_id)


TicketRef = InternalRef | ExternalRef


def build_composite_id(integration_id: UUID, external_id: str) -> str:
    return f"{integration_id}:{external_id}"


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


def is_composite_id(ticket_id: str) -> bool:
    return ":" in (ticket_id or "")


def try_parse(ticket_id: str | None) -> TicketRef | None:
    """Parse a ticket id; returns None instead of raising."""
    if not ticket_id:
        return None
    if not is_composite_id(ticket_id):
        parsed = _parse_uuid(ticket_id)
        return InternalRef(parsed) if parsed else None

    # External keys may themselves contain ':' so split on the first only
    integration_part, external_id = ticket_id.split(":", 1)
    integration_id = _parse_uuid(integration_part)
    if integration_id is None or not external_id.strip():
        return None
    return ExternalRef(integration_id, external_id)


def parse(ticket_id: str | None) -> TicketRef:
    """Parse a ticket id or raise InvalidTicketIdError."""
    ref = try_parse(ticket_id)
    if ref is not None:
        return ref
    if ticket_id and is_composite_id(ticket_id):
        raise InvalidTicketIdError(
            f"Invalid composite ticket ID format: '{ticket_id}'. "
            "Expected '{integrationId}:{externalTicketId}'."
        )
    raise InvalidTicketIdError(f"Invalid ticket ID format: '{ticket_id}'.")
