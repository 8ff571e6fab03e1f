"""Structured logging helpers (ticket-content safe)."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    workspace_id: str | None = None,
    ticket_id: str | None = None,
    integration_id: str | None = None,
    phase: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict carrying identifiers only, never ticket text."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if workspace_id:
        context["workspace_id"] = workspace_id
    if ticket_id:
        context["ticket_id"] = ticket_id
    if integration_id:
        context["integration_id"] = integration_id
    if phase:
        context["phase"] = phase
    return context
