"""Ticket service exceptions.

Routers translate these into HTTP responses; see ``app.routers.tickets``.
"""


class TicketServiceError(Exception):
    """Base exception for ticket service errors."""

    pass


# =============================================================================
# Not found (404)
# =============================================================================


class NotFoundError(TicketServiceError):
    """Requested entity does not exist."""

    pass


class TicketNotFoundError(NotFoundError):
    """Ticket not found."""

    def __init__(self, ticket_id):
        self.ticket_id = str(ticket_id)
        super().__init__(f"Ticket with ID '{ticket_id}' was not found.")


class IntegrationNotFoundError(NotFoundError):
    """Integration not found."""

    def __init__(self, integration_id):
        self.integration_id = str(integration_id)
        super().__init__(f"Integration with ID '{integration_id}' was not found.")


class WorkspaceNotFoundError(NotFoundError):
    """Workspace not found."""

    def __init__(self, workspace_id):
        super().__init__(f"Workspace with ID '{workspace_id}' was not found.")


class StatusNotFoundError(NotFoundError):
    """Ticket status not found."""

    def __init__(self, status_id):
        super().__init__(f"Ticket status with ID '{status_id}' was not found.")


class PriorityNotFoundError(NotFoundError):
    """Ticket priority not found."""

    def __init__(self, priority_id):
        super().__init__(f"Ticket priority with ID '{priority_id}' was not found.")


class AgentNotFoundError(NotFoundError):
    """Agent not found."""

    def __init__(self, agent_id):
        super().__init__(f"Agent with ID '{agent_id}' was not found.")


class WorkflowNotFoundError(NotFoundError):
    """Workflow not found."""

    def __init__(self, workflow_id):
        super().__init__(f"Workflow with ID '{workflow_id}' was not found.")


# =============================================================================
# Forbidden (403)
# =============================================================================


class UnauthorizedTicketAccessError(TicketServiceError):
    """User is not a member of the ticket's workspace."""

    def __init__(self, user_id, ticket_or_workspace_id):
        super().__init__(
            f"User '{user_id}' does not have access to '{ticket_or_workspace_id}'."
        )


# =============================================================================
# Invalid operation (400)
# =============================================================================


class InvalidTicketOperationError(TicketServiceError):
    """Operation not allowed for this ticket."""

    pass


class InvalidWorkspaceAssignmentError(TicketServiceError):
    """Assigned agent/workflow belongs to another workspace."""

    pass


class InvalidTicketIdError(TicketServiceError):
    """Ticket id is neither a GUID nor a well-formed composite id."""

    pass


# =============================================================================
# Upstream / operational
# =============================================================================


class ProviderFetchError(TicketServiceError):
    """External provider call failed (HTTP error, timeout, bad payload)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} request failed: {message}")


class MaterializationError(TicketServiceError):
    """Materialization precondition missing (e.g. no priorities configured)."""

    pass
