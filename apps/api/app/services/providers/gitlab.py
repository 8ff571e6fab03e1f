"""GitLab Issues provider (REST v4)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from urllib.parse import quote, urlparse

from app.db.enums import ProviderType
from app.db.models import Integration
from app.services.providers.base import (
    CreatedIssue,
    ExternalTicket,
    HttpTicketProvider,
    ProviderComment,
    ProviderPage,
    fetch_offset_window,
    parse_offset_token,
    priority_from_labels,
    state_color,
)
from app.services.ticket_exceptions import ProviderFetchError

logger = logging.getLogger(__name__)

NOTES_PER_PAGE = 100


def parse_project(url: str | None) -> tuple[str, str]:
    """Split ``https://gitlab.example.com/group/sub/project`` into (base_url, encoded path)."""
    parsed = urlparse((url or "").strip())
    path = parsed.path.strip("/").removesuffix(".git")
    if not parsed.netloc or "/" not in path:
        raise ValueError(f"Invalid GitLab project URL: '{url}'")
    return f"{parsed.scheme or 'https'}://{parsed.netloc}", quote(path, safe="")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GitLabTicketProvider(HttpTicketProvider):
    """Issues of one project; X-Next-Page decides whether more data exists."""

    provider_type = ProviderType.GITLAB

    def _open(self, integration: Integration):
        try:
            base_url, project = parse_project(integration.url)
        except ValueError as exc:
            raise ProviderFetchError(self.provider_type.value, str(exc)) from exc
        headers = {"Accept": "application/json"}
        if integration.api_key:
            headers["PRIVATE-TOKEN"] = integration.api_key
        return self._client(base_url=base_url, headers=headers), f"/api/v4/projects/{project}"

    async def fetch_tickets(
        self,
        integration: Integration,
        start_at: int = 0,
        max_results: int = 50,
        page_token: str | None = None,
    ) -> ProviderPage:
        offset = parse_offset_token(page_token, start_at)
        client, project_path = self._open(integration)
        async with client:

            async def fetch_page(page: int, per_page: int):
                response = await self._send(
                    lambda: client.get(
                        f"{project_path}/issues",
                        params={
                            "state": "all",
                            "page": page,
                            "per_page": per_page,
                            "order_by": "updated_at",
                            "sort": "desc",
                        },
                    )
                )
                # X-Next-Page is empty on the last page
                has_next = bool(response.headers.get("X-Next-Page", "").strip())
                return self._json(response), has_next

            issues, is_last = await fetch_offset_window(fetch_page, offset, max_results)
            tickets = await asyncio.gather(
                *(self._to_ticket(client, project_path, integration, issue) for issue in issues)
            )

        logger.info("Fetched %s tickets from GitLab", len(tickets))
        next_token = None if is_last else str(offset + len(issues))
        return ProviderPage(tickets=list(tickets), is_last=is_last, next_page_token=next_token)

    async def get_ticket_by_id(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        iid = external_ticket_id.lstrip("#")
        if not iid.isdigit():
            return None
        client, project_path = self._open(integration)
        async with client:
            response = await self._send(
                lambda: client.get(f"{project_path}/issues/{iid}"), allow_not_found=True
            )
            if response is None:
                logger.warning("Issue %s not found in GitLab integration %s", iid, integration.id)
                return None
            return await self._to_ticket(client, project_path, integration, self._json(response))

    async def add_comment(
        self, integration: Integration, external_ticket_id: str, content: str, author: str
    ) -> ProviderComment:
        iid = external_ticket_id.lstrip("#")
        if not iid.isdigit():
            raise ValueError(f"Invalid issue IID: {external_ticket_id}")
        client, project_path = self._open(integration)
        async with client:
            response = await self._send(
                lambda: client.post(f"{project_path}/issues/{iid}/notes", json={"body": content})
            )
        note = self._json(response)
        return ProviderComment(
            id=str(note.get("id", "")),
            author=(note.get("author") or {}).get("username") or author,
            content=note.get("body") or content,
            created_at=_parse_timestamp(note.get("created_at")),
        )

    async def create_issue(
        self, integration: Integration, summary: str, description: str, issue_type: str
    ) -> CreatedIssue:
        payload = {"title": summary, "description": description}
        if issue_type and issue_type.lower() != "task":
            payload["labels"] = issue_type.lower()
        client, project_path = self._open(integration)
        async with client:
            response = await self._send(lambda: client.post(f"{project_path}/issues", json=payload))
        data = self._json(response)
        iid = data.get("iid")
        if iid is None:
            raise ProviderFetchError(self.provider_type.value, "No issue IID returned.")
        return CreatedIssue(issue_key=str(iid), issue_url=data.get("web_url") or "", issue_id=str(iid))

    async def _notes(self, client, project_path: str, iid) -> list[ProviderComment]:
        response = await self._send(
            lambda: client.get(
                f"{project_path}/issues/{iid}/notes",
                params={"per_page": NOTES_PER_PAGE, "sort": "asc"},
            )
        )
        return [
            ProviderComment(
                id=str(n.get("id", "")),
                author=(n.get("author") or {}).get("username") or "Unknown",
                content=n.get("body") or "",
                created_at=_parse_timestamp(n.get("created_at")),
            )
            for n in self._json(response)
            if not n.get("system")
        ]

    async def _to_ticket(self, client, project_path: str, integration: Integration, issue: dict) -> ExternalTicket:
        iid = issue.get("iid")
        notes = []
        if issue.get("user_notes_count"):
            notes = await self._notes(client, project_path, iid)

        state = issue.get("state") or "unknown"
        labels = [label for label in issue.get("labels") or [] if isinstance(label, str)]
        priority_name, priority_color, priority_value = priority_from_labels(labels)
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=str(iid),
            title=issue.get("title") or "Untitled",
            description=issue.get("description") or "",
            status_name=state,
            status_color=state_color(state),
            priority_name=priority_name,
            priority_color=priority_color,
            priority_value=priority_value,
            external_url=issue.get("web_url") or "",
            comments=notes,
        )
