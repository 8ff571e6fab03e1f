"""GitHub Issues provider (REST v3)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from urllib.parse import urlparse

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

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
COMMENTS_PER_PAGE = 100


def parse_repository(url: str | None) -> tuple[str, str, str]:
    """Split an integration URL into (api_base, owner, repo).

    ``https://github.com/{owner}/{repo}`` targets api.github.com; any other
    host is treated as GitHub Enterprise (``{host}/api/v3``).
    """
    parsed = urlparse((url or "").strip())
    parts = [p for p in parsed.path.split("/") if p]
    if not parsed.netloc or len(parts) < 2:
        raise ValueError(f"Invalid GitHub repository URL: '{url}'")
    owner, repo = parts[0], parts[1].removesuffix(".git")
    if parsed.netloc.lower() in ("github.com", "www.github.com"):
        return GITHUB_API_URL, owner, repo
    return f"{parsed.scheme or 'https'}://{parsed.netloc}/api/v3", owner, repo


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GitHubTicketProvider(HttpTicketProvider):
    """Issues of one repository; cursor is an item offset over 1-indexed pages."""

    provider_type = ProviderType.GITHUB

    def _open(self, integration: Integration):
        try:
            base_url, owner, repo = parse_repository(integration.url)
        except ValueError as exc:
            raise ProviderFetchError(self.provider_type.value, str(exc)) from exc
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if integration.api_key:
            headers["Authorization"] = f"Bearer {integration.api_key}"
        return self._client(base_url=base_url, headers=headers), f"/repos/{owner}/{repo}"

    async def fetch_tickets(
        self,
        integration: Integration,
        start_at: int = 0,
        max_results: int = 50,
        page_token: str | None = None,
    ) -> ProviderPage:
        offset = parse_offset_token(page_token, start_at)
        client, repo_path = self._open(integration)
        async with client:

            async def fetch_page(page: int, per_page: int):
                response = await self._send(
                    lambda: client.get(
                        f"{repo_path}/issues",
                        params={
                            "state": "all",
                            "page": page,
                            "per_page": per_page,
                            "sort": "updated",
                            "direction": "desc",
                        },
                    )
                )
                # Link: <...>; rel="next" is the only end-of-data signal
                return self._json(response), "next" in response.links

            issues, is_last = await fetch_offset_window(fetch_page, offset, max_results)
            tickets = await asyncio.gather(
                *(self._to_ticket(client, repo_path, integration, issue) for issue in issues)
            )

        logger.info("Fetched %s tickets from GitHub", len(tickets))
        next_token = None if is_last else str(offset + len(issues))
        return ProviderPage(tickets=list(tickets), is_last=is_last, next_page_token=next_token)

    async def get_ticket_by_id(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        number = external_ticket_id.lstrip("#")
        if not number.isdigit():
            return None
        client, repo_path = self._open(integration)
        async with client:
            response = await self._send(
                lambda: client.get(f"{repo_path}/issues/{number}"), allow_not_found=True
            )
            if response is None:
                return None
            return await self._to_ticket(client, repo_path, integration, self._json(response))

    async def add_comment(
        self, integration: Integration, external_ticket_id: str, content: str, author: str
    ) -> ProviderComment:
        number = external_ticket_id.lstrip("#")
        if not number.isdigit():
            raise ValueError(f"Invalid issue number: {external_ticket_id}")
        client, repo_path = self._open(integration)
        async with client:
            response = await self._send(
                lambda: client.post(f"{repo_path}/issues/{number}/comments", json={"body": content})
            )
        data = self._json(response)
        return ProviderComment(
            id=str(data.get("id", "")),
            author=(data.get("user") or {}).get("login") or author,
            content=data.get("body") or content,
            created_at=_parse_timestamp(data.get("created_at")),
        )

    async def create_issue(
        self, integration: Integration, summary: str, description: str, issue_type: str
    ) -> CreatedIssue:
        labels = []
        if issue_type and issue_type.lower() != "task":
            labels.append(issue_type.lower())
        client, repo_path = self._open(integration)
        async with client:
            response = await self._send(
                lambda: client.post(
                    f"{repo_path}/issues",
                    json={"title": summary, "body": description, "labels": labels},
                )
            )
        data = self._json(response)
        number = data.get("number")
        if number is None:
            raise ProviderFetchError(self.provider_type.value, "No issue number returned.")
        return CreatedIssue(
            issue_key=str(number),
            issue_url=data.get("html_url") or "",
            issue_id=str(number),
        )

    async def _comments(self, client, repo_path: str, number) -> list[ProviderComment]:
        response = await self._send(
            lambda: client.get(
                f"{repo_path}/issues/{number}/comments", params={"per_page": COMMENTS_PER_PAGE}
            )
        )
        return [
            ProviderComment(
                id=str(c.get("id", "")),
                author=(c.get("user") or {}).get("login") or "Unknown",
                content=c.get("body") or "",
                created_at=_parse_timestamp(c.get("updated_at") or c.get("created_at")),
            )
            for c in self._json(response)
        ]

    async def _to_ticket(self, client, repo_path: str, integration: Integration, issue: dict) -> ExternalTicket:
        number = issue.get("number")
        comments = []
        if issue.get("comments"):
            comments = await self._comments(client, repo_path, number)

        state = issue.get("state") or "unknown"
        labels = [label.get("name", "") for label in issue.get("labels") or [] if isinstance(label, dict)]
        priority_name, priority_color, priority_value = priority_from_labels(labels)
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=str(number),
            title=issue.get("title") or "Untitled",
            description=issue.get("body") or "",
            status_name=state,
            status_color=state_color(state),
            priority_name=priority_name,
            priority_color=priority_color,
            priority_value=priority_value,
            external_url=issue.get("html_url") or "",
            comments=comments,
        )
