"""Jira provider (Cloud REST v3 and Server/Data Center REST v2)."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import httpx

from app.db.enums import JiraType, ProviderType
from app.db.models import Integration
from app.services.providers.base import (
    CreatedIssue,
    ExternalTicket,
    HttpTicketProvider,
    ProviderComment,
    ProviderPage,
    parse_offset_token,
)
from app.services.ticket_exceptions import ProviderFetchError

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "key,status,priority,summary,description,comment,created,updated"
FEED_ORDER = "ORDER BY priority DESC, updated DESC"

_PRIORITY_VALUES = {
    "highest": 4,
    "critical": 4,
    "blocker": 4,
    "high": 3,
    "medium": 2,
    "normal": 2,
    "low": 1,
    "lowest": 1,
    "trivial": 1,
}


def map_priority_value(name: str | None) -> int:
    """Jira priority name on the internal 1..4 scale (unknown = medium)."""
    return _PRIORITY_VALUES.get((name or "").strip().lower(), 2)


def priority_color(name: str | None) -> str:
    value = map_priority_value(name)
    return {
        4: "bg-red-100 text-red-800",
        3: "bg-orange-100 text-orange-800",
        2: "bg-yellow-100 text-yellow-800",
        1: "bg-green-100 text-green-800",
    }[value]


def status_color(name: str | None) -> str:
    lowered = (name or "").strip().lower()
    if lowered in ("done", "closed", "resolved"):
        return "bg-green-100 text-green-800"
    if lowered in ("in progress", "in review", "review"):
        return "bg-yellow-100 text-yellow-800"
    if lowered in ("to do", "open", "backlog", "new", "selected for development"):
        return "bg-blue-100 text-blue-800"
    return "bg-gray-100 text-gray-800"


def build_feed_jql(filter_query: str | None) -> str:
    if filter_query and filter_query.strip():
        return f"{filter_query.strip()} {FEED_ORDER}"
    return FEED_ORDER


def browse_url(base_url: str | None, key: str | None) -> str:
    base = (base_url or "").rstrip("/")
    if not base or not key:
        return ""
    return f"{base}/browse/{key}"


# =============================================================================
# Atlassian Document Format (plain-text rendition)
# =============================================================================

_BLOCK_NODES = {"paragraph", "heading", "blockquote", "codeBlock", "listItem", "rule"}


def adf_to_text(node: Any) -> str:
    """Flatten an ADF document (or a plain string body) to text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(adf_to_text(child) for child in node)
    if not isinstance(node, dict):
        return ""

    node_type = node.get("type")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"
    if node_type == "mention":
        return (node.get("attrs") or {}).get("text", "")

    inner = adf_to_text(node.get("content") or [])
    if node_type in _BLOCK_NODES:
        return inner.rstrip("\n") + "\n"
    if node_type == "doc":
        return inner.strip("\n")
    return inner


def text_to_adf(text: str) -> dict[str, Any]:
    """Wrap plain text paragraphs in a minimal ADF document."""
    paragraphs = (text or "").split("\n\n")
    content = []
    for paragraph in paragraphs:
        lines = paragraph.split("\n")
        nodes: list[dict[str, Any]] = []
        for index, line in enumerate(lines):
            if index:
                nodes.append({"type": "hardBreak"})
            if line:
                nodes.append({"type": "text", "text": line})
        content.append({"type": "paragraph", "content": nodes})
    return {"type": "doc", "version": 1, "content": content}


class JiraTicketProvider(HttpTicketProvider):
    """
    Jira issues matching the integration's filter query.

    Cloud pages with ``nextPageToken`` and an explicit ``isLast``; Server
    pages with ``startAt`` against the reported ``total``.
    """

    provider_type = ProviderType.JIRA

    @staticmethod
    def _is_cloud(integration: Integration) -> bool:
        return (integration.jira_type or JiraType.CLOUD) == JiraType.CLOUD

    def _api(self, integration: Integration) -> str:
        return "/rest/api/3" if self._is_cloud(integration) else "/rest/api/2"

    def _open(self, integration: Integration) -> httpx.AsyncClient:
        base_url = (integration.url or "").rstrip("/")
        if not base_url:
            raise ProviderFetchError(self.provider_type.value, "Integration URL is not configured.")
        headers = {"Accept": "application/json"}
        auth = None
        if integration.username:
            auth = httpx.BasicAuth(integration.username, integration.api_key or "")
        elif integration.api_key:
            headers["Authorization"] = f"Bearer {integration.api_key}"
        return self._client(base_url=base_url, headers=headers, auth=auth)

    def _body(self, integration: Integration, text: str):
        return text_to_adf(text) if self._is_cloud(integration) else text

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def _search_cloud(
        self, client, jql: str, fields: str, max_results: int, page_token: str | None
    ) -> tuple[list[dict], bool, str | None]:
        params: dict[str, Any] = {"jql": jql, "fields": fields, "maxResults": max_results}
        if page_token:
            params["nextPageToken"] = page_token
        response = await self._send(lambda: client.get("/rest/api/3/search/jql", params=params))
        data = self._json(response)
        next_token = data.get("nextPageToken") or None
        is_last = bool(data["isLast"]) if "isLast" in data else next_token is None
        if not is_last and next_token is None:
            # Without a cursor the next call would restart from the first page
            logger.warning("Jira reported more results without a nextPageToken; treating page as last")
            is_last = True
        return data.get("issues") or [], is_last, None if is_last else next_token

    async def _search_server(
        self, client, jql: str, fields: str, start_at: int, max_results: int
    ) -> tuple[list[dict], bool, str | None]:
        params = {"jql": jql, "fields": fields, "startAt": start_at, "maxResults": max_results}
        response = await self._send(lambda: client.get("/rest/api/2/search", params=params))
        data = self._json(response)
        issues = data.get("issues") or []
        total = int(data.get("total") or 0)
        is_last = total == 0 or start_at + len(issues) >= total
        return issues, is_last, None if is_last else str(start_at + len(issues))

    async def fetch_tickets(
        self,
        integration: Integration,
        start_at: int = 0,
        max_results: int = 50,
        page_token: str | None = None,
    ) -> ProviderPage:
        jql = build_feed_jql(integration.filter_query)
        async with self._open(integration) as client:
            if self._is_cloud(integration):
                issues, is_last, next_token = await self._search_cloud(
                    client, jql, SEARCH_FIELDS, max_results, page_token
                )
            else:
                issues, is_last, next_token = await self._search_server(
                    client, jql, SEARCH_FIELDS, parse_offset_token(page_token, start_at), max_results
                )

        logger.debug("Fetched %s Jira tickets, is_last=%s", len(issues), is_last)
        tickets = [self._to_ticket(integration, issue) for issue in issues]
        return ProviderPage(tickets=tickets, is_last=is_last, next_page_token=next_token)

    async def get_ticket_by_id(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        api = self._api(integration)
        async with self._open(integration) as client:
            response = await self._send(
                lambda: client.get(f"{api}/issue/{external_ticket_id}", params={"fields": SEARCH_FIELDS}),
                allow_not_found=True,
            )
        if response is None:
            logger.warning(
                "Jira ticket %s not found in integration %s", external_ticket_id, integration.id
            )
            return None
        return self._to_ticket(integration, self._json(response))

    async def add_comment(
        self, integration: Integration, external_ticket_id: str, content: str, author: str
    ) -> ProviderComment:
        api = self._api(integration)
        async with self._open(integration) as client:
            response = await self._send(
                lambda: client.post(
                    f"{api}/issue/{external_ticket_id}/comment",
                    json={"body": self._body(integration, content)},
                )
            )
        data = self._json(response) if response.content else {}
        return ProviderComment(id=str(data.get("id") or uuid.uuid4()), author=author, content=content)

    async def create_issue(
        self, integration: Integration, summary: str, description: str, issue_type: str
    ) -> CreatedIssue:
        logger.info("Creating Jira issue in integration %s (type=%s)", integration.id, issue_type)
        api = self._api(integration)
        async with self._open(integration) as client:
            project_id, issue_type_id = await asyncio.gather(
                self._project_id(client, integration),
                self._issue_type_id(client, api, issue_type),
            )
            payload = {
                "fields": {
                    "summary": summary,
                    "description": self._body(integration, description),
                    "issuetype": {"id": issue_type_id},
                    "project": {"id": project_id},
                }
            }
            response = await self._send(lambda: client.post(f"{api}/issue", json=payload))

        data = self._json(response)
        key = data.get("key")
        if not key:
            raise ProviderFetchError(self.provider_type.value, "No issue key returned.")
        logger.info("Created Jira issue %s in integration %s", key, integration.id)
        return CreatedIssue(
            issue_key=key,
            issue_url=browse_url(integration.url, key),
            issue_id=str(data.get("id") or ""),
        )

    async def _project_id(self, client, integration: Integration) -> str:
        jql = integration.filter_query.strip() if integration.filter_query else "ORDER BY updated DESC"
        if self._is_cloud(integration):
            issues, _, _ = await self._search_cloud(client, jql, "project", 1, None)
        else:
            issues, _, _ = await self._search_server(client, jql, "project", 0, 1)
        project_id = None
        if issues:
            project_id = ((issues[0].get("fields") or {}).get("project") or {}).get("id")
        if not project_id:
            raise ValueError(
                f"No project found in FilterQuery results for integration {integration.id}. "
                "Ensure FilterQuery returns at least one issue."
            )
        return str(project_id)

    async def _issue_type_id(self, client, api: str, issue_type: str) -> str:
        response = await self._send(lambda: client.get(f"{api}/issuetype"))
        issue_types = self._json(response) or []
        wanted = (issue_type or "").strip().lower()
        for item in issue_types:
            if (item.get("name") or "").lower() == wanted:
                return str(item.get("id"))
        available = ", ".join(item.get("name", "") for item in issue_types)
        raise ValueError(f"Issue type '{issue_type}' not found in JIRA. Available types: {available}")

    def _to_ticket(self, integration: Integration, issue: dict) -> ExternalTicket:
        fields = issue.get("fields") or {}
        status_name = (fields.get("status") or {}).get("name") or "Unknown"
        priority_name = (fields.get("priority") or {}).get("name") or "Medium"
        raw_comments = (fields.get("comment") or {}).get("comments") or []
        comments = [
            ProviderComment(
                id=str(c.get("id") or uuid.uuid4()),
                author=(c.get("author") or {}).get("displayName") or "Unknown",
                content=adf_to_text(c.get("body")),
            )
            for c in raw_comments
        ]
        key = issue.get("key") or "UNKNOWN"
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=key,
            title=fields.get("summary") or "Untitled",
            description=adf_to_text(fields.get("description")),
            status_name=status_name,
            status_color=status_color(status_name),
            priority_name=priority_name,
            priority_color=priority_color(priority_name),
            priority_value=map_priority_value(priority_name),
            external_url=browse_url(integration.url, key),
            comments=comments,
        )
