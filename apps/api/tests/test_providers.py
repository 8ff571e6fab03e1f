"""Provider clients against httpx.MockTransport."""

import json
import logging
import uuid

import httpx
import pytest

from app.core.config import settings
from app.db.enums import IntegrationType, JiraType, ProviderType
from app.db.models import Integration
from app.services.providers.base import fetch_offset_window, priority_from_labels
from app.services.providers.github import GitHubTicketProvider, parse_repository
from app.services.providers.gitlab import GitLabTicketProvider, parse_project
from app.services.providers.jira import (
    JiraTicketProvider,
    adf_to_text,
    build_feed_jql,
    map_priority_value,
    text_to_adf,
)
from app.services.providers.registry import build_default_registry
from app.services.ticket_exceptions import ProviderFetchError


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(settings, "PROVIDER_RETRY_BASE_DELAY", 0.0)


def _integration(provider, url, **kwargs) -> Integration:
    return Integration(
        id=uuid.uuid4(),
        workspace_id=uuid.uuid4(),
        name="tracker",
        type=IntegrationType.TRACKER,
        provider=provider,
        url=url,
        api_key=kwargs.pop("api_key", "tok"),
        is_active=True,
        **kwargs,
    )


def _gh_issue(number, **extra):
    issue = {
        "number": number,
        "title": f"Issue {number}",
        "body": f"Body {number}",
        "state": "open",
        "labels": [],
        "comments": 0,
        "html_url": f"https://github.com/acme/widgets/issues/{number}",
    }
    issue.update(extra)
    return issue


def _paged_handler(items, *, has_next_header):
    """Serve ``items`` by page/per_page; ``has_next_header(page, pages)`` builds continuation headers."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        per_page = int(request.url.params["per_page"])
        seen.append((page, per_page))
        chunk = items[(page - 1) * per_page: page * per_page]
        more = page * per_page < len(items)
        return httpx.Response(200, json=chunk, headers=has_next_header(page, more))

    return handler, seen


# =============================================================================
# Offset windows
# =============================================================================

@pytest.mark.asyncio
async def test_offset_window_aligned_and_unaligned():
    data = list(range(12))

    async def fetch_page(page, per_page):
        chunk = data[(page - 1) * per_page: page * per_page]
        return chunk, page * per_page < len(data)

    assert await fetch_offset_window(fetch_page, 0, 5) == ([0, 1, 2, 3, 4], False)
    assert await fetch_offset_window(fetch_page, 3, 5) == ([3, 4, 5, 6, 7], False)
    assert await fetch_offset_window(fetch_page, 8, 5) == ([8, 9, 10, 11], True)
    assert await fetch_offset_window(fetch_page, 12, 5) == ([], True)


@pytest.mark.parametrize(
    "labels,expected",
    [
        (["bug", "priority: critical"], ("priority: critical", 4)),
        (["Urgent"], ("Urgent", 4)),
        (["high"], ("high", 3)),
        (["low-hanging", "docs"], ("low-hanging", 1)),
        (["bug"], ("Medium", 2)),
    ],
)
def test_priority_from_labels(labels, expected):
    name, _, value = priority_from_labels(labels)
    assert (name, value) == expected


# =============================================================================
# GitHub
# =============================================================================

def test_parse_repository():
    assert parse_repository("https://github.com/acme/widgets.git") == ("https://api.github.com", "acme", "widgets")
    assert parse_repository("https://git.corp.example/team/app") == ("https://git.corp.example/api/v3", "team", "app")
    with pytest.raises(ValueError):
        parse_repository("https://github.com/acme")


@pytest.mark.asyncio
async def test_github_exact_page_without_next_link_is_last():
    issues = [_gh_issue(n) for n in range(1, 51)]
    handler, seen = _paged_handler(issues, has_next_header=lambda page, more: {})
    provider = GitHubTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    page = await provider.fetch_tickets(integration, max_results=50)

    assert seen == [(1, 50)]
    assert len(page.tickets) == 50
    assert page.is_last
    assert page.next_page_token is None


@pytest.mark.asyncio
async def test_github_next_link_and_offset_cursor():
    issues = [_gh_issue(n) for n in range(1, 13)]

    def link(page, more):
        if not more:
            return {}
        return {"Link": f'<https://api.github.com/repos/acme/widgets/issues?page={page + 1}>; rel="next"'}

    handler, seen = _paged_handler(issues, has_next_header=link)
    provider = GitHubTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    first = await provider.fetch_tickets(integration, max_results=3)
    assert [t.external_ticket_id for t in first.tickets] == ["1", "2", "3"]
    assert not first.is_last
    assert first.next_page_token == "3"

    # Budget grows between pages; the item offset keeps the position exact
    second = await provider.fetch_tickets(integration, max_results=5, page_token=first.next_page_token)
    assert [t.external_ticket_id for t in second.tickets] == ["4", "5", "6", "7", "8"]
    assert second.next_page_token == "8"
    assert seen[-2:] == [(1, 5), (2, 5)]

    last = await provider.fetch_tickets(integration, max_results=5, page_token="8")
    assert [t.external_ticket_id for t in last.tickets] == ["9", "10", "11", "12"]
    assert last.is_last


@pytest.mark.asyncio
async def test_github_maps_labels_comments_and_headers():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"
        if request.url.path == "/repos/acme/widgets/issues/7/comments":
            return httpx.Response(
                200,
                json=[{"id": 99, "user": {"login": "octocat"}, "body": "me too", "created_at": "2024-02-01T10:00:00Z"}],
            )
        assert request.url.path == "/repos/acme/widgets/issues"
        issue = _gh_issue(7, comments=1, state="closed", labels=[{"name": "priority: high"}])
        return httpx.Response(200, json=[issue])

    provider = GitHubTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    page = await provider.fetch_tickets(integration, max_results=10)

    ticket = page.tickets[0]
    assert ticket.priority_value == 3
    assert ticket.status_name == "closed"
    assert ticket.external_url == "https://github.com/acme/widgets/issues/7"
    assert [(c.author, c.content) for c in ticket.comments] == [("octocat", "me too")]


@pytest.mark.asyncio
async def test_github_errors_become_provider_fetch_errors():
    provider = GitHubTicketProvider(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    with pytest.raises(ProviderFetchError, match="HTTP 401"):
        await provider.fetch_tickets(integration, max_results=10)


@pytest.mark.asyncio
async def test_github_create_issue_uses_number_as_key():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["labels"] == ["bug"]
        return httpx.Response(201, json={"number": 31, "html_url": "https://github.com/acme/widgets/issues/31"})

    provider = GitHubTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    created = await provider.create_issue(integration, "Title", "Body", "Bug")

    assert created.issue_key == "31"
    assert created.issue_url.endswith("/31")


@pytest.mark.asyncio
async def test_github_missing_issue_returns_none():
    provider = GitHubTicketProvider(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    integration = _integration(ProviderType.GITHUB, "https://github.com/acme/widgets")

    assert await provider.get_ticket_by_id(integration, "404") is None
    assert await provider.get_ticket_by_id(integration, "not-a-number") is None


# =============================================================================
# GitLab
# =============================================================================

def test_parse_project():
    assert parse_project("https://gitlab.example.com/group/sub/proj") == (
        "https://gitlab.example.com",
        "group%2Fsub%2Fproj",
    )
    with pytest.raises(ValueError):
        parse_project("https://gitlab.example.com/lonely")


@pytest.mark.asyncio
async def test_gitlab_next_page_header_and_notes():
    issues = [
        {
            "iid": n,
            "title": f"GL {n}",
            "description": "",
            "state": "opened",
            "labels": ["critical"] if n == 1 else [],
            "user_notes_count": 1 if n == 1 else 0,
            "web_url": f"https://gitlab.example.com/group/proj/-/issues/{n}",
        }
        for n in range(1, 4)
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["PRIVATE-TOKEN"] == "tok"
        assert "group%2Fproj" in request.url.raw_path.decode()
        if request.url.path.endswith("/notes"):
            return httpx.Response(
                200,
                json=[
                    {"id": 1, "body": "changed the description", "system": True, "author": {"username": "bot"}},
                    {"id": 2, "body": "needs a fix", "system": False, "author": {"username": "dev"}},
                ],
            )
        page = int(request.url.params["page"])
        per_page = int(request.url.params["per_page"])
        chunk = issues[(page - 1) * per_page: page * per_page]
        next_page = str(page + 1) if page * per_page < len(issues) else ""
        return httpx.Response(200, json=chunk, headers={"X-Next-Page": next_page})

    provider = GitLabTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.GITLAB, "https://gitlab.example.com/group/proj")

    first = await provider.fetch_tickets(integration, max_results=2)
    assert [t.external_ticket_id for t in first.tickets] == ["1", "2"]
    assert not first.is_last
    assert first.tickets[0].priority_value == 4
    assert [c.content for c in first.tickets[0].comments] == ["needs a fix"]

    rest = await provider.fetch_tickets(integration, max_results=2, page_token=first.next_page_token)
    assert [t.external_ticket_id for t in rest.tickets] == ["3"]
    assert rest.is_last


# =============================================================================
# Jira
# =============================================================================

def test_jira_helpers():
    assert build_feed_jql(" project = OPS ") == "project = OPS ORDER BY priority DESC, updated DESC"
    assert build_feed_jql(None) == "ORDER BY priority DESC, updated DESC"
    assert [map_priority_value(n) for n in ("Highest", "High", "Medium", "Low", "Lowest", "Weird", None)] == [
        4, 3, 2, 1, 1, 2, 2,
    ]
    assert adf_to_text(text_to_adf("line one\nline two\n\nsecond para")) == "line one\nline two\nsecond para"


def _jira_issue(key, priority="High"):
    return {
        "key": key,
        "fields": {
            "summary": f"Summary {key}",
            "description": {
                "type": "doc",
                "version": 1,
                "content": [{"type": "paragraph", "content": [{"type": "text", "text": "It broke"}]}],
            },
            "status": {"name": "In Progress"},
            "priority": {"name": priority},
            "comment": {"comments": [{"id": "10", "author": {"displayName": "Ann"}, "body": "Looking"}]},
        },
    }


@pytest.mark.asyncio
async def test_jira_cloud_uses_next_page_token():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        assert request.url.path == "/rest/api/3/search/jql"
        assert request.headers["Authorization"].startswith("Basic ")
        if "nextPageToken" not in request.url.params:
            return httpx.Response(200, json={"issues": [_jira_issue("OPS-1", "Highest")], "nextPageToken": "abc", "isLast": False})
        assert request.url.params["nextPageToken"] == "abc"
        return httpx.Response(200, json={"issues": [_jira_issue("OPS-2")], "isLast": True})

    provider = JiraTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(
        ProviderType.JIRA, "https://acme.atlassian.net", username="bot@acme.io", filter_query="project = OPS"
    )

    first = await provider.fetch_tickets(integration, max_results=1)
    assert requests[0].url.params["jql"] == "project = OPS ORDER BY priority DESC, updated DESC"
    assert requests[0].url.params["maxResults"] == "1"
    ticket = first.tickets[0]
    assert ticket.external_ticket_id == "OPS-1"
    assert ticket.priority_value == 4
    assert ticket.description == "It broke"
    assert ticket.external_url == "https://acme.atlassian.net/browse/OPS-1"
    assert [c.author for c in ticket.comments] == ["Ann"]
    assert not first.is_last
    assert first.next_page_token == "abc"

    second = await provider.fetch_tickets(integration, max_results=1, page_token="abc")
    assert second.is_last
    assert second.next_page_token is None


@pytest.mark.asyncio
async def test_jira_cloud_more_results_without_cursor_ends_the_walk(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"issues": [_jira_issue("OPS-1")], "isLast": False})

    provider = JiraTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.JIRA, "https://acme.atlassian.net", username="bot@acme.io")

    with caplog.at_level(logging.WARNING, logger="app.services.providers.jira"):
        page = await provider.fetch_tickets(integration, max_results=1)

    assert [t.external_ticket_id for t in page.tickets] == ["OPS-1"]
    assert page.is_last
    assert page.next_page_token is None
    assert "without a nextPageToken" in caplog.text


@pytest.mark.asyncio
async def test_jira_server_pages_by_start_at():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rest/api/2/search"
        assert request.headers["Authorization"] == "Bearer tok"
        start = int(request.url.params["startAt"])
        keys = ["OPS-1", "OPS-2", "OPS-3"][start:start + int(request.url.params["maxResults"])]
        return httpx.Response(200, json={"issues": [_jira_issue(k) for k in keys], "total": 3, "startAt": start})

    provider = JiraTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.JIRA, "https://jira.corp.example", jira_type=JiraType.ON_PREMISE)

    first = await provider.fetch_tickets(integration, max_results=2)
    assert [t.external_ticket_id for t in first.tickets] == ["OPS-1", "OPS-2"]
    assert first.next_page_token == "2"
    assert not first.is_last

    second = await provider.fetch_tickets(integration, max_results=2, page_token="2")
    assert [t.external_ticket_id for t in second.tickets] == ["OPS-3"]
    assert second.is_last


@pytest.mark.asyncio
async def test_jira_create_issue_resolves_project_and_type():
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/rest/api/3/search/jql":
            return httpx.Response(200, json={"issues": [{"key": "OPS-1", "fields": {"project": {"id": "10001"}}}], "isLast": True})
        if request.url.path == "/rest/api/3/issuetype":
            return httpx.Response(200, json=[{"id": "1", "name": "Bug"}, {"id": "3", "name": "Task"}])
        assert request.method == "POST"
        posted.append(json.loads(request.content))
        return httpx.Response(201, json={"id": "20000", "key": "OPS-77"})

    provider = JiraTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.JIRA, "https://acme.atlassian.net", username="bot", filter_query="project = OPS")

    created = await provider.create_issue(integration, "New thing", "Details", "task")

    assert created.issue_key == "OPS-77"
    assert created.issue_url == "https://acme.atlassian.net/browse/OPS-77"
    fields = posted[0]["fields"]
    assert fields["project"] == {"id": "10001"}
    assert fields["issuetype"] == {"id": "3"}
    assert fields["description"]["type"] == "doc"

    with pytest.raises(ValueError, match="Available types: Bug, Task"):
        await provider.create_issue(integration, "New thing", "Details", "Epic")


@pytest.mark.asyncio
async def test_jira_retries_server_errors_then_fails():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    provider = JiraTicketProvider(transport=httpx.MockTransport(handler))
    integration = _integration(ProviderType.JIRA, "https://acme.atlassian.net", username="bot")

    with pytest.raises(ProviderFetchError, match="HTTP 503"):
        await provider.fetch_tickets(integration, max_results=5)
    assert len(calls) == settings.PROVIDER_MAX_ATTEMPTS


# =============================================================================
# Registry
# =============================================================================

def test_default_registry_supports_trackers_only():
    registry = build_default_registry()

    assert isinstance(registry.get(ProviderType.JIRA), JiraTicketProvider)
    assert registry.get(ProviderType.GITHUB) is registry.get(ProviderType.GITHUB)
    assert registry.is_supported(ProviderType.GITLAB)
    for unsupported in (ProviderType.CONFLUENCE, ProviderType.NOTION, ProviderType.LINEAR, ProviderType.AZURE_DEVOPS, ProviderType.CUSTOM):
        assert registry.get(unsupported) is None
