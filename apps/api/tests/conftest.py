"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, created and seeded per test
- Workspace/member fixtures and bearer tokens for authenticated tests
- Fake ticket provider + registry for the external phase
- HTTPX AsyncClient wired to the app with dependency overrides
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_AUTO_MIGRATE"] = "False"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CREDENTIALS_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["SENTIMENT_SERVICE_URL"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_provider_registry, get_sentiment_analyzer
from app.core.security import create_access_token
from app.db.base import Base
from app.db.enums import IntegrationType, ProviderType
from app.db.models import Agent, Integration, Ticket, Workflow, Workspace, WorkspaceMember
from app.db.seed import seed_reference_data
from app.db.session import SessionLocal, engine
from app.main import app
from app.services.providers.base import (
    CreatedIssue,
    ExternalTicket,
    ProviderComment,
    ProviderPage,
    TicketProvider,
)
from app.services.providers.registry import ProviderRegistry
from app.services.sentiment_service import NeutralSentimentAnalyzer


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema with seeded statuses/priorities for every test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_reference_data(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def workspace(db: Session) -> Workspace:
    ws = Workspace(name="Support")
    db.add(ws)
    db.commit()
    return ws


@pytest.fixture(scope="function")
def other_workspace(db: Session) -> Workspace:
    ws = Workspace(name="Elsewhere")
    db.add(ws)
    db.commit()
    return ws


@pytest.fixture(scope="function")
def user_id(db: Session, workspace: Workspace) -> uuid.UUID:
    """A user who is a member of ``workspace``."""
    member_id = uuid.uuid4()
    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=member_id))
    db.commit()
    return member_id


@pytest.fixture(scope="function")
def agent(db: Session, workspace: Workspace) -> Agent:
    row = Agent(workspace_id=workspace.id, name="Triage bot")
    db.add(row)
    db.commit()
    return row


@pytest.fixture(scope="function")
def workflow(db: Session, workspace: Workspace) -> Workflow:
    row = Workflow(workspace_id=workspace.id, name="Escalation")
    db.add(row)
    db.commit()
    return row


_clock = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_internal_ticket(db: Session, workspace: Workspace, title: str, *, priority_id=None, status_id=None, minutes: int = 0, **kwargs) -> Ticket:
    """Insert a pure internal ticket with a deterministic updated_at."""
    from app.db.enums import PRIORITY_MEDIUM_ID, STATUS_TODO_ID

    stamp = _clock + timedelta(minutes=minutes)
    ticket = Ticket(
        workspace_id=workspace.id,
        title=title,
        description=f"{title} description",
        status_id=status_id or STATUS_TODO_ID,
        priority_id=priority_id or PRIORITY_MEDIUM_ID,
        is_internal=True,
        created_at=stamp,
        updated_at=stamp,
        **kwargs,
    )
    db.add(ticket)
    db.commit()
    return ticket


def make_integration(db: Session, workspace: Workspace, *, provider=ProviderType.JIRA, name: str = "Tracker", minutes: int = 0, **kwargs) -> Integration:
    integration = Integration(
        workspace_id=workspace.id,
        name=name,
        type=kwargs.pop("type", IntegrationType.TRACKER),
        provider=provider,
        url=kwargs.pop("url", "https://example.atlassian.net"),
        api_key=kwargs.pop("api_key", "secret-token"),
        created_at=_clock + timedelta(minutes=minutes),
        **kwargs,
    )
    db.add(integration)
    db.commit()
    return integration


# =============================================================================
# Fake provider
# =============================================================================

def external_ticket(integration_id, key: str, *, priority_value: int = 2, comments=None, title=None) -> ExternalTicket:
    return ExternalTicket(
        integration_id=integration_id,
        external_ticket_id=key,
        title=title or f"Issue {key}",
        description=f"Body of {key}",
        status_name="Open",
        status_color="bg-blue-100 text-blue-800",
        priority_name="Medium",
        priority_color="bg-yellow-100 text-yellow-800",
        priority_value=priority_value,
        external_url=f"https://tracker.example.com/{key}",
        comments=[
            ProviderComment(id=f"{key}-c{i}", author="alice", content=text)
            for i, text in enumerate(comments or [])
        ],
    )


@dataclass
class FakeProvider(TicketProvider):
    """
    In-memory provider keyed by integration id.

    Pages are offset windows over the configured list; ``is_last`` is only
    set when the window reaches the end, like the real providers.
    """

    provider_type = ProviderType.JIRA

    tickets: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)
    errors: dict = field(default_factory=dict)
    created: list = field(default_factory=list)
    comments: list = field(default_factory=list)

    def add(self, integration, count: int, prefix: str = "T", **kwargs) -> list[ExternalTicket]:
        items = [external_ticket(integration.id, f"{prefix}-{i + 1}", **kwargs) for i in range(count)]
        self.tickets.setdefault(str(integration.id), []).extend(items)
        return items

    async def fetch_tickets(self, integration, start_at=0, max_results=50, page_token=None) -> ProviderPage:
        key = str(integration.id)
        self.calls.append((key, max_results, page_token))
        if key in self.errors:
            raise self.errors[key]
        items = self.tickets.get(key, [])
        offset = int(page_token) if page_token else start_at
        window = items[offset:offset + max_results]
        is_last = offset + len(window) >= len(items)
        next_token = None if is_last else str(offset + len(window))
        return ProviderPage(tickets=window, is_last=is_last, next_page_token=next_token)

    async def get_ticket_by_id(self, integration, external_ticket_id):
        for item in self.tickets.get(str(integration.id), []):
            if item.external_ticket_id == external_ticket_id:
                return item
        return None

    async def add_comment(self, integration, external_ticket_id, content, author):
        self.comments.append((external_ticket_id, content))
        return ProviderComment(id=f"remote-{len(self.comments)}", author=author, content=content)

    async def create_issue(self, integration, summary, description, issue_type):
        key = f"NEW-{len(self.created) + 1}"
        self.created.append((summary, issue_type))
        self.tickets.setdefault(str(integration.id), []).append(
            external_ticket(integration.id, key, title=summary)
        )
        return CreatedIssue(issue_key=key, issue_url=f"https://tracker.example.com/{key}", issue_id="1")


@pytest.fixture(scope="function")
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(scope="function")
def registry(fake_provider: FakeProvider) -> ProviderRegistry:
    """Jira and GitHub both resolve to the fake provider."""
    return ProviderRegistry(
        {
            ProviderType.JIRA: lambda: fake_provider,
            ProviderType.GITHUB: lambda: fake_provider,
        }
    )


@pytest.fixture(scope="function")
def sentiment() -> NeutralSentimentAnalyzer:
    return NeutralSentimentAnalyzer()


# =============================================================================
# Client Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: uuid.UUID
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(scope="function")
def test_auth(user_id: uuid.UUID) -> TestAuth:
    return TestAuth(user_id=user_id, token=create_access_token(user_id))


@pytest.fixture(scope="function")
async def client(db: Session, registry: ProviderRegistry, sentiment) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: registry
    app.dependency_overrides[get_sentiment_analyzer] = lambda: sentiment

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(client: AsyncClient, test_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient sending the member's bearer token."""
    client.headers.update(test_auth.headers)
    yield client
