import asyncio
import logging
from dataclasses import dataclass, field

import pytest

from app.db.enums import ProviderType
from app.services import ticket_query_service
from app.services.external_ticket_service import fetch_external_tickets, split_budget
from app.services.page_token import ExternalState
from app.services.providers.registry import ProviderRegistry
from app.services.ticket_exceptions import ProviderFetchError
from conftest import FakeProvider, make_integration


@pytest.mark.parametrize(
    "budget,slots,expected",
    [(10, 3, [4, 3, 3]), (9, 3, [3, 3, 3]), (2, 3, [1, 1, 0]), (5, 1, [5]), (5, 0, [])],
)
def test_split_budget(budget, slots, expected):
    assert split_budget(budget, slots) == expected


@pytest.mark.asyncio
async def test_budget_split_evenly_in_integration_order(db, workspace, fake_provider, registry):
    integrations = [make_integration(db, workspace, name=n, minutes=i) for i, n in enumerate("ABC")]
    for integration, prefix in zip(integrations, "ABC"):
        fake_provider.add(integration, 10, prefix=prefix)

    result = await fetch_external_tickets(integrations, 10, None, registry=registry)

    requested = {key: size for key, size, _ in fake_provider.calls}
    assert requested == {str(i.id): n for i, n in zip(integrations, [4, 3, 3])}
    assert [t.external_ticket_id for t in result.tickets] == [
        "A-1", "A-2", "A-3", "A-4", "B-1", "B-2", "B-3", "C-1", "C-2", "C-3",
    ]
    assert result.has_more
    assert result.state.provider_tokens == {
        str(integrations[0].id): "4",
        str(integrations[1].id): "3",
        str(integrations[2].id): "3",
    }


@pytest.mark.asyncio
async def test_short_provider_budget_is_redistributed(db, workspace, fake_provider, registry):
    short = make_integration(db, workspace, name="short", minutes=0)
    long = make_integration(db, workspace, name="long", minutes=1)
    fake_provider.add(short, 2, prefix="S")
    fake_provider.add(long, 20, prefix="L")

    result = await fetch_external_tickets([short, long], 10, None, registry=registry)

    assert len(result.tickets) == 10
    assert [t.external_ticket_id for t in result.tickets][:2] == ["S-1", "S-2"]
    assert result.has_more
    assert result.state.exhausted_provider_ids == (str(short.id),)
    assert result.state.provider_tokens == {str(long.id): "8"}
    assert result.state.current_provider_index == 1
    assert result.state.total_external_fetched == 10


@pytest.mark.asyncio
async def test_resume_walks_every_ticket_once(db, workspace, fake_provider, registry):
    short = make_integration(db, workspace, name="short", minutes=0)
    long = make_integration(db, workspace, name="long", minutes=1)
    expected = fake_provider.add(short, 2, prefix="S") + fake_provider.add(long, 20, prefix="L")

    seen = []
    state = None
    for _ in range(10):
        result = await fetch_external_tickets([short, long], 10, state, registry=registry)
        seen.extend(result.tickets)
        state = result.state
        if not result.has_more:
            break

    assert sorted(t.external_ticket_id for t in seen) == sorted(t.external_ticket_id for t in expected)
    assert len(seen) == len(expected)
    assert state.total_external_fetched == 22


@pytest.mark.asyncio
async def test_exhausted_provider_is_not_called_again(db, workspace, fake_provider, registry):
    done = make_integration(db, workspace, name="done", minutes=0)
    active = make_integration(db, workspace, name="active", minutes=1)
    fake_provider.add(done, 3)
    fake_provider.add(active, 3)

    prior = ExternalState(exhausted_provider_ids=(str(done.id),))
    result = await fetch_external_tickets([done, active], 5, prior, registry=registry)

    assert {key for key, _, _ in fake_provider.calls} == {str(active.id)}
    assert len(result.tickets) == 3
    assert not result.has_more


@pytest.mark.asyncio
async def test_empty_provider_is_exhausted(db, workspace, fake_provider, registry):
    empty = make_integration(db, workspace, name="empty")

    result = await fetch_external_tickets([empty], 5, None, registry=registry)

    assert result.tickets == []
    assert not result.has_more
    assert result.state.exhausted_provider_ids == (str(empty.id),)


@pytest.mark.asyncio
async def test_unsupported_provider_is_skipped(db, workspace, fake_provider, registry, caplog):
    linear = make_integration(db, workspace, name="linear", provider=ProviderType.LINEAR, minutes=0)
    jira = make_integration(db, workspace, name="jira", minutes=1)
    fake_provider.add(jira, 2)

    with caplog.at_level(logging.WARNING, logger="app.services.external_ticket_service"):
        result = await fetch_external_tickets([linear, jira], 5, None, registry=registry)

    assert len(result.tickets) == 2
    assert not result.has_more
    assert "unsupported provider" in caplog.text


@pytest.mark.asyncio
async def test_single_round_leaves_remaining_work_pending(db, workspace, fake_provider, registry):
    short = make_integration(db, workspace, name="short", minutes=0)
    long = make_integration(db, workspace, name="long", minutes=1)
    fake_provider.add(short, 1)
    fake_provider.add(long, 20)

    result = await fetch_external_tickets([short, long], 10, None, registry=registry, max_rounds=1)

    assert len(result.tickets) == 6
    assert result.has_more
    assert result.state.provider_tokens == {str(long.id): "5"}


@pytest.mark.asyncio
async def test_provider_error_fails_the_fetch(db, workspace, fake_provider, registry):
    ok = make_integration(db, workspace, name="ok", minutes=0)
    broken = make_integration(db, workspace, name="broken", minutes=1)
    fake_provider.add(ok, 5)
    fake_provider.errors[str(broken.id)] = ProviderFetchError("jira", "HTTP 503")

    with pytest.raises(ProviderFetchError, match="HTTP 503"):
        await fetch_external_tickets([ok, broken], 10, None, registry=registry)


@dataclass
class SlowFirstProvider(FakeProvider):
    """Holds the ``slow_id`` integration's call until every other call has returned."""

    slow_id: str = ""
    fast_calls: int = 1
    finished: list = field(default_factory=list)
    others_done: asyncio.Event = field(default_factory=asyncio.Event)

    async def fetch_tickets(self, integration, start_at=0, max_results=50, page_token=None):
        key = str(integration.id)
        if key == self.slow_id:
            await self.others_done.wait()
        page = await super().fetch_tickets(integration, start_at, max_results, page_token)
        self.finished.append(key)
        if len([k for k in self.finished if k != self.slow_id]) >= self.fast_calls:
            self.others_done.set()
        return page


@dataclass
class BlockingProvider(FakeProvider):
    """Never answers; records which calls were started and cancelled."""

    expected: int = 2
    started: list = field(default_factory=list)
    cancelled: list = field(default_factory=list)
    all_started: asyncio.Event = field(default_factory=asyncio.Event)

    async def fetch_tickets(self, integration, start_at=0, max_results=50, page_token=None):
        key = str(integration.id)
        self.started.append(key)
        if len(self.started) >= self.expected:
            self.all_started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.append(key)
            raise


@pytest.mark.asyncio
async def test_results_follow_integration_order_not_completion_order(db, workspace):
    first = make_integration(db, workspace, name="first", minutes=0)
    second = make_integration(db, workspace, name="second", minutes=1)
    provider = SlowFirstProvider(slow_id=str(first.id))
    provider.add(first, 10, prefix="A")
    provider.add(second, 10, prefix="B")
    registry = ProviderRegistry({ProviderType.JIRA: lambda: provider})

    result = await fetch_external_tickets([first, second], 10, None, registry=registry)

    assert provider.finished == [str(second.id), str(first.id)]
    assert [t.external_ticket_id for t in result.tickets] == [
        "A-1", "A-2", "A-3", "A-4", "A-5", "B-1", "B-2", "B-3", "B-4", "B-5",
    ]
    assert list(result.state.provider_tokens.items()) == [(str(first.id), "5"), (str(second.id), "5")]


@pytest.mark.asyncio
async def test_cancelled_feed_request_returns_no_page(db, workspace, user_id, sentiment):
    first = make_integration(db, workspace, name="first", minutes=0)
    second = make_integration(db, workspace, name="second", minutes=1)
    provider = BlockingProvider()
    registry = ProviderRegistry({ProviderType.JIRA: lambda: provider})

    task = asyncio.create_task(
        ticket_query_service.get_tickets(
            db,
            workspace_id=workspace.id,
            user_id=user_id,
            page_token_value=None,
            page_size=10,
            registry=registry,
            sentiment=sentiment,
        )
    )
    await asyncio.wait_for(provider.all_started.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()
    assert sorted(provider.cancelled) == sorted([str(first.id), str(second.id)])
