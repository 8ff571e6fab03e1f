"""External fetch aggregator.

Fans one page-size budget out over a workspace's tracker integrations and
carries each integration's cursor in ``ExternalState`` so the next call
resumes every integration where it stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Sequence

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.models import Integration
from app.services.page_token import ExternalState
from app.services.providers.base import ExternalTicket, ProviderPage, TicketProvider
from app.services.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalFetchResult:
    """Tickets for this page, whether any integration has more, and the cursor state."""

    tickets: list[ExternalTicket]
    has_more: bool
    state: ExternalState


def _resolve_providers(
    integrations: Sequence[Integration], registry: ProviderRegistry
) -> list[tuple[Integration, TicketProvider]]:
    resolved = []
    for integration in integrations:
        provider = registry.get(integration.provider)
        if provider is None:
            logger.warning(
                "Skipping integration with unsupported provider %s",
                integration.provider,
                extra=build_log_context(integration_id=str(integration.id)),
            )
            continue
        resolved.append((integration, provider))
    return resolved


def split_budget(budget: int, slots: int) -> list[int]:
    """Even split with the remainder going to the first slots."""
    if slots <= 0:
        return []
    base, extra = divmod(budget, slots)
    return [base + (1 if index < extra else 0) for index in range(slots)]


async def fetch_external_tickets(
    integrations: Sequence[Integration],
    budget: int,
    prior_state: ExternalState | None,
    *,
    registry: ProviderRegistry,
    max_rounds: int | None = None,
) -> ExternalFetchResult:
    """
    Fill up to ``budget`` tickets from the integrations, in integration order.

    Each round splits the remaining budget across integrations that are not
    exhausted; budget an integration could not use is redistributed in the
    next round. An integration is exhausted once it signals its last page or
    returns nothing. Calls within a round run concurrently; provider errors
    propagate and fail the whole fetch.
    """
    state = prior_state or ExternalState()
    rounds = max_rounds or settings.EXTERNAL_FETCH_MAX_ROUNDS

    providers = _resolve_providers(integrations, registry)
    collected: list[ExternalTicket] = []

    for _ in range(rounds):
        remaining = budget - len(collected)
        if remaining <= 0:
            break

        active = [(i, p) for i, p in providers if not state.is_exhausted(i.id)]
        if not active:
            break

        plan = [
            (integration, provider, share)
            for (integration, provider), share in zip(active, split_budget(remaining, len(active)))
            if share > 0
        ]
        pages: list[ProviderPage] = await asyncio.gather(
            *(
                provider.fetch_tickets(
                    integration,
                    start_at=0,
                    max_results=share,
                    page_token=state.token_for(integration.id),
                )
                for integration, provider, share in plan
            )
        )

        tokens = dict(state.provider_tokens)
        exhausted = list(state.exhausted_provider_ids)
        round_count = 0
        for (integration, _provider, _share), page in zip(plan, pages):
            key = str(integration.id)
            tickets = page.tickets
            collected.extend(tickets)
            round_count += len(tickets)

            if page.next_page_token:
                tokens[key] = page.next_page_token
            else:
                tokens.pop(key, None)
            if page.is_last or not tickets:
                exhausted.append(key)

        state = replace(
            state,
            provider_tokens=tokens,
            total_external_fetched=state.total_external_fetched + round_count,
            exhausted_provider_ids=tuple(exhausted),
        )
        if round_count == 0:
            break

    pending = [index for index, (i, _) in enumerate(providers) if not state.is_exhausted(i.id)]

    logger.debug(
        "External fetch collected %s/%s tickets, %s integrations pending",
        len(collected),
        budget,
        len(pending),
    )
    return ExternalFetchResult(
        tickets=collected,
        has_more=bool(pending),
        state=replace(state, current_provider_index=pending[0] if pending else 0),
    )
