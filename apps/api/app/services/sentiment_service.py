"""Sentiment scoring collaborator for ticket pages.

Scoring itself lives in a separate service; this module only defines the
batch interface the ticket feed calls and a thin HTTP client for it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 100


@dataclass(frozen=True)
class SentimentRequest:
    ticket_id: str
    comments: list[str]


@dataclass(frozen=True)
class SentimentResult:
    ticket_id: str
    sentiment: int


class SentimentAnalyzer(ABC):
    """Scores a batch of tickets from their comments (0-100)."""

    @abstractmethod
    async def analyze_batch(self, requests: list[SentimentRequest]) -> list[SentimentResult]:
        pass


class NeutralSentimentAnalyzer(SentimentAnalyzer):
    """Used when no scoring service is configured."""

    async def analyze_batch(self, requests: list[SentimentRequest]) -> list[SentimentResult]:
        return [SentimentResult(ticket_id=r.ticket_id, sentiment=NEUTRAL_SCORE) for r in requests]


class HttpSentimentAnalyzer(SentimentAnalyzer):
    """POSTs ``{"tickets": [{"ticketId", "comments"}]}`` to the scoring service."""

    def __init__(self, url: str, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self._transport = transport

    async def analyze_batch(self, requests: list[SentimentRequest]) -> list[SentimentResult]:
        if not requests:
            return []
        async with httpx.AsyncClient(
            timeout=settings.SENTIMENT_TIMEOUT, transport=self._transport
        ) as client:
            response = await client.post(
                self.url,
                json={
                    "tickets": [
                        {"ticketId": r.ticket_id, "comments": r.comments} for r in requests
                    ]
                },
            )
            response.raise_for_status()
            data = response.json()

        return [
            SentimentResult(ticket_id=str(item["ticketId"]), sentiment=int(item["sentiment"]))
            for item in data.get("results", [])
        ]


def build_sentiment_analyzer() -> SentimentAnalyzer:
    if settings.SENTIMENT_SERVICE_URL:
        return HttpSentimentAnalyzer(settings.SENTIMENT_SERVICE_URL)
    return NeutralSentimentAnalyzer()
