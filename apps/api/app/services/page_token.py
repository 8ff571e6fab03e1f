"""Opaque page token codec for the cross-source ticket feed.

A token is URL-safe base64 of compact JSON:

    {"phase": "internal", "internalOffset": 10}
    {"phase": "external", "internalOffset": 0, "externalState": {...}}

Parsing never raises; anything unreadable starts the feed over.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from app.core.config import settings
from app.db.enums import PagePhase

logger = logging.getLogger(__name__)

# Largest offset or counter a token may carry; fits a 32-bit INTEGER column
MAX_TOKEN_COUNTER = 2**31 - 1


@dataclass(frozen=True)
class ExternalState:
    """Per-integration cursor state carried between external pages."""

    current_provider_index: int = 0
    provider_tokens: Mapping[str, str] = field(default_factory=dict)
    total_external_fetched: int = 0
    exhausted_provider_ids: tuple[str, ...] = ()

    def is_exhausted(self, integration_id) -> bool:
        return str(integration_id) in self.exhausted_provider_ids

    def token_for(self, integration_id) -> str | None:
        return self.provider_tokens.get(str(integration_id))


@dataclass(frozen=True)
class PageState:
    """Where the next page of the feed starts."""

    phase: PagePhase = PagePhase.INTERNAL
    internal_offset: int = 0
    external_state: ExternalState | None = None

    def advance_internal(self, count: int) -> "PageState":
        return replace(self, internal_offset=self.internal_offset + count)


START_STATE = PageState()


# =============================================================================
# Serialization
# =============================================================================


def _counter(value: Any, default: int = 0) -> int:
    """Non-negative bounded int from a token field; anything else is malformed."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("counter is not an integer")
    if value < 0 or value > MAX_TOKEN_COUNTER:
        raise ValueError("counter out of range")
    return value


def _external_to_dict(state: ExternalState) -> dict[str, Any]:
    return {
        "currentProviderIndex": state.current_provider_index,
        "providerTokens": dict(state.provider_tokens),
        "totalExternalFetched": state.total_external_fetched,
        "exhaustedProviderIds": list(state.exhausted_provider_ids),
    }


def _external_from_dict(payload: Mapping[str, Any]) -> ExternalState:
    tokens = payload.get("providerTokens") or {}
    exhausted = payload.get("exhaustedProviderIds") or []
    if not isinstance(tokens, dict) or not isinstance(exhausted, list):
        raise ValueError("malformed external state")
    return ExternalState(
        current_provider_index=_counter(payload.get("currentProviderIndex")),
        provider_tokens={str(k): str(v) for k, v in tokens.items() if v is not None},
        total_external_fetched=_counter(payload.get("totalExternalFetched")),
        exhausted_provider_ids=tuple(str(i) for i in exhausted),
    )


def serialize(state: PageState) -> str:
    """Encode a page state as an opaque token."""
    payload: dict[str, Any] = {
        "phase": state.phase.value,
        "internalOffset": state.internal_offset,
    }
    if state.external_state is not None:
        payload["externalState"] = _external_to_dict(state.external_state)
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def parse(token: str | None) -> PageState:
    """Decode a token; malformed input yields the start state."""
    if not token or not token.strip():
        return START_STATE
    try:
        decoded = base64.urlsafe_b64decode(token.strip().encode("ascii")).decode("utf-8")
        payload = json.loads(decoded)
        if not isinstance(payload, dict):
            raise ValueError("token payload is not an object")

        phase = PagePhase(payload.get("phase"))
        offset = _counter(payload.get("internalOffset"))

        external_payload = payload.get("externalState")
        external_state = None
        if external_payload is not None:
            if not isinstance(external_payload, dict):
                raise ValueError("malformed external state")
            external_state = _external_from_dict(external_payload)

        return PageState(phase=phase, internal_offset=offset, external_state=external_state)
    except (ValueError, TypeError, KeyError, OverflowError) as exc:
        # binascii.Error, UnicodeError and JSONDecodeError are ValueErrors
        logger.info("Ignoring malformed page token: %s", exc.__class__.__name__)
        return START_STATE


def normalize_page_size(requested: int | None) -> int:
    """Clamp a requested page size into the supported range."""
    if requested is None or requested <= 0:
        return settings.TICKETS_DEFAULT_PAGE_SIZE
    return min(requested, settings.TICKETS_MAX_PAGE_SIZE)
