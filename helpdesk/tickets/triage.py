from __future__ import annotations

import json
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from .errors import TriageUnavailable
from .models import DEFAULT_CATEGORY
from .state import TicketPriority

logger = logging.getLogger(__name__)

TRIAGE_CATEGORIES: tuple[str, ...] = ("Software", "Hardware", "Network", "Access", "Other")
SUMMARY_MAX_LENGTH = 120

_NORMALIZE_RE = re.compile(r"\s+")

_SYSTEM_PROMPT = (
    "You triage internal IT support requests. Reply with a JSON object with the keys "
    '"priority" (one of "low", "medium", "high"), "summary" (one sentence) and '
    f'"category" (one of {", ".join(repr(c) for c in TRIAGE_CATEGORIES)}).'
)


@dataclass(frozen=True, slots=True)
class TriageResult:
    """Classification returned by a triage function.

    ``priority`` is advisory only; the requester's choice is what gets stored.
    """

    summary: str
    category: str = DEFAULT_CATEGORY
    priority: TicketPriority | None = None


class TriageFunction(Protocol):
    async def __call__(self, subject: str, description: str = "") -> TriageResult:
        ...


def normalize_ticket_text(text: str) -> str:
    """Collapse whitespace and unicode-normalize ticket text."""

    normalized = unicodedata.normalize("NFKC", text or "")
    return _NORMALIZE_RE.sub(" ", normalized).strip()


def truncate_summary(text: str, limit: int = SUMMARY_MAX_LENGTH) -> str:
    normalized = normalize_ticket_text(text)
    if len(normalized) <= limit:
        return normalized
    return normalized[: limit - 1].rstrip() + "…"


def fallback_triage(subject: str) -> TriageResult:
    """Deterministic result used whenever triage cannot be trusted."""

    return TriageResult(summary=truncate_summary(subject), category=DEFAULT_CATEGORY)


def parse_triage_payload(payload: str | Mapping[str, Any]) -> TriageResult:
    """Validate a triage response, raising :class:`TriageUnavailable` when unusable."""

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise TriageUnavailable(f"Triage returned invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise TriageUnavailable("Triage response must be a JSON object")

    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise TriageUnavailable("Triage response is missing a summary")

    category = payload.get("category")
    if not isinstance(category, str) or not category.strip():
        category = DEFAULT_CATEGORY

    raw_priority = payload.get("priority")
    priority: TicketPriority | None = None
    if isinstance(raw_priority, str):
        try:
            priority = TicketPriority(raw_priority.strip().lower())
        except ValueError:
            priority = None

    return TriageResult(
        summary=truncate_summary(summary),
        category=category.strip(),
        priority=priority,
    )


class LLMTriage:
    """Triage backed by an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def __call__(self, subject: str, description: str = "") -> TriageResult:
        if not self.is_available():
            raise TriageUnavailable("Triage API key is not configured")

        body = {
            "model": self._model,
            "temperature": 0.0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Subject: {subject}\nDescription: {description or '-'}",
                },
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise TriageUnavailable(f"Triage request failed: {exc}") from exc
        except ValueError as exc:
            raise TriageUnavailable("Triage endpoint returned a non-JSON body") from exc

        if not isinstance(data, Mapping):
            raise TriageUnavailable("Triage endpoint returned an unexpected body")
        choices = data.get("choices") or []
        if not choices:
            raise TriageUnavailable("Triage endpoint returned no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        return parse_triage_payload(content)


async def triage_ticket(
    triage: TriageFunction | None,
    subject: str,
    description: str = "",
) -> TriageResult:
    """Run ``triage`` and substitute the fallback on any failure."""

    if triage is None:
        return fallback_triage(subject)
    try:
        return await triage(subject, description)
    except TriageUnavailable as exc:
        logger.warning("Triage unavailable, using fallback: %s", exc)
    except Exception:  # third-party triage must never block creation
        logger.exception("Triage function raised, using fallback")
    return fallback_triage(subject)
