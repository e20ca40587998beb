"""
Charging insight client for an external text-generation service.

When a charging session closes, the daemon sends the session's average and
peak wattage plus the recent telemetry timeline to a Gemini-style
``generateContent`` endpoint and asks for a two-sentence comment on charger
quality and battery health.

The request is fire-and-forget from the tracker's point of view: the
result only lands in an :class:`InsightState` (text + loading flag) and
never touches session or telemetry state. Every failure (network error,
HTTP error status, unexpected response shape, missing API key) yields the
fixed :data:`FALLBACK_INSIGHT` text. Requests are never retried.

Operations:
- build_insight_request(history, session): assemble the request payload.
- build_prompt(request): render the prompt text.
- InsightClient.generate(request): POST and return the insight text.
- request_insight(client, state, request): run one request, updating state.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-18: Any client error or malformed reply now yields the fallback text

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass

import httpx
from pydantic import BaseModel

from voltflow.src.models import Session, TelemetrySample

logger = logging.getLogger(__name__)

FALLBACK_INSIGHT = "Unable to generate AI insights at this moment."

_GENERATION_CONFIG = {"temperature": 0.7, "topK": 40, "topP": 0.95}


# ---------------------------------------------------------------------------
# Request payload
# ---------------------------------------------------------------------------


class InsightPoint(BaseModel):
    """One telemetry point as sent to the text-generation service."""

    time: str
    level: float
    wattage: float
    voltage: float
    amperage: float


class InsightRequest(BaseModel):
    """Summary statistics and timeline for one closed session."""

    points: list[InsightPoint]
    avg_wattage: float
    max_wattage: float


def build_insight_request(
    history: Iterable[TelemetrySample],
    session: Session,
) -> InsightRequest:
    """Assemble an insight request from the telemetry history.

    Sample times are rendered as local clock strings (``%X``, the locale's
    time representation).
    """
    points = [
        InsightPoint(
            time=sample.timestamp.astimezone().strftime("%X"),
            level=sample.level,
            wattage=sample.wattage,
            voltage=sample.voltage,
            amperage=sample.amperage,
        )
        for sample in history
    ]
    return InsightRequest(
        points=points,
        avg_wattage=session.avg_wattage,
        max_wattage=session.max_wattage,
    )


def build_prompt(request: InsightRequest) -> str:
    """Render the prompt text for *request*."""
    timeline = json.dumps([p.model_dump() for p in request.points])
    return (
        "Analyze this phone charging data:\n"
        f"- Average Wattage: {request.avg_wattage:.2f}W\n"
        f"- Max Wattage: {request.max_wattage:.2f}W\n"
        f"- Timeline: {timeline}\n\n"
        "Provide a brief (2-sentence) insight about the charger quality and "
        "battery health. Is it fast charging efficiently?"
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class InsightClient:
    """Client for a Gemini-style ``generateContent`` endpoint.

    Args:
        base_url: API base URL. Must start with ``https://``.
        api_key: API key sent in the ``x-goog-api-key`` header. An empty
            key disables requests; :meth:`generate` then returns the
            fallback text.
        model: Model name placed in the request path.
        timeout_s: HTTP timeout for one request in seconds.

    Raises:
        ValueError: If *base_url* does not start with ``https://``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_s: float = 30.0,
    ) -> None:
        if not base_url.lower().startswith("https://"):
            raise ValueError(f"Insight base URL must use HTTPS (got: '{base_url}').")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/v1beta/models/{self._model}:generateContent"

    async def generate(self, request: InsightRequest) -> str:
        """POST the prompt and return the generated text.

        Returns:
            The insight text, or :data:`FALLBACK_INSIGHT` on any failure.
        """
        if not self._api_key:
            logger.info("No insight API key configured, skipping insight request")
            return FALLBACK_INSIGHT

        body = {
            "contents": [{"parts": [{"text": build_prompt(request)}]}],
            "generationConfig": _GENERATION_CONFIG,
        }
        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout_s) as client:
                response = await client.post(
                    self.endpoint,
                    json=body,
                    headers={"x-goog-api-key": self._api_key},
                )
            response.raise_for_status()
            text = _extract_text(response.json())
        except httpx.HTTPError as exc:
            logger.warning("Insight request failed: %s", exc)
            return FALLBACK_INSIGHT
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            logger.warning("Insight response had unexpected shape", exc_info=True)
            return FALLBACK_INSIGHT

        return text or FALLBACK_INSIGHT


def _extract_text(payload: dict) -> str:
    """Join the text parts of the first candidate."""
    parts = payload["candidates"][0]["content"]["parts"]
    return "".join(part.get("text", "") for part in parts).strip()


# ---------------------------------------------------------------------------
# Insight state
# ---------------------------------------------------------------------------


@dataclass
class InsightState:
    """Latest insight text and whether a request is in flight."""

    text: str = ""
    loading: bool = False


async def request_insight(
    client: InsightClient,
    state: InsightState,
    request: InsightRequest,
) -> str:
    """Run one insight request, reflecting progress in *state*.

    ``loading`` is set for the duration of the request and always cleared
    afterwards. Any error from the client leaves the fallback text in
    *state*, never the previous session's insight.
    """
    state.loading = True
    try:
        text = await client.generate(request)
    except Exception:
        logger.warning("Insight request raised unexpectedly", exc_info=True)
        text = FALLBACK_INSIGHT
    finally:
        state.loading = False
    state.text = text
    return text
