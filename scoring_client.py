from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from errors import ScoringNetworkFailure
from models import PronunciationScore, WordScore

log = logging.getLogger(__name__)

SCORE_PATH = "/ai/pronunciation/score"


def _fraction(value: Any) -> float:
    """Service percentages (0-100) -> engine fractions (0-1)."""
    pct = float(value)
    if pct != pct:  # NaN
        raise ValueError("score is NaN")
    return min(1.0, max(0.0, pct / 100.0))


def parse_score_response(data: Dict[str, Any]) -> PronunciationScore:
    """
    Convert a scoring-service payload into a PronunciationScore.
    Raises ValueError / KeyError / TypeError when the payload is malformed.
    """
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    word_scores = tuple(
        WordScore(
            word=str(ws["word"]),
            score=_fraction(ws["score"]),
            feedback=ws.get("feedback"),
        )
        for ws in (data.get("wordScores") or [])
    )
    return PronunciationScore(
        overall=_fraction(data["overall"]),
        accuracy=_fraction(data["accuracy"]),
        fluency=_fraction(data["fluency"]),
        rhythm=_fraction(data["rhythm"]),
        word_scores=word_scores,
        feedback=str(data.get("feedback") or ""),
    )


class PronunciationScoringClient:
    """
    Client for the remote pronunciation-scoring service.

    Request errors (transport, decoding, redirects) and 5xx responses are
    retried up to `max_retries` times; client errors (4xx) and malformed
    payloads fail immediately.
    Every failure surfaces as ScoringNetworkFailure.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}{SCORE_PATH}"
        self.token = token or None
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _payload(audio: bytes, original_text: str, spoken_text: str) -> Dict[str, str]:
        return {
            "audioBase64": base64.b64encode(audio).decode("ascii"),
            "originalText": original_text,
            "spokenText": spoken_text,
        }

    async def _apost_json(self, payload: Dict[str, Any]) -> Any:
        try:
            return await self._apost_with_retries(payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ScoringNetworkFailure(str(e) or type(e).__name__) from e

    async def _apost_with_retries(self, payload: Dict[str, Any]) -> Any:
        attempt = 0
        last_exc: Optional[Exception] = None
        async with httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers(), transport=self._transport
        ) as client:
            while attempt <= self.max_retries:
                try:
                    r = await client.post(self.url, json=payload)
                    r.raise_for_status()
                    return r.json()
                except httpx.HTTPStatusError as e:
                    if e.response.status_code < 500:
                        raise ScoringNetworkFailure(
                            f"service rejected the request ({e.response.status_code})"
                        ) from e
                    last_exc = e
                except httpx.RequestError as e:
                    # transport, decoding and redirect failures
                    last_exc = e
                except ValueError as e:
                    raise ScoringNetworkFailure("service returned invalid JSON") from e
                attempt += 1
                log.warning("Scoring attempt %d failed: %s", attempt, last_exc)
        raise ScoringNetworkFailure(
            f"request failed after {self.max_retries + 1} attempts: {last_exc}"
        ) from last_exc

    async def score(
        self, audio: bytes, original_text: str, spoken_text: str
    ) -> PronunciationScore:
        data = await self._apost_json(self._payload(audio, original_text, spoken_text))
        try:
            return parse_score_response(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ScoringNetworkFailure(f"malformed response: {e}") from e
