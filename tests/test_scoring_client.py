import asyncio
import base64
import json

import httpx
import pytest

from errors import ScoringNetworkFailure
from scoring_client import PronunciationScoringClient, parse_score_response

GOOD = {
    "overall": 85,
    "accuracy": 90,
    "fluency": 80,
    "rhythm": 70.5,
    "wordScores": [{"word": "hello", "score": 95, "feedback": None}, {"word": "world", "score": 40, "feedback": "open the o"}],
    "feedback": "Nice pace.",
}


def _client(handler, **kwargs):
    return PronunciationScoringClient(
        "http://scoring.test/", token="secret", transport=httpx.MockTransport(handler), **kwargs
    )


def test_score_posts_payload_and_converts_to_fractions():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=GOOD)

    score = asyncio.run(_client(handler).score(b"\x00\x01audio", "Hello world.", "hello world"))

    request = seen[0]
    assert request.url == "http://scoring.test/ai/pronunciation/score"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert base64.b64decode(body["audioBase64"]) == b"\x00\x01audio"
    assert body["originalText"] == "Hello world."
    assert body["spokenText"] == "hello world"

    assert score.overall == pytest.approx(0.85)
    assert score.rhythm == pytest.approx(0.705)
    assert score.word_scores[1].word == "world"
    assert score.word_scores[1].score == pytest.approx(0.4)
    assert score.word_scores[1].feedback == "open the o"
    assert score.feedback == "Nice pace."


def test_server_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=GOOD)

    score = asyncio.run(_client(handler, max_retries=2).score(b"a", "x", "x"))
    assert len(calls) == 3
    assert score.accuracy == pytest.approx(0.9)


def test_gives_up_after_last_attempt():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ScoringNetworkFailure):
        asyncio.run(_client(handler, max_retries=1).score(b"a", "x", "x"))
    assert len(calls) == 2


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "unauthorized"})

    with pytest.raises(ScoringNetworkFailure) as info:
        asyncio.run(_client(handler, max_retries=3).score(b"a", "x", "x"))
    assert len(calls) == 1
    assert "401" in info.value.user_message


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json={"overall": 50}),
        httpx.Response(200, json=[1, 2, 3]),
    ],
)
def test_malformed_responses_fail(response):
    with pytest.raises(ScoringNetworkFailure):
        asyncio.run(_client(lambda request: response).score(b"a", "x", "x"))


def test_parse_clamps_out_of_range_values():
    score = parse_score_response({**GOOD, "overall": 140, "fluency": -3, "wordScores": None})
    assert score.overall == 1.0
    assert score.fluency == 0.0
    assert score.word_scores == ()


def test_undecodable_body_becomes_scoring_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"definitely not gzip")

    with pytest.raises(ScoringNetworkFailure):
        asyncio.run(_client(handler, max_retries=1).score(b"a", "x", "x"))
    assert len(calls) == 2


def test_bad_service_url_becomes_scoring_failure():
    client = PronunciationScoringClient("not a url://", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(ScoringNetworkFailure):
        asyncio.run(client.score(b"a", "x", "x"))
