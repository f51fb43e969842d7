import pytest

from models import TranscriptSegment
from transcript_utils import (
    char_error_rate,
    clean_text,
    fluency_metrics,
    mean_confidence,
    norm_conf_from_logprob,
    segments_from_words,
    word_error_rate,
)


def test_clean_text():
    assert clean_text("  Hello,   World!! ") == "hello world"


def test_error_rates_handle_empty_sides():
    assert word_error_rate("", "") == 0.0
    assert word_error_rate("hello", "") == 1.0
    assert word_error_rate("", "hello") == 1.0
    assert char_error_rate("", "") == 0.0


def test_error_rates():
    assert word_error_rate("the quick brown fox", "the quick brown fox") == 0.0
    assert word_error_rate("the quick brown fox", "the quick brown") == pytest.approx(0.25)
    assert char_error_rate("abcd", "abcf") == pytest.approx(0.25)


def test_logprob_confidence_mapping():
    assert norm_conf_from_logprob(None) is None
    assert norm_conf_from_logprob(-0.25) == pytest.approx(0.75)
    assert norm_conf_from_logprob(-3.0) == 0.0
    assert norm_conf_from_logprob(0.5) == 1.0


def test_mean_confidence():
    assert mean_confidence([]) == 0.0
    segs = [TranscriptSegment("a", 0, 1, 0.5), TranscriptSegment("b", 1, 2, 1.0)]
    assert mean_confidence(segs) == pytest.approx(0.75)


def test_segments_from_words_sorts_and_clamps():
    segs = segments_from_words(
        [
            {"word": " second", "start": 1.0, "end": 1.4, "probability": 0.9},
            {"word": "  ", "start": 0.5, "end": 0.6},
            {"text": "first", "start": 0.0, "end": -1.0, "conf": 2.0},
            "not a dict",
        ]
    )
    assert [s.text for s in segs] == ["first", "second"]
    assert segs[0].end_time == segs[0].start_time
    assert segs[0].confidence == 1.0


def test_fluency_metrics():
    segs = [
        TranscriptSegment("um", 0.0, 0.5),
        TranscriptSegment("hello", 1.0, 1.5),
        TranscriptSegment("there", 1.5, 2.0),
    ]
    metrics = fluency_metrics(segs, "Um, hello there")
    # 3 words over 1.5 s of speech
    assert metrics.articulation_rate == pytest.approx(120.0)
    assert metrics.pause_ratio == pytest.approx(0.25)
    assert metrics.filled_pauses == 1


def test_fluency_metrics_without_segments():
    metrics = fluency_metrics([], "")
    assert metrics.articulation_rate == 0.0
    assert metrics.pause_ratio == 0.0
    assert metrics.filled_pauses == 0
