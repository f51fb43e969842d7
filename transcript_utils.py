# transcript_utils.py
from __future__ import annotations

import re
from typing import Iterable, List, Optional

from jiwer import cer as jiwer_cer
from jiwer import wer as jiwer_wer

from models import FluencyMetrics, TranscriptSegment

FILLED_PAUSES = {"um", "uh", "erm", "er", "hmm"}


def clean_text(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"[^\w\s]", "", text)
    return text.strip()


# ------------------------ metric helpers ------------------------


def _error_rate(metric, ref_text: str, hyp_text: str) -> float:
    ref = clean_text(ref_text)
    hyp = clean_text(hyp_text)
    # jiwer rejects empty references; an empty side is all-wrong unless both are
    if not ref or not hyp:
        return 0.0 if ref == hyp else 1.0
    return float(metric(ref, hyp))


def word_error_rate(ref_text: str, hyp_text: str) -> float:
    return _error_rate(jiwer_wer, ref_text, hyp_text)


def char_error_rate(ref_text: str, hyp_text: str) -> float:
    return _error_rate(jiwer_cer, ref_text, hyp_text)


def norm_conf_from_logprob(lp: Optional[float]) -> Optional[float]:
    if lp is None:
        return None
    # Map avg_logprob ~ [-1, 0] to [0, 1]
    return max(0.0, min(1.0, float(lp) + 1.0))


def mean_confidence(segments: Iterable[TranscriptSegment]) -> float:
    values = [s.confidence for s in segments]
    return float(sum(values) / len(values)) if values else 0.0


# ------------------------ segments ------------------------


def segments_from_words(words: Iterable[dict]) -> List[TranscriptSegment]:
    """
    Build ordered TranscriptSegments from recognizer word dicts
    ({"word"|"text", "start", "end", "probability"|"conf"}).
    Empty words are skipped; an end before the start is clamped to the start.
    """
    segments: List[TranscriptSegment] = []
    for w in words:
        if not isinstance(w, dict):
            continue
        text = str(w.get("word", w.get("text", ""))).strip()
        if not text:
            continue
        t0 = float(w.get("start", 0.0))
        t1 = max(t0, float(w.get("end", t0)))
        conf = w.get("probability", w.get("conf", 0.0))
        conf = max(0.0, min(1.0, float(conf or 0.0)))
        segments.append(TranscriptSegment(text, t0, t1, conf))
    segments.sort(key=lambda s: s.start_time)
    return segments


def fluency_metrics(
    segments: List[TranscriptSegment], hyp_text: str
) -> FluencyMetrics:
    """
    Articulation rate (wpm over speech time), pause ratio and filled-pause
    count for one recording.
    """
    prev_end: Optional[float] = None
    speech_time = 0.0
    pause_time = 0.0
    for seg in segments:
        if prev_end is not None:
            pause_time += max(0.0, seg.start_time - prev_end)
        prev_end = seg.end_time
        speech_time += seg.end_time - seg.start_time

    total_time = 0.0
    if segments:
        total_time = max(0.0, segments[-1].end_time - segments[0].start_time)

    hyp_clean = clean_text(hyp_text)
    tokens = hyp_clean.split()

    artic_rate = 0.0
    if speech_time > 1e-6:
        artic_rate = float(len(tokens)) * (60.0 / speech_time)

    pause_ratio = 0.0
    denom = total_time if total_time > 1e-6 else (speech_time + pause_time)
    if denom > 1e-6:
        pause_ratio = min(1.0, pause_time / denom)

    filled = sum(1 for t in tokens if t in FILLED_PAUSES)
    return FluencyMetrics(artic_rate, pause_ratio, filled)
