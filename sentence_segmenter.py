"""
Sentence segmentation with proportional timing.

Splits chapter text into sentences and estimates where each one sits in the
chapter narration from its share of the chapter's characters. This is not a
forced alignment: dialogue, numbers and long pauses read at a different pace
than the chapter average, so their estimated spans drift.
"""

from __future__ import annotations

import re
from typing import Dict, List

from models import PracticeSentence

_TERMINALS = re.compile(r"[.!?]")


def split_sentences(text: str) -> List[str]:
    """Split on sentence-terminal punctuation, trim, drop empties."""
    return [part.strip() for part in _TERMINALS.split(text) if part.strip()]


def segment_chapter(
    chapter_text: str, chapter_duration_seconds: float
) -> List[PracticeSentence]:
    if chapter_duration_seconds <= 0:
        return []
    texts = split_sentences(chapter_text)
    total_chars = sum(len(t) for t in texts)
    if total_chars == 0:
        return []

    chars_per_second = total_chars / float(chapter_duration_seconds)

    sentences: List[PracticeSentence] = []
    cursor = 0.0
    for text in texts:
        end = cursor + len(text) / chars_per_second
        sentences.append(
            PracticeSentence(text=text, start_offset=cursor, end_offset=end)
        )
        cursor = end
    return sentences


def timing_map(sentences: List[PracticeSentence]) -> List[Dict]:
    """JSON-ready timing entries (times rounded to milliseconds)."""
    return [
        {
            "index": i,
            "start": round(s.start_offset, 3),
            "end": round(s.end_offset, 3),
            "text": s.text,
        }
        for i, s in enumerate(sentences)
    ]
