# alignment_utils.py
from __future__ import annotations

import unicodedata
from typing import List, Optional

from models import ComparisonResult, WordMatch
from transcript_utils import char_error_rate, word_error_rate

# Normalized edit distance below which a spoken word counts as an attempt
# at the reference word rather than a different word.
FUZZY_MATCH_THRESHOLD = 0.3


def _is_punct(ch: str) -> bool:
    return unicodedata.category(ch).startswith("P")


def _strip_punctuation(token: str) -> str:
    start, end = 0, len(token)
    while start < end and _is_punct(token[start]):
        start += 1
    while end > start and _is_punct(token[end - 1]):
        end -= 1
    return token[start:end]


def normalize_words(text: str) -> List[str]:
    """Lowercase, split on whitespace, strip surrounding punctuation, drop empties."""
    words: List[str] = []
    for raw in text.lower().split():
        word = _strip_punctuation(raw)
        if word:
            words.append(word)
    return words


def levenshtein_distance(a: str, b: str) -> int:
    n, m = len(a), len(b)
    if n == 0:
        return m
    if m == 0:
        return n

    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n + 1):
        dp[i][0] = i
    for j in range(m + 1):
        dp[0][j] = j

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(
                    dp[i - 1][j],  # del
                    dp[i][j - 1],  # ins
                    dp[i - 1][j - 1],  # sub
                )
    return dp[n][m]


def find_similar_word(target: str, candidates: List[str]) -> Optional[str]:
    """First candidate whose normalized edit distance is strictly below the threshold."""
    for word in candidates:
        max_len = max(len(target), len(word))
        if max_len == 0:
            continue
        if levenshtein_distance(target, word) / max_len < FUZZY_MATCH_THRESHOLD:
            return word
    return None


def compare_transcripts(original: str, spoken: str) -> ComparisonResult:
    """
    Align a spoken rendition against the reference sentence word by word.

    Spoken words form a multiset that original words consume in order: an
    exact match first, otherwise the first close-enough word (recorded as
    ``spoken_as``), otherwise the word is missed. Matching ignores position,
    so repeated or reordered words may pair with a different occurrence
    than the one actually spoken there.
    """
    original_words = normalize_words(original)
    remaining = normalize_words(spoken)

    matched: List[WordMatch] = []
    missed: List[str] = []
    for word in original_words:
        if word in remaining:
            remaining.remove(word)
            matched.append(WordMatch(word, True, None))
            continue
        similar = find_similar_word(word, remaining)
        if similar is not None:
            remaining.remove(similar)
            matched.append(WordMatch(word, False, similar))
        else:
            missed.append(word)
            matched.append(WordMatch(word, False, None))

    correct = sum(1 for m in matched if m.is_correct)
    accuracy = correct / len(original_words) if original_words else 0.0

    return ComparisonResult(
        original_text=original,
        spoken_text=spoken,
        accuracy=accuracy,
        matched_words=tuple(matched),
        missed_words=frozenset(missed),
        extra_words=frozenset(remaining),
        word_error_rate=word_error_rate(original, spoken),
        char_error_rate=char_error_rate(original, spoken),
    )
