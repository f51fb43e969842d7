from __future__ import annotations

import enum
import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple


class CaptureState(str, enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RECORDING = "recording"
    PROCESSING = "processing"
    FINISHED = "finished"
    ERROR = "error"


class PracticeMode(str, enum.Enum):
    LISTENING = "listening"  # learner listens to the narration
    RECORDING = "recording"  # learner records their rendition
    REVIEWING = "reviewing"  # learner reviews the comparison


# ───────────────────────────── transcripts ─────────────────────────────────


@dataclass(frozen=True)
class TranscriptSegment:
    """One recognized word (or phrase) with its timing inside a recording."""

    text: str
    start_time: float
    end_time: float
    confidence: float = 0.0

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError(
                f"segment ends before it starts ({self.start_time} > {self.end_time})"
            )


@dataclass(frozen=True)
class TranscriptUpdate:
    """Cumulative best guess delivered by the streaming recognizer."""

    text: str
    segments: Tuple[TranscriptSegment, ...] = ()
    is_final: bool = False
    audio_seconds: float = 0.0


@dataclass
class RecordingResult:
    audio_handle: str  # path of the captured audio file
    transcript: str
    duration: float
    confidence: float
    segments: List[TranscriptSegment] = field(default_factory=list)

    def __post_init__(self):
        if self.duration < 0:
            raise ValueError("recording duration must be >= 0")
        self.segments = sorted(self.segments, key=lambda s: s.start_time)

    def read_audio_bytes(self) -> bytes:
        with open(self.audio_handle, "rb") as fh:
            return fh.read()

    def discard(self) -> None:
        """Delete the captured audio file. Safe to call more than once."""
        with suppress(FileNotFoundError):
            os.remove(self.audio_handle)


# ───────────────────────────── comparison ──────────────────────────────────


@dataclass(frozen=True)
class WordMatch:
    word: str
    is_correct: bool
    spoken_as: Optional[str] = None


@dataclass(frozen=True)
class ComparisonResult:
    original_text: str
    spoken_text: str
    accuracy: float
    matched_words: Tuple[WordMatch, ...]
    missed_words: FrozenSet[str]
    extra_words: FrozenSet[str]
    word_error_rate: float = 0.0
    char_error_rate: float = 0.0

    @property
    def correct_count(self) -> int:
        return sum(1 for m in self.matched_words if m.is_correct)


@dataclass(frozen=True)
class FluencyMetrics:
    articulation_rate: float  # words per minute of speech (pauses excluded)
    pause_ratio: float
    filled_pauses: int


# ───────────────────────────── scoring ─────────────────────────────────────


@dataclass(frozen=True)
class WordScore:
    word: str
    score: float
    feedback: Optional[str] = None


@dataclass(frozen=True)
class PronunciationScore:
    """Remote pronunciation assessment. All values are fractions in [0, 1]."""

    overall: float
    accuracy: float
    fluency: float
    rhythm: float
    word_scores: Tuple[WordScore, ...] = ()
    feedback: str = ""


# ───────────────────────────── session ─────────────────────────────────────


@dataclass
class PracticeSentence:
    text: str
    start_offset: float
    end_offset: float
    recording: Optional[RecordingResult] = None
    comparison: Optional[ComparisonResult] = None
    score: Optional[PronunciationScore] = None
    fluency: Optional[FluencyMetrics] = None
    attempt_id: Optional[int] = None

    @property
    def duration(self) -> float:
        return max(0.0, self.end_offset - self.start_offset)


@dataclass(frozen=True)
class SessionSummary:
    total_sentences: int
    completed_sentences: int
    average_accuracy: float
    average_fluency: float
    average_rhythm: float
    overall_score: float
    practice_time: float
    average_word_accuracy: float = 0.0


@dataclass(frozen=True)
class SessionSnapshot:
    current_index: int
    total_sentences: int
    mode: PracticeMode
    is_playing: bool
    is_recording: bool
    is_scoring: bool
    capture_state: CaptureState
    audio_level: float
    live_transcript: str
    overall_score: float
    last_error: Optional[str]
    current_sentence: Optional[PracticeSentence]
