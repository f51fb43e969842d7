"""
Read-along practice session.

The controller walks the learner through a chapter one sentence at a time:
listen to the narration, record a rendition, review the word-level
comparison and optionally ask the scoring service for a pronunciation score.
Every collaborator (capture, player, scorer, history DB) is passed in, so the
whole flow runs against fakes in tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

import db as history
from alignment_utils import compare_transcripts
from errors import AlreadyActive, Cancelled, CaptureError, NoActiveRecording, SpeechPracticeError
from models import (
    CaptureState,
    ComparisonResult,
    PracticeMode,
    PracticeSentence,
    PronunciationScore,
    RecordingResult,
    SessionSnapshot,
    SessionSummary,
)
from sentence_segmenter import segment_chapter
from transcript_utils import fluency_metrics

log = logging.getLogger(__name__)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PracticeSessionController:
    def __init__(
        self,
        sentences: Sequence[PracticeSentence],
        capture,
        player,
        scorer,
        media_handle: str,
        db=None,
        session_label: str = "",
        recordings_dir: Optional[str] = None,
        on_error: Optional[Callable[[SpeechPracticeError], None]] = None,
    ):
        self.sentences: List[PracticeSentence] = list(sentences)
        self.capture = capture
        self.player = player
        self.scorer = scorer
        self.media_handle = media_handle
        self.db = db
        self.session_label = session_label
        self.recordings_dir = recordings_dir
        self.on_error = on_error

        self.current_index = 0
        self.mode = PracticeMode.LISTENING
        self.is_playing = False
        self.overall_score = 0.0
        self.last_error: Optional[str] = None
        self._playback_stop: Optional[asyncio.Event] = None
        self._pending_scores = 0

    @classmethod
    def from_chapter(
        cls,
        chapter_text: str,
        chapter_duration: float,
        capture,
        player,
        scorer,
        media_handle: str,
        **kwargs,
    ) -> "PracticeSessionController":
        sentences = segment_chapter(chapter_text, chapter_duration)
        log.info("Segmented chapter into %d sentence(s)", len(sentences))
        return cls(sentences, capture, player, scorer, media_handle, **kwargs)

    # ─────────────────────────── queries ──────────────────────────────

    @property
    def current_sentence(self) -> Optional[PracticeSentence]:
        if not self.sentences:
            return None
        return self.sentences[self.current_index]

    @property
    def has_next(self) -> bool:
        return self.current_index < len(self.sentences) - 1

    @property
    def has_previous(self) -> bool:
        return self.current_index > 0

    @property
    def is_scoring(self) -> bool:
        return self._pending_scores > 0

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_index=self.current_index,
            total_sentences=len(self.sentences),
            mode=self.mode,
            is_playing=self.is_playing,
            is_recording=self.mode is PracticeMode.RECORDING,
            is_scoring=self.is_scoring,
            capture_state=self.capture.state,
            audio_level=self.capture.audio_level,
            live_transcript=self.capture.current_transcript,
            overall_score=self.overall_score,
            last_error=self.last_error,
            current_sentence=self.current_sentence,
        )

    def get_session_summary(self) -> SessionSummary:
        completed = [s for s in self.sentences if s.recording is not None]
        scored = [s.score for s in self.sentences if s.score is not None]
        compared = [s.comparison.accuracy for s in self.sentences if s.comparison is not None]
        return SessionSummary(
            total_sentences=len(self.sentences),
            completed_sentences=len(completed),
            average_accuracy=_mean([s.accuracy for s in scored]),
            average_fluency=_mean([s.fluency for s in scored]),
            average_rhythm=_mean([s.rhythm for s in scored]),
            overall_score=self.overall_score,
            practice_time=sum(s.recording.duration for s in completed),
            average_word_accuracy=_mean(compared),
        )

    # ─────────────────────────── errors ───────────────────────────────

    def _report(self, err: SpeechPracticeError) -> None:
        if isinstance(err, Cancelled):
            log.info("Cancelled by user")
            return
        self.last_error = err.user_message
        log.error("%s", err.user_message)
        if self.on_error is not None:
            self.on_error(err)

    def clear_error(self) -> None:
        self.last_error = None

    # ─────────────────────────── playback ─────────────────────────────

    async def _play_span(self, handle: str, offset: float, duration: float) -> bool:
        """Play `duration` seconds from `offset`; False if stopped early."""
        self.stop_playback()
        try:
            started = self.player.play(handle, offset)
        except SpeechPracticeError as e:
            self._report(e)
            return False
        if not started:
            return False

        stop = asyncio.Event()
        self._playback_stop = stop
        self.is_playing = True
        completed = False
        try:
            await asyncio.wait_for(stop.wait(), timeout=max(0.0, duration))
        except asyncio.TimeoutError:
            completed = True
        finally:
            # a newer playback may own the player by now
            if self._playback_stop is stop:
                self._playback_stop = None
                self.is_playing = False
                self.player.pause()
        return completed

    async def play_current_sentence(self) -> bool:
        sentence = self.current_sentence
        if sentence is None:
            return False
        return await self._play_span(self.media_handle, sentence.start_offset, sentence.duration)

    async def play_user_recording(self) -> bool:
        sentence = self.current_sentence
        if sentence is None or sentence.recording is None:
            raise NoActiveRecording()
        recording = sentence.recording
        return await self._play_span(recording.audio_handle, 0.0, recording.duration)

    def stop_playback(self) -> None:
        stop, self._playback_stop = self._playback_stop, None
        if stop is not None:
            stop.set()
        if self.is_playing or self.player.active:
            self.player.pause()
        self.is_playing = False

    # ─────────────────────────── recording ────────────────────────────

    def start_recording(self) -> bool:
        if self.current_sentence is None:
            return False
        if self.mode is PracticeMode.RECORDING:
            self._report(AlreadyActive())
            return False
        self.stop_playback()
        self.mode = PracticeMode.LISTENING
        if self.capture.state in (CaptureState.FINISHED, CaptureState.ERROR):
            self.capture.reset()

        self.mode = PracticeMode.RECORDING
        try:
            self.capture.start()
        except CaptureError as e:
            self.mode = PracticeMode.LISTENING
            self._report(e)
            return False
        return True

    def stop_recording(self) -> Optional[ComparisonResult]:
        """
        Finish the take and compare it with the sentence text.

        The new take replaces the sentence's recording and comparison. A
        pronunciation score computed for the previous take is cleared, so
        the sentence needs scoring again.
        """
        if self.mode is not PracticeMode.RECORDING:
            return None
        result = self.capture.stop()
        if result is None:
            self.mode = PracticeMode.LISTENING
            if self.capture.state is CaptureState.ERROR and self.capture.error is not None:
                self._report(self.capture.error)
            return None

        sentence = self.current_sentence
        comparison = compare_transcripts(sentence.text, result.transcript)
        self._replace_recording(sentence, result)
        sentence.comparison = comparison
        sentence.fluency = fluency_metrics(result.segments, result.transcript)
        # a score describes the recording it was computed for
        if sentence.score is not None:
            sentence.score = None
            self._update_overall_score()
        self.mode = PracticeMode.REVIEWING
        log.info(
            "Sentence %d: %d/%d words correct (%.0f%%)",
            self.current_index + 1,
            comparison.correct_count,
            len(comparison.matched_words),
            comparison.accuracy * 100,
        )
        self._record_attempt(sentence, result, comparison)
        return comparison

    def cancel_recording(self) -> bool:
        """Discard the take in progress. Stored results are kept."""
        was_recording = self.mode is PracticeMode.RECORDING
        self.capture.cancel()
        self.mode = PracticeMode.LISTENING
        if was_recording:
            self._report(Cancelled())
        return was_recording

    def _replace_recording(self, sentence: PracticeSentence, result: RecordingResult) -> None:
        old = sentence.recording
        sentence.recording = result
        sentence.attempt_id = None
        # with history enabled the file belongs to its attempt row
        if old is not None and old is not result and self.db is None:
            old.discard()

    def _record_attempt(
        self, sentence: PracticeSentence, result: RecordingResult, comparison: ComparisonResult
    ) -> None:
        if self.db is None:
            return
        try:
            attempt = history.add_attempt(
                self.db,
                sentence_index=self.current_index,
                sentence_text=sentence.text,
                audio_path=result.audio_handle,
                session_label=self.session_label,
                transcript=result.transcript,
                duration=result.duration,
                confidence=result.confidence,
                accuracy=comparison.accuracy,
                wer=comparison.word_error_rate,
                cer=comparison.char_error_rate,
                artic_rate=sentence.fluency.articulation_rate if sentence.fluency else None,
                pause_ratio=sentence.fluency.pause_ratio if sentence.fluency else None,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("Could not save attempt: %s", e)
            return
        sentence.attempt_id = attempt.id

    # ─────────────────────────── scoring ──────────────────────────────

    async def request_pronunciation_score(self) -> Optional[PronunciationScore]:
        sentence = self.current_sentence
        if sentence is None or sentence.recording is None:
            return None
        recording = sentence.recording

        self._pending_scores += 1
        try:
            audio = await asyncio.to_thread(recording.read_audio_bytes)
            score = await self.scorer.score(audio, sentence.text, recording.transcript)
        except OSError as e:
            self._report(NoActiveRecording(f"cannot read {recording.audio_handle}: {e}"))
            return None
        except SpeechPracticeError as e:
            self._report(e)
            return None
        finally:
            self._pending_scores -= 1

        if sentence.recording is not recording:
            log.warning("Dropping a late pronunciation score: the recording was replaced")
            return None
        sentence.score = score
        self._update_overall_score()
        self._store_score(sentence, score)
        return score

    def _update_overall_score(self) -> None:
        self.overall_score = _mean([s.score.overall for s in self.sentences if s.score is not None])

    def _store_score(self, sentence: PracticeSentence, score: PronunciationScore) -> None:
        if self.db is None or sentence.attempt_id is None:
            return
        try:
            history.update_attempt_score(
                self.db,
                sentence.attempt_id,
                overall=score.overall,
                accuracy=score.accuracy,
                fluency=score.fluency,
                rhythm=score.rhythm,
                feedback=score.feedback,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("Could not save score: %s", e)

    # ─────────────────────────── navigation ───────────────────────────

    def _leave_sentence(self) -> None:
        self.stop_playback()
        # cancels an active recording and clears transcript/level/error
        self.capture.reset()
        self.mode = PracticeMode.LISTENING

    def go_to_sentence(self, index: int) -> bool:
        if not 0 <= index < len(self.sentences):
            return False
        self._leave_sentence()
        self.current_index = index
        return True

    def next_sentence(self) -> bool:
        return self.go_to_sentence(self.current_index + 1)

    def previous_sentence(self) -> bool:
        return self.go_to_sentence(self.current_index - 1)

    # ─────────────────────────── lifecycle ────────────────────────────

    def close(self) -> None:
        """End the session: stop audio and release recordings nobody keeps."""
        self.stop_playback()
        self.capture.reset()
        self.mode = PracticeMode.LISTENING
        close_player = getattr(self.player, "close", None)
        if close_player is not None:
            close_player()
        if self.db is None:
            for sentence in self.sentences:
                if sentence.recording is not None:
                    sentence.recording.discard()
        elif self.recordings_dir:
            history.cleanup_orphan_recordings(self.db, self.recordings_dir)
