from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

import numpy as np

from audio_utils import resample
from models import TranscriptSegment
from settings import default_settings, whisper_options
from transcript_utils import norm_conf_from_logprob, segments_from_words

log = logging.getLogger(__name__)

WHISPER_SR = 16_000


class SpeechRecognizer(Protocol):
    """Speech-to-text capability consumed by the capture pipeline."""

    def is_available(self) -> bool: ...

    def transcribe(
        self, audio: np.ndarray, samplerate: int
    ) -> Tuple[str, List[TranscriptSegment]]: ...


class WhisperRecognizer:
    """
    Whisper-backed recognizer. The model is loaded on first use and shared
    by every transcription; calls are serialized because the model is not
    safe to run concurrently.
    """

    def __init__(self, settings: Optional[Dict] = None):
        self.settings = dict(settings or default_settings())
        self.model: Optional[Any] = None
        self._lock = threading.Lock()

    def ensure_model(self) -> None:
        if self.model is None:
            import whisper

            model_name = self.settings.get("model_name") or "base.en"
            log.info("Loading Whisper model '%s'", model_name)
            self.model = whisper.load_model(model_name)

    def is_available(self) -> bool:
        try:
            with self._lock:
                self.ensure_model()
        except Exception as e:
            log.error("Whisper model unavailable: %s", e)
            return False
        return True

    def transcribe(
        self, audio: np.ndarray, samplerate: int
    ) -> Tuple[str, List[TranscriptSegment]]:
        audio = np.asarray(audio, dtype=np.float32).reshape(-1)
        if audio.size == 0:
            return "", []
        audio = resample(audio, samplerate, WHISPER_SR)
        with self._lock:
            self.ensure_model()
            result = self.model.transcribe(audio, **whisper_options(self.settings))
        text = str(result.get("text", "")).strip()
        return text, self._segments(result.get("segments") or [])

    @staticmethod
    def _segments(raw_segments: List[dict]) -> List[TranscriptSegment]:
        words: List[dict] = []
        for seg in raw_segments:
            seg_words = seg.get("words")
            if seg_words:
                words.extend(seg_words)
                continue
            # no word timings: fall back to one entry per segment
            conf = norm_conf_from_logprob(seg.get("avg_logprob"))
            words.append(
                {
                    "word": seg.get("text", ""),
                    "start": seg.get("start", 0.0),
                    "end": seg.get("end", seg.get("start", 0.0)),
                    "conf": 0.0 if conf is None else conf,
                }
            )
        return segments_from_words(words)
