from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

import numpy as np
import soundfile as sf

from audio_utils import load_audio_file
from errors import PlaybackFailure

log = logging.getLogger(__name__)


class ChapterPlayer:
    """
    A single-stream player for chapter audio and recorded attempts.

    play(handle, offset) loads (and caches) the file, seeks to the offset
    in seconds and starts the stream; pause() keeps the read position.
    The output stream is recreated only when the sample rate changes.
    """

    def __init__(
        self,
        stream_factory: Optional[Callable] = None,
        loader: Callable[[str], Tuple[np.ndarray, int]] = load_audio_file,
        max_cached: int = 4,
    ):
        self._stream_factory = stream_factory
        self._callback_stop = None
        self._loader = loader
        self._max_cached = max(1, int(max_cached))
        self._cache: Dict[str, Tuple[np.ndarray, int]] = {}

        self.stream = None
        self.sr = 0
        self.data = np.zeros((0,), dtype=np.float32)
        self.idx = 0
        self.gain = 1.0  # linear volume multiplier (0.0 – 2.0)
        self.handle: Optional[str] = None

    # ─────────────── loading ─────────────────
    def _load(self, handle: str) -> Tuple[np.ndarray, int]:
        cached = self._cache.get(handle)
        if cached is not None:
            return cached
        data, sr = self._loader(handle)
        data = np.ascontiguousarray(data, dtype=np.float32).reshape(-1)
        if len(self._cache) >= self._max_cached:
            self._cache.pop(next(iter(self._cache)))
        self._cache[handle] = (data, int(sr))
        return data, int(sr)

    def _ensure_stream(self, sr: int):
        if self.stream is not None and self.sr == sr:
            return self.stream
        self.close()
        factory = self._stream_factory
        if factory is None:
            import sounddevice as sd

            factory = sd.OutputStream
            self._callback_stop = sd.CallbackStop
        # Larger blocksize + high latency for robustness
        self.stream = factory(
            samplerate=sr,
            channels=1,
            dtype="float32",
            callback=self._callback,
            blocksize=1024,
            latency="high",
        )
        self.sr = sr
        return self.stream

    # ─────────────── realtime ─────────────────
    def _callback(self, outdata, frames, time_info, status):
        # PortAudio callback: fill 'frames' samples or stop.
        if self.idx >= self.data.size:
            outdata.fill(0)
            self._finish()
            return
        end = self.idx + frames
        chunk = self.data[self.idx : end]
        n = chunk.shape[0]
        if self.gain <= 1.0:
            out = chunk * float(self.gain)
        else:
            # soft limiter above unity gain
            out = np.tanh(chunk * float(self.gain)) * 0.95
        outdata[:n, 0] = out
        if n < frames:
            outdata[n:frames, 0] = 0
            self.idx = self.data.size
            self._finish()
            return
        self.idx = end

    def _finish(self):
        if self._callback_stop is not None:
            raise self._callback_stop()

    # ─────────────── controls ─────────────────
    def play(self, media_handle: str, at_offset_seconds: float = 0.0) -> bool:
        """
        Start playing `media_handle` from `at_offset_seconds`. Returns False
        when the offset lies past the end of the audio.
        """
        try:
            data, sr = self._load(media_handle)
        except (OSError, RuntimeError, sf.SoundFileError) as e:
            raise PlaybackFailure(f"cannot read {media_handle}: {e}") from e
        start_index = max(0, int(round(float(at_offset_seconds) * sr)))
        if data.size == 0 or start_index >= data.size:
            log.warning("Offset %.2fs is beyond the end of %s", at_offset_seconds, media_handle)
            return False

        self.stop()
        try:
            stream = self._ensure_stream(sr)
            self.data = data
            self.handle = media_handle
            self.idx = start_index
            try:
                # reset backends left stopped by CallbackStop
                stream.abort()
            except Exception as e:
                log.debug("Abort before start: %s", e)
            stream.start()
        except Exception as e:
            # PortAudio device errors
            raise PlaybackFailure(str(e)) from e
        return True

    def pause(self):
        """Stop the stream without rewinding."""
        if self.stream is not None and self.stream.active:
            # stop() keeps the current read position, abort() would reset
            self.stream.stop()

    def stop(self):
        """Stop playback immediately."""
        if self.stream is not None and self.stream.active:
            self.stream.abort()

    def close(self):
        """Release the device handle."""
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            if stream.active:
                stream.abort()
        except Exception as e:
            log.debug("Abort on close: %s", e)
        stream.close()

    @property
    def active(self) -> bool:
        """Finished-at-end counts as not active."""
        if self.stream is None:
            return False
        try:
            return bool(self.stream.active) and (self.idx < self.data.size)
        except Exception:
            return False

    @property
    def position(self) -> float:
        return self.idx / float(self.sr) if self.sr else 0.0

    # ─────────────── volume ─────────────────
    def set_volume(self, gain: float):
        """Accepts 0.0–2.0 (200%). Values >1 apply soft limiting."""
        gain = 0.0 if gain is None else float(gain)
        self.gain = min(2.0, max(0.0, gain))
