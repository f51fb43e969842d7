from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List, Optional

import numpy as np

from models import TranscriptUpdate

log = logging.getLogger(__name__)

_END = object()  # end-of-audio marker


class CancellationToken:
    """One-shot cancellation flag shared between a producer and a worker."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class StreamingTranscribeWorker(threading.Thread):
    """
    Runs the recognizer in a background thread while audio is still arriving.

    Producers push float32 blocks with push(); every `partial_interval`
    seconds of new audio the cumulative buffer is re-transcribed and a
    partial TranscriptUpdate is published. finish() marks the end of audio
    and yields exactly one final update. cancel() stops everything and
    nothing is published afterwards.

    The input queue is bounded: push() blocks up to `put_timeout` and then
    drops the block (counted in `dropped_blocks`).
    """

    def __init__(
        self,
        recognizer,
        samplerate: int,
        on_update: Optional[Callable[[TranscriptUpdate], None]] = None,
        partial_interval: float = 1.0,
        max_pending: int = 256,
        put_timeout: float = 0.5,
    ):
        super().__init__(name="stt-worker", daemon=True)
        self._recognizer = recognizer
        self._sr = int(samplerate)
        self._on_update = on_update
        self._partial_samples = max(1, int(partial_interval * self._sr))
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._put_timeout = put_timeout
        self.token = CancellationToken()

        self._blocks: List[np.ndarray] = []
        self._since_partial = 0
        self._latest: Optional[TranscriptUpdate] = None
        self._latest_lock = threading.Lock()
        # held across delivery; re-entrant so a listener may cancel
        self._deliver_lock = threading.RLock()
        self._done = threading.Event()
        self.dropped_blocks = 0
        self.fault_count = 0

    # ---------------------- producer side ----------------------

    def push(self, block: np.ndarray) -> bool:
        if self.token.cancelled or self._done.is_set():
            return False
        try:
            self._queue.put(block, timeout=self._put_timeout)
        except queue.Full:
            self.dropped_blocks += 1
            return False
        return True

    def finish(self) -> None:
        """Signal end of audio; the worker publishes the final update."""
        while self.is_alive() and not self.token.cancelled:
            try:
                self._queue.put(_END, timeout=0.25)
                return
            except queue.Full:
                continue

    def cancel(self) -> None:
        """Stop the worker. No update is delivered once this returns."""
        with self._deliver_lock:
            self.token.cancel()
        # drain so a blocked producer or the worker wakes up promptly
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        try:
            self._queue.put_nowait(_END)
        except queue.Full:
            pass

    def wait_final(self, timeout: Optional[float] = None) -> Optional[TranscriptUpdate]:
        """
        Wait for the worker to finish; return the last delivered update.
        On timeout the last partial (if any) is returned.
        """
        self._done.wait(timeout)
        return self.latest

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def latest(self) -> Optional[TranscriptUpdate]:
        with self._latest_lock:
            return self._latest

    # ---------------------- worker side ----------------------

    def run(self) -> None:
        try:
            while not self.token.cancelled:
                try:
                    item = self._queue.get(timeout=0.25)
                except queue.Empty:
                    continue
                if item is _END:
                    if not self.token.cancelled:
                        self._publish(final=True)
                    break
                block = np.asarray(item, dtype=np.float32).reshape(-1)
                self._blocks.append(block)
                self._since_partial += block.size
                if self._since_partial >= self._partial_samples:
                    self._since_partial = 0
                    self._publish(final=False)
        finally:
            self._done.set()

    def _publish(self, final: bool) -> None:
        if self._blocks:
            audio = np.concatenate(self._blocks, axis=0)
        else:
            audio = np.zeros(0, dtype=np.float32)
        try:
            text, segments = self._recognizer.transcribe(audio, self._sr)
        except Exception as e:
            # recognizer faults mid-stream are not fatal; the last good
            # update stays authoritative
            self.fault_count += 1
            log.warning("Recognition error (%s update): %s", "final" if final else "partial", e)
            return

        update = TranscriptUpdate(
            text=str(text).strip(),
            segments=tuple(segments),
            is_final=final,
            audio_seconds=audio.size / float(self._sr),
        )
        with self._deliver_lock:
            if self.token.cancelled:
                return
            with self._latest_lock:
                self._latest = update
            if self._on_update is not None:
                try:
                    self._on_update(update)
                except Exception:
                    log.exception("Transcript listener failed")
