from __future__ import annotations

import asyncio
import logging
import os
import queue
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

import soundfile as sf

from audio_utils import LEVEL_FLOOR_DB, block_level_db, normalize_level
from errors import (
    AlreadyActive,
    CaptureError,
    CaptureInitFailure,
    PermissionDenied,
    RecognizerUnavailable,
)
from models import CaptureState, RecordingResult, TranscriptSegment, TranscriptUpdate
from transcribe_worker import StreamingTranscribeWorker
from transcript_utils import mean_confidence

log = logging.getLogger(__name__)

_ACTIVE = (CaptureState.PREPARING, CaptureState.RECORDING, CaptureState.PROCESSING)


def _default_input_stream(**kwargs):
    import sounddevice as sd

    return sd.InputStream(**kwargs)


class DeviceAuthorizer:
    """
    Desktop stand-in for the OS permission prompt: capture is allowed when
    an input device can be opened and the recognizer is ready.
    """

    def __init__(self, recognizer, device=None):
        self.recognizer = recognizer
        self.device = device

    async def request_microphone_and_recognition_permission(self) -> bool:
        return await asyncio.to_thread(self._check)

    def _check(self) -> bool:
        import sounddevice as sd

        try:
            sd.query_devices(self.device, kind="input")
        except (ValueError, sd.PortAudioError) as e:
            log.warning("No usable input device: %s", e)
            return False
        return bool(self.recognizer.is_available())


class AudioCaptureSession:
    """
    Microphone capture with live transcription.

    idle -> preparing -> recording -> processing -> finished; any
    non-terminal state can fall into error, which sticks until reset().

    The PortAudio callback only copies blocks into a queue. A writer thread
    streams them to disk, feeds the transcription worker and records the
    block level; a metering thread samples that level every
    `level_interval` seconds.
    """

    def __init__(
        self,
        recognizer,
        authorizer,
        recordings_dir: str = "recordings",
        samplerate: int = 16_000,
        level_interval: float = 0.05,
        partial_interval: float = 1.0,
        final_timeout: float = 10.0,
        stream_factory: Optional[Callable] = None,
        clock: Callable[[], float] = time.monotonic,
        on_transcript: Optional[Callable[[TranscriptUpdate], None]] = None,
    ):
        self.recognizer = recognizer
        self.authorizer = authorizer
        self.recordings_dir = recordings_dir
        self.sr = int(samplerate)
        self.level_interval = float(level_interval)
        self.partial_interval = float(partial_interval)
        self.final_timeout = float(final_timeout)
        self._stream_factory = stream_factory or _default_input_stream
        self._clock = clock
        self._on_transcript_cb = on_transcript

        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._error: Optional[CaptureError] = None
        self.is_authorized = False

        # side channel
        self.audio_level = 0.0
        self.recording_duration = 0.0
        self.xrun_count = 0
        self._transcript = ""
        self._segments: List[TranscriptSegment] = []

        # pipeline
        self._stream = None
        self._sound_file: Optional[sf.SoundFile] = None
        self._audio_path: Optional[str] = None
        self._rec_queue: Optional[queue.Queue] = None
        self._rec_writer: Optional[threading.Thread] = None
        self._writer_stop: Optional[threading.Event] = None
        self._writer_error: Optional[Exception] = None
        self._worker: Optional[StreamingTranscribeWorker] = None
        self._level_stop: Optional[threading.Event] = None
        self._level_thread: Optional[threading.Thread] = None
        self._last_db = LEVEL_FLOOR_DB
        self._started_at: Optional[float] = None

    # ─────────────────────────── state ────────────────────────────────

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def error(self) -> Optional[CaptureError]:
        return self._error

    @property
    def is_recording(self) -> bool:
        return self._state is CaptureState.RECORDING

    @property
    def current_transcript(self) -> str:
        return self._transcript

    @property
    def segments(self) -> List[TranscriptSegment]:
        return list(self._segments)

    def _fail(self, err: CaptureError) -> CaptureError:
        with self._lock:
            self._state = CaptureState.ERROR
            self._error = err
        log.error("Capture failed: %s", err.user_message)
        return err

    # ─────────────────────────── authorization ────────────────────────

    async def request_authorization(self) -> bool:
        granted = await self.authorizer.request_microphone_and_recognition_permission()
        self.is_authorized = bool(granted)
        return self.is_authorized

    # ─────────────────────────── controls ─────────────────────────────

    def start(self) -> None:
        with self._lock:
            if self._state in _ACTIVE:
                raise AlreadyActive()
            if self._state is CaptureState.ERROR:
                # sticky until reset()
                raise self._error
            if not self.is_authorized:
                raise self._fail(PermissionDenied())
            if not self.recognizer.is_available():
                raise self._fail(RecognizerUnavailable())

            self._clear_transient()
            self._state = CaptureState.PREPARING
            try:
                self._open_pipeline()
            except Exception as e:
                self._teardown(delete_audio=True)
                raise self._fail(CaptureInitFailure(str(e))) from e

            self._started_at = self._clock()
            self._state = CaptureState.RECORDING
            self._start_level_metering()
        log.info("Recording to %s", self._audio_path)

    def stop(self) -> Optional[RecordingResult]:
        with self._lock:
            if self._state is not CaptureState.RECORDING:
                return None
            self._state = CaptureState.PROCESSING

        self._stop_level_metering()
        self._close_stream()
        self._stop_writer()
        now = self._clock()
        duration = max(0.0, now - (self._started_at if self._started_at is not None else now))
        self._close_sound_file()

        update: Optional[TranscriptUpdate] = None
        worker = self._worker
        if worker is not None:
            worker.finish()
            update = worker.wait_final(self.final_timeout)
            if not worker.done:
                log.warning(
                    "Final transcript not ready after %.1fs; using the last partial",
                    self.final_timeout,
                )
                worker.cancel()
            if worker.dropped_blocks:
                log.warning("Recognizer dropped %d audio block(s)", worker.dropped_blocks)
        if self.xrun_count:
            log.warning("Input overflows / queue drops: %d", self.xrun_count)

        with self._lock:
            if self._state is not CaptureState.PROCESSING:
                # cancelled from another thread meanwhile
                return None
            self._worker = None
            path = self._audio_path
            self._audio_path = None  # the result owns the file now
            self._transcript = update.text if update else ""
            self._segments = list(update.segments) if update else []
            self.recording_duration = duration
            self.audio_level = 0.0
            self._state = CaptureState.FINISHED

        segments = list(self._segments)
        return RecordingResult(
            audio_handle=path,
            transcript=self._transcript,
            duration=duration,
            confidence=mean_confidence(segments),
            segments=segments,
        )

    def cancel(self) -> None:
        """Drop any in-progress recording; no audio file is left behind."""
        with self._lock:
            was_active = self._state in _ACTIVE
        self._teardown(delete_audio=True)
        with self._lock:
            if was_active:
                self._state = CaptureState.IDLE
            self._transcript = ""
            self._segments = []
            self.audio_level = 0.0

    def reset(self) -> None:
        self.cancel()
        with self._lock:
            self._clear_transient()
            self._error = None
            self._state = CaptureState.IDLE

    def _clear_transient(self) -> None:
        self.audio_level = 0.0
        self.recording_duration = 0.0
        self.xrun_count = 0
        self._transcript = ""
        self._segments = []
        self._last_db = LEVEL_FLOOR_DB
        self._writer_error = None
        self._started_at = None

    # ─────────────────────────── pipeline ─────────────────────────────

    def _open_pipeline(self) -> None:
        os.makedirs(self.recordings_dir, exist_ok=True)
        self._sound_file, self._audio_path = self._open_sound_file()

        self._worker = StreamingTranscribeWorker(
            self.recognizer,
            self.sr,
            on_update=self._on_transcript,
            partial_interval=self.partial_interval,
        )
        self._worker.start()

        # Queue + writer thread decouple the RT callback from Python work
        self._rec_queue = queue.Queue(maxsize=256)
        self._writer_stop = threading.Event()
        self._rec_writer = threading.Thread(
            target=self._writer,
            args=(self._rec_queue, self._writer_stop, self._sound_file, self._worker),
            name="rec-writer",
            daemon=True,
        )
        self._rec_writer.start()

        # bigger blocks and higher latency for robustness
        self._stream = self._stream_factory(
            samplerate=self.sr,
            channels=1,
            dtype="float32",
            blocksize=2048,
            latency="high",
            callback=self._record_callback,
        )
        self._stream.start()

    def _open_sound_file(self):
        base = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        last_error: Optional[Exception] = None
        for ext, fmt in ((".flac", "FLAC"), (".wav", "WAV")):
            path = os.path.join(self.recordings_dir, base + ext)
            try:
                handle = sf.SoundFile(
                    path, mode="w", samplerate=self.sr, channels=1,
                    format=fmt, subtype="PCM_16",
                )
                return handle, path
            except (RuntimeError, sf.SoundFileError) as e:
                log.warning("Cannot open %s for writing: %s", path, e)
                last_error = e
        raise CaptureInitFailure(f"no writable audio format: {last_error}")

    def _record_callback(self, indata, frames, time_info, status):
        # Minimal work in the real-time callback
        if status and getattr(status, "input_overflow", False):
            self.xrun_count += 1
        q = self._rec_queue
        if q is None:
            return
        try:
            # Copy is required; PortAudio reuses the buffer
            q.put_nowait(indata.copy())
        except queue.Full:
            self.xrun_count += 1

    def _writer(self, q: queue.Queue, stop: threading.Event, sound_file, worker) -> None:
        while True:
            try:
                block = q.get(timeout=0.25)
            except queue.Empty:
                if stop.is_set():
                    break
                continue
            if block is None:
                break
            try:
                sound_file.write(block)
            except Exception as e:
                log.error("Writing audio failed: %s", e)
                self._writer_error = e
                break
            worker.push(block)
            self._last_db = block_level_db(block)

    def _on_transcript(self, update: TranscriptUpdate) -> None:
        self._transcript = update.text
        self._segments = list(update.segments)
        if self._on_transcript_cb is not None:
            self._on_transcript_cb(update)

    # ─────────────────────────── metering ─────────────────────────────

    def _start_level_metering(self) -> None:
        self._level_stop = threading.Event()
        self._level_thread = threading.Thread(
            target=self._level_loop, args=(self._level_stop,), name="level-meter", daemon=True
        )
        self._level_thread.start()

    def _level_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.level_interval):
            self.audio_level = normalize_level(self._last_db)
            if self._started_at is not None:
                self.recording_duration = max(0.0, self._clock() - self._started_at)
            stream = self._stream
            if self._writer_error is not None:
                self._on_pipeline_broken(f"audio could not be written: {self._writer_error}")
                return
            if stream is not None and not getattr(stream, "active", True):
                self._on_pipeline_broken("input stream stopped unexpectedly")
                return

    def _on_pipeline_broken(self, reason: str) -> None:
        with self._lock:
            if self._state is not CaptureState.RECORDING:
                return
            self._state = CaptureState.PROCESSING
        self._teardown(delete_audio=True)
        self._fail(CaptureInitFailure(reason))

    def _stop_level_metering(self) -> None:
        if self._level_stop is not None:
            self._level_stop.set()
        thread = self._level_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._level_stop = None
        self._level_thread = None
        self.audio_level = 0.0

    # ─────────────────────────── teardown ─────────────────────────────

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        for action in (stream.stop, stream.close):
            try:
                action()
            except Exception as e:
                log.debug("Closing input stream: %s", e)

    def _stop_writer(self) -> None:
        q, writer, stop = self._rec_queue, self._rec_writer, self._writer_stop
        self._rec_queue = None
        if q is not None:
            try:
                q.put(None, timeout=1.0)  # sentinel
            except queue.Full:
                pass
        if stop is not None:
            stop.set()
        if writer is not None and writer is not threading.current_thread():
            writer.join(timeout=2.0)
        self._rec_writer = None
        self._writer_stop = None

    def _close_sound_file(self) -> None:
        handle, self._sound_file = self._sound_file, None
        if handle is None:
            return
        try:
            handle.close()
        except (RuntimeError, sf.SoundFileError) as e:
            log.warning("Closing audio file failed: %s", e)

    def _teardown(self, delete_audio: bool) -> None:
        self._stop_level_metering()
        self._close_stream()
        self._stop_writer()
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
        self._close_sound_file()
        path, self._audio_path = self._audio_path, None
        if delete_audio and path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                log.error("Could not remove partial recording %s: %s", path, e)
