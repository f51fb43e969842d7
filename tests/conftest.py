import numpy as np
import pytest

from models import CaptureState, RecordingResult, TranscriptSegment

_ACTIVE = (CaptureState.PREPARING, CaptureState.RECORDING, CaptureState.PROCESSING)


class FakeRecognizer:
    def __init__(self, text="hello world", segments=None, available=True):
        self.text = text
        self.segments = segments if segments is not None else [
            TranscriptSegment("hello", 0.0, 0.4, 0.8),
            TranscriptSegment("world", 0.5, 0.9, 0.6),
        ]
        self.available = available
        self.calls = []
        self.fail = False

    def is_available(self):
        return self.available

    def transcribe(self, audio, samplerate):
        self.calls.append(np.asarray(audio).size)
        if self.fail:
            raise RuntimeError("decoder crashed")
        return self.text, list(self.segments)


class FakeInputStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.active = False
        self.closed = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.active = False
        self.closed = True

    def feed(self, block):
        block = np.asarray(block, dtype=np.float32).reshape(-1, 1)
        self.callback(block, block.shape[0], None, None)


class FakeAuthorizer:
    def __init__(self, granted=True):
        self.granted = granted

    async def request_microphone_and_recognition_permission(self):
        return self.granted


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class FakePlayer:
    def __init__(self):
        self.plays = []
        self.pauses = 0
        self.active = False
        self.closed = False
        self.error = None

    def play(self, handle, offset):
        if self.error is not None:
            raise self.error
        self.plays.append((handle, offset))
        self.active = True
        return True

    def pause(self):
        self.pauses += 1
        self.active = False

    def close(self):
        self.closed = True


class FakeScorer:
    def __init__(self, score=None, error=None):
        self.score_value = score
        self.error = error
        self.gate = None
        self.calls = []

    async def score(self, audio, original_text, spoken_text):
        self.calls.append((audio, original_text, spoken_text))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.score_value


class FakeCapture:
    """In-memory capture session that hands out queued RecordingResults."""

    def __init__(self, results=None):
        self.state = CaptureState.IDLE
        self.error = None
        self.audio_level = 0.0
        self.current_transcript = ""
        self.results = list(results or [])
        self.start_error = None
        self.fail_on_stop = None
        self.cancels = 0
        self.resets = 0

    def start(self):
        if self.state in _ACTIVE:
            from errors import AlreadyActive

            raise AlreadyActive()
        if self.start_error is not None:
            self.state = CaptureState.ERROR
            self.error = self.start_error
            raise self.start_error
        self.state = CaptureState.RECORDING
        self.current_transcript = "partial"

    def stop(self):
        if self.fail_on_stop is not None and self.state is CaptureState.RECORDING:
            self.state = CaptureState.ERROR
            self.error = self.fail_on_stop
            return None
        if self.state is not CaptureState.RECORDING:
            return None
        self.state = CaptureState.FINISHED
        return self.results.pop(0)

    def cancel(self):
        self.cancels += 1
        if self.state in _ACTIVE:
            self.state = CaptureState.IDLE
        self.current_transcript = ""

    def reset(self):
        self.cancel()
        self.resets += 1
        self.state = CaptureState.IDLE
        self.error = None


@pytest.fixture
def make_recording(tmp_path):
    counter = {"n": 0}

    def _make(transcript, duration=1.5, segments=None):
        counter["n"] += 1
        path = tmp_path / f"take_{counter['n']}.wav"
        path.write_bytes(b"RIFF-fake-audio-%d" % counter["n"])
        return RecordingResult(
            audio_handle=str(path),
            transcript=transcript,
            duration=duration,
            confidence=0.9,
            segments=segments or [],
        )

    return _make
