from __future__ import annotations


class SpeechPracticeError(Exception):
    """Base class for errors surfaced to the learner."""

    default_message = "Something went wrong"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.default_message)
        self.detail = detail

    @property
    def user_message(self) -> str:
        if self.detail and self.detail != self.default_message:
            return f"{self.default_message}: {self.detail}"
        return self.default_message


# ---------------------------- capture pipeline ----------------------------


class CaptureError(SpeechPracticeError):
    default_message = "Recording failed"


class PermissionDenied(CaptureError):
    default_message = "Microphone and speech recognition permissions are required"


class CaptureInitFailure(CaptureError):
    default_message = "Failed to initialize audio capture"


class RecognizerUnavailable(CaptureError):
    default_message = "Speech recognition is not available"


class AlreadyActive(CaptureError):
    default_message = "A recording is already in progress"


class NoActiveRecording(CaptureError):
    default_message = "No recording available"


# ------------------------------ other -------------------------------------


class ScoringNetworkFailure(SpeechPracticeError):
    default_message = "Pronunciation scoring is unavailable"


class PlaybackFailure(SpeechPracticeError):
    default_message = "Audio playback failed"


class Cancelled(SpeechPracticeError):
    """User-initiated stop. Not reported as an error."""

    default_message = "Cancelled"
