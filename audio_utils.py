from __future__ import annotations

import os
import tempfile

import numpy as np
import soundfile as sf
from pydub import AudioSegment

# Meter floor: anything at or below this reads as silence.
LEVEL_FLOOR_DB = -50.0

_PYDUB_EXTS = (".m4a", ".aac", ".mp3", ".wma", ".mp4", ".mov")


def block_level_db(block: np.ndarray) -> float:
    """RMS level of one audio block in dBFS."""
    x = np.asarray(block, dtype=np.float32).reshape(-1)
    if x.size == 0:
        return -160.0
    rms = float(np.sqrt(np.maximum(1e-12, (x * x).mean())))
    return 20.0 * float(np.log10(max(rms, 1e-8)))


def normalize_level(level_db: float, floor_db: float = LEVEL_FLOOR_DB) -> float:
    """Map [floor_db, 0] dB onto [0, 1], clamped."""
    return max(0.0, min(1.0, (level_db - floor_db) / -floor_db))


def load_audio_file(file_path: str) -> tuple[np.ndarray, int]:
    """
    Load audio file supporting various formats including M4A.
    Returns (audio_data, sample_rate) as float32 mono.
    """
    file_ext = os.path.splitext(file_path)[1].lower()
    try:
        data, sr = sf.read(file_path, dtype="float32")
    except (RuntimeError, sf.SoundFileError) as e:
        if file_ext not in _PYDUB_EXTS:
            raise
        data, sr = _load_with_pydub(file_path, e)
    if data.ndim > 1:
        data = data.mean(axis=1).astype(np.float32)
    return data, int(sr)


def _load_with_pydub(file_path: str, sf_error: Exception) -> tuple[np.ndarray, int]:
    try:
        audio_segment = AudioSegment.from_file(file_path)
        if audio_segment.channels > 1:
            audio_segment = audio_segment.set_channels(1)

        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as temp_file:
            temp_wav_path = temp_file.name
        try:
            audio_segment.export(temp_wav_path, format="wav")
            data, sr = sf.read(temp_wav_path, dtype="float32")
        finally:
            os.unlink(temp_wav_path)
        return data, sr
    except Exception as pydub_error:
        raise RuntimeError(
            f"Failed to load audio file {file_path}. "
            f"Soundfile error: {sf_error}. Pydub error: {pydub_error}"
        ) from pydub_error


def audio_duration(file_path: str) -> float:
    """Duration in seconds without decoding the whole file when possible."""
    try:
        return float(sf.info(file_path).duration)
    except (RuntimeError, sf.SoundFileError):
        return len(AudioSegment.from_file(file_path)) / 1000.0


def resample(data: np.ndarray, sr_from: int, sr_to: int) -> np.ndarray:
    """Linear-interpolation resampling (good enough for speech)."""
    if sr_from == sr_to or data.size == 0:
        return data.astype(np.float32, copy=False)
    duration = data.size / float(sr_from)
    new_len = int(round(duration * sr_to))
    x_old = np.linspace(0.0, duration, num=data.size, endpoint=False)
    x_new = np.linspace(0.0, duration, num=new_len, endpoint=False)
    return np.interp(x_new, x_old, data).astype(np.float32)
