from __future__ import annotations

import json
import logging
import os
from typing import Dict, Tuple

log = logging.getLogger(__name__)


def default_settings() -> Dict:
    return {
        "device": "auto",   # auto | cpu | gpu
        "model_name": os.getenv("WHISPER_MODEL", "base.en"),
        "preset": "balanced_cpu",  # fast_cpu | balanced_cpu | balanced_gpu | accurate_gpu
        "language": "en",
        "word_timestamps": True,
        "beam_size": 1,
        "temperature": 0.0,
        # advanced decoding controls
        "no_speech_threshold": 0.45,
        "condition_on_previous_text": False,
        # capture
        "samplerate": 16_000,
        "recordings_dir": "recordings",
        "level_interval_ms": 50,
        "partial_interval": 1.0,
        "final_timeout": 10.0,
        # playback
        "volume": 1.0,  # 0.0 - 2.0, above 1.0 is soft limited
        # scoring service
        "scoring_url": os.getenv("SCORING_API_URL", "http://localhost:8000"),
        "scoring_token": os.getenv("SCORING_API_TOKEN", ""),
        "scoring_timeout": 30.0,
        "scoring_retries": 2,
        # history
        "db_path": "sessions.db",
        "log_level": "INFO",
    }


def settings_path() -> str:
    return os.path.abspath(os.getenv("SPEECH_PRACTICE_SETTINGS", "settings.json"))


def load_settings(defaults: Dict, path: str) -> Dict:
    settings = dict(defaults)
    if not os.path.exists(path):
        return settings
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable settings file %s: %s", path, e)
        return settings
    if isinstance(data, dict):
        settings.update(data)
    else:
        log.warning("Ignoring settings file %s: expected a JSON object", path)
    return settings


def save_settings(settings: Dict, path: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(settings, fh, indent=2)
    except OSError as e:
        log.error("Could not save settings to %s: %s", path, e)


def detect_gpu() -> Tuple[bool, str]:
    try:
        import torch
    except ImportError:
        return False, "PyTorch not installed"
    if torch.cuda.is_available():
        count = torch.cuda.device_count()
        name = torch.cuda.get_device_name(0)
        total_vram = int(torch.cuda.get_device_properties(0).total_memory // (1024 ** 2))
        return True, f"{name} ({total_vram} MB VRAM, {count} device(s))"
    return False, "No CUDA GPU detected"


def whisper_options(settings: Dict) -> Dict:
    language = None if settings.get("language") == "auto" else settings.get("language", "en")
    beam_size = int(settings.get("beam_size", 1))
    temperature = float(settings.get("temperature", 0.0))
    word_ts = bool(settings.get("word_timestamps", True))

    opts: Dict = dict(
        language=language,
        task="transcribe",
        temperature=temperature,
        beam_size=beam_size,
        # word timings need the timestamp tokens
        without_timestamps=not word_ts,
        word_timestamps=word_ts,
        condition_on_previous_text=bool(settings.get("condition_on_previous_text", False)),
        compression_ratio_threshold=2.4,
        logprob_threshold=-1.0,
        no_speech_threshold=float(settings.get("no_speech_threshold", 0.45)),
    )

    # whisper picks the device itself; we only control fp16
    preset = settings.get("preset")
    device = settings.get("device")
    use_fp16 = False
    if device == "gpu":
        use_fp16 = True
    elif device == "auto":
        use_fp16 = detect_gpu()[0]
    opts["fp16"] = bool(use_fp16)

    if preset == "fast_cpu":
        opts.update(dict(beam_size=1, temperature=0.0))
    elif preset == "balanced_cpu":
        opts.update(dict(beam_size=2, temperature=0.0))
    elif preset == "balanced_gpu":
        opts.update(dict(beam_size=3, temperature=0.0, fp16=True))
    elif preset == "accurate_gpu":
        opts.update(dict(beam_size=5, temperature=0.0, fp16=True))

    return opts
