import json
import logging
import os
import random
from dataclasses import dataclass
from typing import Optional

from audio_utils import audio_duration

log = logging.getLogger(__name__)

CHAPTERS_DIR = "chapters"
INDEX_FILE   = "chapter_index.json"
AUDIO_EXTS   = (".flac", ".wav", ".mp3", ".m4a", ".aac", ".ogg")


@dataclass
class Chapter:
    name: str
    text: str
    audio_path: str
    duration: float


def find_chapter_audio(text_path: str) -> Optional[str]:
    stem, _ = os.path.splitext(text_path)
    for ext in AUDIO_EXTS:
        for candidate in (stem + ext, stem + ext.upper()):
            if os.path.exists(candidate):
                return candidate
    return None


def load_chapter(text_path: str, audio_path: Optional[str] = None) -> Chapter:
    """
    A chapter is a .txt file plus its narration. Without an explicit
    `audio_path` the same-stem audio file next to the text is used.
    """
    audio_path = audio_path or find_chapter_audio(text_path)
    if audio_path is None:
        raise FileNotFoundError(f"no narration audio found for {text_path}")
    with open(text_path, "r", encoding="utf-8") as fh:
        text = fh.read().strip()
    return Chapter(
        name=os.path.basename(text_path),
        text=text,
        audio_path=audio_path,
        duration=audio_duration(audio_path),
    )


def _read_index(index_file: str) -> dict:
    if not os.path.exists(index_file):
        return {"pos": 0, "order": []}
    try:
        with open(index_file, "r", encoding="utf-8") as fh:
            idx = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable chapter index %s: %s", index_file, e)
        return {"pos": 0, "order": []}
    return idx if isinstance(idx, dict) else {"pos": 0, "order": []}


def pick_next_chapter(chapters_dir: str = CHAPTERS_DIR, index_file: str = INDEX_FILE) -> Chapter:
    """
    Round-robin + shuffle picker over chapters_dir/*.txt that have narration.
    """
    files = sorted(
        f for f in os.listdir(chapters_dir)
        if f.lower().endswith(".txt")
        and find_chapter_audio(os.path.join(chapters_dir, f)) is not None
    )
    if not files:
        raise FileNotFoundError(f"no chapters with narration in {chapters_dir}")

    idx = _read_index(index_file)
    # If the chapter set changed, reshuffle
    order = idx.get("order", [])
    if sorted(order) != list(range(len(files))):
        idx["order"] = list(range(len(files)))
        random.shuffle(idx["order"])
        idx["pos"] = 0

    pos = int(idx.get("pos", 0)) % len(files)
    i = idx["order"][pos]
    idx["pos"] = (pos + 1) % len(files)
    with open(index_file, "w", encoding="utf-8") as fh:
        json.dump(idx, fh, indent=2)

    return load_chapter(os.path.join(chapters_dir, files[i]))
