#!/usr/bin/env python3
"""
Read-along speech practice - command line interface.

Listen to a chapter sentence by sentence, read each one aloud and get
word-level feedback, with optional pronunciation scoring from a remote
service and a local history of every attempt.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Optional

import click
from rich.table import Table

import db
import progress_tracker
from alignment_utils import compare_transcripts
from audio_capture import AudioCaptureSession, DeviceAuthorizer
from audio_player import ChapterPlayer
from audio_utils import audio_duration
from errors import SpeechPracticeError
from log_utils import configure_logging, console, error, step, success, warning
from models import ComparisonResult, PracticeMode, PronunciationScore, SessionSummary
from practice_session import PracticeSessionController
from script_loader import load_chapter, pick_next_chapter
from scoring_client import PronunciationScoringClient
from sentence_segmenter import segment_chapter, timing_map
from settings import default_settings, load_settings, save_settings, settings_path
from transcription_service import WhisperRecognizer

log = logging.getLogger(__name__)

PRACTICE_HELP = (
    "[p] play sentence  [r] record  [s] stop  [c] cancel  [u] play my attempt\n"
    "[a] score pronunciation  [n] next  [b] back  [g] go to  [q] quit"
)


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def print_comparison(result: ComparisonResult) -> None:
    table = Table(title=f"Accuracy {_pct(result.accuracy)}", show_lines=False)
    table.add_column("Word")
    table.add_column("Heard")
    table.add_column("")
    for match in result.matched_words:
        if match.is_correct:
            table.add_row(match.word, match.word, "[success]✓[/success]")
        elif match.spoken_as:
            table.add_row(match.word, match.spoken_as, "[warning]~[/warning]")
        else:
            table.add_row(match.word, "", "[error]✗[/error]")
    console.print(table)
    if result.extra_words:
        console.print(f"Extra words: [highlight]{', '.join(sorted(result.extra_words))}[/highlight]")
    console.print(f"WER {result.word_error_rate:.2f}  CER {result.char_error_rate:.2f}")


def print_score(score: PronunciationScore) -> None:
    console.print(
        f"Overall [highlight]{_pct(score.overall)}[/highlight]  "
        f"accuracy {_pct(score.accuracy)}  fluency {_pct(score.fluency)}  rhythm {_pct(score.rhythm)}"
    )
    weak = [ws for ws in score.word_scores if ws.score < 0.6]
    for ws in weak:
        console.print(f"  [warning]{ws.word}[/warning] {_pct(ws.score)} {ws.feedback or ''}")
    if score.feedback:
        console.print(score.feedback)


def print_summary(summary: SessionSummary) -> None:
    table = Table(title="Session summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Sentences practiced", f"{summary.completed_sentences}/{summary.total_sentences}")
    table.add_row("Word accuracy", _pct(summary.average_word_accuracy))
    table.add_row("Pronunciation accuracy", _pct(summary.average_accuracy))
    table.add_row("Fluency", _pct(summary.average_fluency))
    table.add_row("Rhythm", _pct(summary.average_rhythm))
    table.add_row("Overall score", _pct(summary.overall_score))
    table.add_row("Practice time", f"{summary.practice_time:.1f}s")
    console.print(table)


def build_controller(settings: dict, chapter, use_history: bool = True) -> PracticeSessionController:
    recognizer = WhisperRecognizer(settings)
    capture = AudioCaptureSession(
        recognizer,
        DeviceAuthorizer(recognizer),
        recordings_dir=settings["recordings_dir"],
        samplerate=int(settings["samplerate"]),
        level_interval=float(settings["level_interval_ms"]) / 1000.0,
        partial_interval=float(settings["partial_interval"]),
        final_timeout=float(settings["final_timeout"]),
    )
    scorer = PronunciationScoringClient(
        settings["scoring_url"],
        token=settings.get("scoring_token"),
        timeout=float(settings["scoring_timeout"]),
        max_retries=int(settings["scoring_retries"]),
    )
    player = ChapterPlayer()
    player.set_volume(settings.get("volume", 1.0))
    history = db.get_session(settings["db_path"]) if use_history else None
    return PracticeSessionController.from_chapter(
        chapter.text,
        chapter.duration,
        capture,
        player,
        scorer,
        chapter.audio_path,
        db=history,
        session_label=chapter.name,
        recordings_dir=settings["recordings_dir"],
        on_error=lambda e: error(e.user_message),
    )


@click.group()
@click.option(
    "--settings", "settings_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Settings JSON (default: $SPEECH_PRACTICE_SETTINGS or ./settings.json)",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.pass_context
def cli(ctx, settings_file: Optional[str], log_level: Optional[str]):
    """Read-along speech practice."""
    path = settings_file or settings_path()
    settings = load_settings(default_settings(), path)
    configure_logging(log_level or settings.get("log_level", "INFO"))
    ctx.obj = settings
    ctx.meta["settings_path"] = path


def _parse_value(raw: str):
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@cli.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.pass_context
def config(ctx, key: Optional[str], value: Optional[str]):
    """Show settings, or set KEY to VALUE in the settings file."""
    settings = ctx.obj
    if key is None:
        table = Table(title=ctx.meta["settings_path"])
        table.add_column("Setting")
        table.add_column("Value")
        for name in sorted(settings):
            shown = "***" if name == "scoring_token" and settings[name] else settings[name]
            table.add_row(name, json.dumps(shown))
        console.print(table)
        return
    if key not in default_settings():
        raise click.UsageError(f"unknown setting: {key}")
    if value is None:
        click.echo(json.dumps(settings.get(key)))
        return
    path = ctx.meta["settings_path"]
    # only the file's own overrides are written back, not env-seeded defaults
    stored = load_settings({}, path)
    stored[key] = _parse_value(value)
    save_settings(stored, path)
    success(f"{key} = {json.dumps(stored[key])}")


@cli.command()
@click.argument("original")
@click.argument("spoken")
def compare(original: str, spoken: str):
    """Compare a reference sentence with what was heard."""
    print_comparison(compare_transcripts(original, spoken))


@cli.command()
@click.argument("text_file", type=click.Path(exists=True, dir_okay=False))
@click.option("-d", "--duration", type=float, default=None, help="Chapter length in seconds")
@click.option("-a", "--audio", type=click.Path(exists=True, dir_okay=False), help="Chapter narration")
@click.option("--json", "as_json", is_flag=True, help="Print the timing map as JSON")
def segment(text_file: str, duration: Optional[float], audio: Optional[str], as_json: bool):
    """Split a chapter into sentences with estimated timings."""
    if duration is None:
        if audio is None:
            raise click.UsageError("give --duration or --audio")
        duration = audio_duration(audio)
    with open(text_file, "r", encoding="utf-8") as fh:
        text = fh.read()
    entries = timing_map(segment_chapter(text, duration))
    if as_json:
        click.echo(json.dumps(entries, indent=2, ensure_ascii=False))
        return
    table = Table(title=f"{len(entries)} sentence(s) over {duration:.1f}s")
    table.add_column("#", justify="right")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Sentence")
    for e in entries:
        table.add_row(str(e["index"] + 1), f"{e['start']:.2f}", f"{e['end']:.2f}", e["text"])
    console.print(table)


@cli.command()
@click.argument("text_file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("-a", "--audio", type=click.Path(exists=True, dir_okay=False), help="Chapter narration")
@click.option("--chapters-dir", default="chapters", show_default=True, help="Used when no file is given")
@click.option("--no-history", is_flag=True, help="Do not save attempts")
@click.option("--volume", type=click.FloatRange(0.0, 2.0), default=None, help="Playback gain, 0-2 (default from settings)")
@click.pass_obj
def practice(
    settings: dict,
    text_file: Optional[str],
    audio: Optional[str],
    chapters_dir: str,
    no_history: bool,
    volume: Optional[float],
):
    """Practice a chapter sentence by sentence."""
    if volume is not None:
        settings = {**settings, "volume": volume}
    try:
        chapter = load_chapter(text_file, audio) if text_file else pick_next_chapter(chapters_dir)
    except FileNotFoundError as e:
        raise click.ClickException(str(e))

    step(f"Loading {chapter.name} ({chapter.duration:.0f}s)")
    controller = build_controller(settings, chapter, use_history=not no_history)
    if not controller.sentences:
        raise click.ClickException("The chapter has no sentences to practice")
    if not asyncio.run(controller.capture.request_authorization()):
        warning("Microphone or speech recognition unavailable; recording is disabled")

    try:
        _practice_loop(controller)
    finally:
        print_summary(controller.get_session_summary())
        controller.close()


def _practice_loop(controller: PracticeSessionController) -> None:
    console.print(PRACTICE_HELP)
    while True:
        snap = controller.snapshot()
        console.print(
            f"\n[step]{snap.current_index + 1}/{snap.total_sentences}[/step] "
            f"[{snap.mode.value}] {snap.current_sentence.text}"
        )
        choice = click.prompt("", default="p", show_default=False).strip().lower()
        controller.clear_error()

        if choice == "q":
            if controller.mode is PracticeMode.RECORDING:
                controller.cancel_recording()
            return
        elif choice == "p":
            try:
                asyncio.run(controller.play_current_sentence())
            except KeyboardInterrupt:
                _interrupt_playback(controller)
        elif choice == "r":
            if controller.start_recording():
                click.prompt("Recording... press Enter to stop", default="", show_default=False)
                _finish_recording(controller)
        elif choice == "s":
            _finish_recording(controller)
        elif choice == "c":
            if controller.cancel_recording():
                warning("Recording discarded")
            else:
                warning("Nothing is being recorded")
        elif choice == "u":
            try:
                asyncio.run(controller.play_user_recording())
            except SpeechPracticeError as e:
                error(e.user_message)
            except KeyboardInterrupt:
                _interrupt_playback(controller)
        elif choice == "a":
            score = asyncio.run(controller.request_pronunciation_score())
            if score is not None:
                print_score(score)
            elif controller.current_sentence.recording is None:
                warning("Record the sentence first")
        elif choice == "n":
            if not controller.next_sentence():
                warning("This is the last sentence")
        elif choice == "b":
            if not controller.previous_sentence():
                warning("This is the first sentence")
        elif choice == "g":
            index = click.prompt("Sentence number", type=int)
            if not controller.go_to_sentence(index - 1):
                warning(f"Choose 1-{len(controller.sentences)}")
        else:
            console.print(PRACTICE_HELP)


def _interrupt_playback(controller: PracticeSessionController) -> None:
    position = getattr(controller.player, "position", None)
    controller.stop_playback()
    if position is not None:
        console.print(f"Stopped at {position:.1f}s")


def _finish_recording(controller: PracticeSessionController) -> None:
    result = controller.stop_recording()
    if result is None:
        return
    print_comparison(result)
    fluency = controller.current_sentence.fluency
    if fluency is not None:
        console.print(
            f"{fluency.articulation_rate:.0f} wpm, pauses {_pct(fluency.pause_ratio)}, "
            f"{fluency.filled_pauses} filler(s)"
        )
    success(f"Saved {os.path.basename(controller.current_sentence.recording.audio_handle)}")


@cli.command()
@click.option(
    "--period",
    type=click.Choice(progress_tracker.PERIODS),
    default="Last 30 days",
    show_default=True,
)
@click.option("--delete", "delete_id", type=int, default=None, help="Delete attempt ID and its recording")
@click.pass_obj
def history(settings: dict, period: str, delete_id: Optional[int]):
    """Show practice progress over a time period."""
    session = db.get_session(settings["db_path"])
    if delete_id is not None:
        try:
            if db.get_attempt_by_id(session, delete_id) is None:
                raise click.ClickException(f"No attempt with ID {delete_id}")
            db.delete_attempt(session, delete_id)
        finally:
            session.close()
        success(f"Deleted attempt {delete_id}")
        return
    try:
        points = progress_tracker.progress_data(session, period)
    finally:
        session.close()
    if not points:
        warning("No attempts recorded for this period")
        return
    table = Table(title=f"Progress - {period}")
    table.add_column("ID", justify="right")
    table.add_column("When")
    table.add_column("Accuracy", justify="right")
    table.add_column("WER", justify="right")
    table.add_column("Score", justify="right")
    for p in points:
        table.add_row(
            str(p.attempt_id),
            p.date.strftime("%Y-%m-%d %H:%M"),
            _pct(p.accuracy),
            f"{p.wer:.2f}",
            _pct(p.overall) if p.overall is not None else "-",
        )
    console.print(table)
    avg = progress_tracker.period_averages(points)
    console.print(
        f"{avg['attempts']} attempt(s): accuracy {_pct(avg['accuracy'])}, "
        f"WER {avg['wer']:.2f}, score {_pct(avg['overall'])}"
    )


def main():
    cli()


if __name__ == "__main__":
    main()
