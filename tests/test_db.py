import os
from datetime import datetime, timedelta

import pytest

import db
import progress_tracker


@pytest.fixture
def session(tmp_path):
    s = db.get_session(str(tmp_path / "sessions.db"))
    yield s
    s.close()


def _audio(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b"fLaC")
    return str(path)


def test_add_and_score_attempt(session, tmp_path):
    attempt = db.add_attempt(
        session, 2, "It jumps high", _audio(tmp_path, "a.flac"),
        session_label="ch1", transcript="it jumps", accuracy=0.67, wer=0.33,
    )
    assert attempt.id is not None
    assert attempt.overall is None

    db.update_attempt_score(session, attempt.id, overall=0.8, accuracy=0.9, fluency=0.7, rhythm=0.6, feedback="ok")
    stored = db.get_attempt_by_id(session, attempt.id)
    assert stored.overall == 0.8
    assert stored.score_accuracy == 0.9
    assert stored.feedback == "ok"
    assert db.update_attempt_score(session, 999, 0, 0, 0, 0) is None


def test_delete_removes_unshared_audio(session, tmp_path):
    shared = _audio(tmp_path, "shared.flac")
    own = _audio(tmp_path, "own.flac")
    a = db.add_attempt(session, 0, "One", shared)
    b = db.add_attempt(session, 0, "One", shared)
    c = db.add_attempt(session, 1, "Two", own)

    db.delete_attempt(session, a.id)
    assert os.path.exists(shared)
    db.delete_attempt(session, b.id)
    assert not os.path.exists(shared)

    os.remove(own)
    db.delete_attempt(session, c.id)  # file already gone
    assert db.get_all_attempts(session) == []
    db.delete_attempt(session, 12345)


def test_cleanup_orphan_recordings(session, tmp_path):
    rec_dir = tmp_path / "recordings"
    rec_dir.mkdir()
    kept = _audio(rec_dir, "kept.flac")
    orphan = _audio(rec_dir, "orphan.wav")
    notes = rec_dir / "notes.txt"
    notes.write_text("keep me")
    db.add_attempt(session, 0, "One", kept)

    assert db.cleanup_orphan_recordings(session, str(rec_dir)) == 1
    assert os.path.exists(kept)
    assert not os.path.exists(orphan)
    assert notes.exists()
    assert db.cleanup_orphan_recordings(session, str(tmp_path / "missing")) == 0


def test_progress_data_filters_by_period(session, tmp_path):
    now = datetime(2026, 3, 31, 12, 0, 0)
    ages = {"recent": 2, "month": 20, "old": 200}
    for name, days in ages.items():
        a = db.add_attempt(session, 0, name, _audio(tmp_path, name + ".flac"), accuracy=0.5, wer=0.5)
        a.timestamp = (now - timedelta(days=days)).isoformat(timespec="seconds")
    unscored = db.add_attempt(session, 0, "no comparison", _audio(tmp_path, "x.flac"))
    unscored.timestamp = now.isoformat(timespec="seconds")
    session.commit()

    week = progress_tracker.progress_data(session, "Last 7 days", now=now)
    assert len(week) == 1
    month = progress_tracker.progress_data(session, "Last 30 days", now=now)
    assert len(month) == 2
    everything = progress_tracker.progress_data(session, "All time", now=now)
    assert len(everything) == 3
    assert everything == sorted(everything, key=lambda p: p.date)
    assert all(p.attempt_id is not None for p in everything)


def test_period_averages():
    assert progress_tracker.period_averages([])["attempts"] == 0
    points = [
        progress_tracker.ProgressPoint(datetime(2026, 1, 1), 1.0, 0.0, 0.8),
        progress_tracker.ProgressPoint(datetime(2026, 1, 2), 0.5, 0.5, None),
    ]
    avg = progress_tracker.period_averages(points)
    assert avg["accuracy"] == pytest.approx(0.75)
    assert avg["wer"] == pytest.approx(0.25)
    assert avg["overall"] == pytest.approx(0.8)
