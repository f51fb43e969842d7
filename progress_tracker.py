# progress_tracker.py
# Progress queries over the practice-attempt history

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional, Tuple

import db

PERIODS = ("Last 7 days", "Last 30 days", "Last 90 days", "All time")


class ProgressPoint(NamedTuple):
    date: datetime
    accuracy: float
    wer: float
    overall: Optional[float]  # None until the attempt is scored
    attempt_id: Optional[int] = None


def get_date_range(period: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Get start and end dates for a period label."""
    end_date = now or datetime.now()

    if period == "Last 7 days":
        start_date = end_date - timedelta(days=7)
    elif period == "Last 30 days":
        start_date = end_date - timedelta(days=30)
    elif period == "Last 90 days":
        start_date = end_date - timedelta(days=90)
    else:  # All time
        start_date = datetime.min

    return start_date, end_date


def progress_data(session, period: str = "Last 30 days", now: Optional[datetime] = None) -> List[ProgressPoint]:
    """Attempts with a local comparison inside `period`, oldest first."""
    start_date, end_date = get_date_range(period, now)

    points = []
    for attempt in db.get_all_attempts(session):
        try:
            attempt_date = datetime.strptime(attempt.timestamp, "%Y-%m-%dT%H:%M:%S")
        except ValueError:
            continue

        if attempt_date < start_date or attempt_date > end_date:
            continue

        if attempt.accuracy is not None and attempt.wer is not None:
            points.append(ProgressPoint(attempt_date, attempt.accuracy, attempt.wer, attempt.overall, attempt.id))

    points.sort(key=lambda p: p.date)
    return points


def period_averages(points: List[ProgressPoint]) -> dict:
    if not points:
        return {"attempts": 0, "accuracy": 0.0, "wer": 0.0, "overall": 0.0}
    scored = [p.overall for p in points if p.overall is not None]
    return {
        "attempts": len(points),
        "accuracy": sum(p.accuracy for p in points) / len(points),
        "wer": sum(p.wer for p in points) / len(points),
        "overall": sum(scored) / len(scored) if scored else 0.0,
    }
