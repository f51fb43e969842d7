import logging
import os
from datetime import datetime

from sqlalchemy import Column, Float, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

log = logging.getLogger(__name__)

Base = declarative_base()

AUDIO_EXTENSIONS = (".flac", ".wav")


class PracticeAttempt(Base):
    __tablename__ = "attempts"
    id             = Column(Integer, primary_key=True)
    timestamp      = Column(String,  nullable=False)
    session_label  = Column(String,  nullable=False, default="")
    sentence_index = Column(Integer, nullable=False)
    sentence_text  = Column(Text,    nullable=False)
    audio_path     = Column(String,  nullable=False)
    transcript     = Column(Text,    nullable=True)
    duration       = Column(Float,   nullable=True)
    confidence     = Column(Float,   nullable=True)
    # local comparison
    accuracy       = Column(Float,   nullable=True)
    wer            = Column(Float,   nullable=True)
    cer            = Column(Float,   nullable=True)
    artic_rate     = Column(Float,   nullable=True)
    pause_ratio    = Column(Float,   nullable=True)
    # remote pronunciation score; empty until scoring is run
    overall        = Column(Float,   nullable=True)
    score_accuracy = Column(Float,   nullable=True)
    fluency        = Column(Float,   nullable=True)
    rhythm         = Column(Float,   nullable=True)
    feedback       = Column(Text,    nullable=True)


def get_engine(db_path: str = "sessions.db"):
    full = os.path.abspath(db_path)
    return create_engine(f"sqlite:///{full}", echo=False)


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)


def get_session(db_path: str = "sessions.db"):
    engine = get_engine(db_path)
    init_db(engine)
    return sessionmaker(bind=engine)()


def get_all_attempts(db):
    return db.query(PracticeAttempt).order_by(PracticeAttempt.timestamp.desc()).all()


def get_attempt_by_id(db, attempt_id: int):
    return db.get(PracticeAttempt, attempt_id)


def add_attempt(
    db,
    sentence_index: int,
    sentence_text: str,
    audio_path: str,
    session_label: str = "",
    transcript: str | None = None,
    duration: float | None = None,
    confidence: float | None = None,
    accuracy: float | None = None,
    wer: float | None = None,
    cer: float | None = None,
    artic_rate: float | None = None,
    pause_ratio: float | None = None,
):
    ts = datetime.now().isoformat(timespec="seconds")
    attempt = PracticeAttempt(
        timestamp=ts,
        session_label=session_label,
        sentence_index=sentence_index,
        sentence_text=sentence_text,
        audio_path=audio_path,
        transcript=transcript,
        duration=duration,
        confidence=confidence,
        accuracy=accuracy,
        wer=wer,
        cer=cer,
        artic_rate=artic_rate,
        pause_ratio=pause_ratio,
    )
    db.add(attempt)
    db.commit()
    db.refresh(attempt)
    return attempt


def update_attempt_score(
    db,
    attempt_id: int,
    overall: float,
    accuracy: float,
    fluency: float,
    rhythm: float,
    feedback: str | None = None,
):
    attempt = db.get(PracticeAttempt, attempt_id)
    if not attempt:
        return None
    attempt.overall = overall
    attempt.score_accuracy = accuracy
    attempt.fluency = fluency
    attempt.rhythm = rhythm
    attempt.feedback = feedback
    db.commit()
    db.refresh(attempt)
    return attempt


def delete_attempt(db, attempt_id: int):
    attempt = db.get(PracticeAttempt, attempt_id)
    if not attempt:
        return
    # delete the audio file if no other attempt references it
    exists = db.query(PracticeAttempt).filter(
        PracticeAttempt.audio_path == attempt.audio_path,
        PracticeAttempt.id != attempt.id
    ).first()
    if not exists:
        try:
            os.remove(attempt.audio_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Could not remove %s: %s", attempt.audio_path, e)
    db.delete(attempt)
    db.commit()


def referenced_audio_paths(db) -> set:
    rows = db.query(PracticeAttempt.audio_path).all()
    return {os.path.abspath(r[0]) for r in rows if r[0]}


def cleanup_orphan_recordings(db, recordings_dir: str = "recordings") -> int:
    """Remove recordings on disk that no attempt references. Returns the count."""
    if not os.path.isdir(recordings_dir):
        return 0
    keep = referenced_audio_paths(db)
    removed = 0
    for name in os.listdir(recordings_dir):
        if not name.lower().endswith(AUDIO_EXTENSIONS):
            continue
        path = os.path.abspath(os.path.join(recordings_dir, name))
        if path in keep:
            continue
        try:
            os.remove(path)
            removed += 1
        except OSError as e:
            log.warning("Could not remove orphan recording %s: %s", path, e)
    if removed:
        log.info("Removed %d orphan recording(s)", removed)
    return removed
