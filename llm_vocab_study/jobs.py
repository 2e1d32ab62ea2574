"""
Durable sentence-generation queue: one row per word in ``word_generation_queue``.

Job states move queued -> processing -> completed | failed, with
processing -> queued only through ``reschedule``. ``enqueue`` restarts a job
from any state and wipes its attempt history.

The queue expects a single consumer. ``mark_processing`` only succeeds on a row
that is still queued, so a second consumer racing for the same job gets
``InvalidTransition`` instead of a silent double claim, but nothing stops two
consumers from picking the same job in ``next_job``.
"""
import datetime
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from . import db
from .db import GenerationJob, Word
from .errors import InvalidTransition, NotFound
from .logging import logger

JOB_STATUSES = ("queued", "processing", "completed", "failed")
DEFAULT_SENTENCE_COUNT = int(os.getenv("LLM_VOCAB_SENTENCES_PER_WORD", "3"))
RETRY_BACKOFF_MS = int(os.getenv("LLM_VOCAB_RETRY_BACKOFF_MS", "2000"))


@dataclass
class QueuedWord:
    word_id: int
    word: str
    language: str
    status: str
    attempts: int


@dataclass
class QueueSummary:
    queued: int = 0
    processing: int = 0
    failed: int = 0
    active_words: List[QueuedWord] = field(default_factory=list)


def backoff_delay_ms(attempt: int, base_ms: int = RETRY_BACKOFF_MS) -> int:
    """Exponential backoff: base, 2*base, 4*base... for attempts 1, 2, 3..."""
    return base_ms * 2 ** max(0, attempt - 1)


def derive_processing_status(job_status: str, sentence_count: int) -> Optional[str]:
    """Word.processing_status implied by its job, or None when the job says nothing new.

    A completed job only makes a word ready once it has at least one sentence.
    """
    if job_status in ("queued", "processing", "failed"):
        return job_status
    if job_status == "completed" and sentence_count > 0:
        return "ready"
    return None


def _require_job(session: Session, job_id: int) -> GenerationJob:
    job = session.get(GenerationJob, job_id)
    if job is None:
        raise NotFound("GenerationJob", job_id)
    return job


def _set_word_status(session: Session, word_id: int, status: str) -> None:
    (
        session.query(Word)
        .filter(Word.id == word_id)
        .update({Word.processing_status: status}, synchronize_session=False)
    )


def _transition(job_id: int, expected: str, target: str, values: Dict[Any, Any],
                word_status: Optional[str] = None) -> GenerationJob:
    """Move a job from ``expected`` to ``target`` with a conditional UPDATE on its status."""
    session: Session = db.get_session()
    try:
        job = _require_job(session, job_id)
        values = dict(values)
        values[GenerationJob.status] = target
        changed = (
            session.query(GenerationJob)
            .filter(GenerationJob.id == job_id, GenerationJob.status == expected)
            .update(values, synchronize_session=False)
        )
        if changed == 0:
            raise InvalidTransition(job_id, job.status, target)
        if word_status is not None:
            _set_word_status(session, job.word_id, word_status)
        session.commit()
        session.refresh(job)
        session.expunge(job)
    finally:
        session.close()
    logger.info("job_transition", job_id=job_id, word_id=job.word_id,
                status=target, attempts=job.attempts)
    return job


def enqueue(word_id: int, language: str, topic: Optional[str] = None,
            desired_sentence_count: int = DEFAULT_SENTENCE_COUNT,
            now: Optional[datetime.datetime] = None) -> GenerationJob:
    """Queue sentence generation for a word, starting over if it already has a job.

    Upserts on the unique ``word_id`` so concurrent producers never create a
    second row for the same word.
    """
    if desired_sentence_count < 1:
        raise ValueError(f"desired_sentence_count must be >= 1, got {desired_sentence_count}")
    now = now or db.utcnow()

    session: Session = db.get_session()
    try:
        db.require_word(session, word_id)
        reset = {
            "language": language,
            "topic": topic,
            "desired_sentence_count": desired_sentence_count,
            "status": "queued",
            "attempts": 0,
            "last_error": None,
            "started_at": None,
            "updated_at": now,
        }
        stmt = sqlite_insert(GenerationJob).values(word_id=word_id, created_at=now, **reset)
        stmt = stmt.on_conflict_do_update(index_elements=["word_id"], set_=reset)
        session.execute(stmt)
        _set_word_status(session, word_id, "queued")
        session.commit()
        job = session.query(GenerationJob).filter(GenerationJob.word_id == word_id).one()
        session.expunge(job)
    finally:
        session.close()
    logger.info("job_enqueued", job_id=job.id, word_id=word_id, language=language,
                topic=topic, desired_sentence_count=desired_sentence_count)
    return job


def next_job(now: Optional[datetime.datetime] = None) -> Optional[GenerationJob]:
    """Oldest queued job that is visible at ``now``. Does not claim it.

    A rescheduled job carries an ``updated_at`` in the future and stays hidden
    until then.
    """
    now = now or db.utcnow()
    session: Session = db.get_session()
    job = (
        session.query(GenerationJob)
        .filter(GenerationJob.status == "queued", GenerationJob.updated_at <= now)
        .order_by(GenerationJob.updated_at.asc(), GenerationJob.created_at.asc(), GenerationJob.id.asc())
        .first()
    )
    session.close()
    return job


def mark_processing(job_id: int, now: Optional[datetime.datetime] = None) -> GenerationJob:
    now = now or db.utcnow()
    return _transition(
        job_id, "queued", "processing",
        {
            GenerationJob.attempts: GenerationJob.attempts + 1,
            GenerationJob.started_at: now,
            GenerationJob.updated_at: now,
        },
        word_status="processing",
    )


def claim_next_job(now: Optional[datetime.datetime] = None) -> Optional[GenerationJob]:
    """``next_job`` followed by ``mark_processing``, for the single queue consumer."""
    job = next_job(now)
    if job is None:
        return None
    return mark_processing(job.id, now)


def reschedule(job_id: int, delay_ms: int, last_error: Optional[str] = None,
               now: Optional[datetime.datetime] = None) -> GenerationJob:
    """Put a processing job back in the queue, hidden for ``delay_ms``. Attempts are kept."""
    if delay_ms < 0:
        raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
    now = now or db.utcnow()
    values: Dict[Any, Any] = {
        GenerationJob.updated_at: now + datetime.timedelta(milliseconds=delay_ms),
        GenerationJob.started_at: None,
    }
    if last_error is not None:
        values[GenerationJob.last_error] = last_error
    return _transition(job_id, "processing", "queued", values, word_status="queued")


def complete(job_id: int, now: Optional[datetime.datetime] = None) -> GenerationJob:
    """Mark a processing job completed. The word's status is left to ``sync_word_status``."""
    now = now or db.utcnow()
    return _transition(
        job_id, "processing", "completed",
        {GenerationJob.started_at: None, GenerationJob.updated_at: now},
    )


def fail(job_id: int, error_message: str, now: Optional[datetime.datetime] = None) -> GenerationJob:
    """Terminal failure. Only ``enqueue`` brings the job back."""
    now = now or db.utcnow()
    return _transition(
        job_id, "processing", "failed",
        {
            GenerationJob.last_error: error_message,
            GenerationJob.started_at: None,
            GenerationJob.updated_at: now,
        },
        word_status="failed",
    )


def sync_word_status(word_id: int) -> str:
    """Bring Word.processing_status in line with its job and sentence count. Returns the status."""
    session: Session = db.get_session()
    try:
        word = db.require_word(session, word_id)
        job = session.query(GenerationJob).filter(GenerationJob.word_id == word_id).one_or_none()
        status = word.processing_status
        if job is not None:
            derived = derive_processing_status(job.status, word.sentence_count)
            if derived is not None and derived != status:
                _set_word_status(session, word_id, derived)
                session.commit()
                status = derived
    finally:
        session.close()
    return status


def get_job(job_id: int) -> Optional[GenerationJob]:
    session: Session = db.get_session()
    job = session.get(GenerationJob, job_id)
    session.close()
    return job


def get_job_for_word(word_id: int) -> Optional[GenerationJob]:
    session: Session = db.get_session()
    job = session.query(GenerationJob).filter(GenerationJob.word_id == word_id).one_or_none()
    session.close()
    return job


def stuck_jobs(older_than: datetime.timedelta,
               now: Optional[datetime.datetime] = None) -> List[GenerationJob]:
    """Processing jobs claimed longer ago than ``older_than``, e.g. left behind by a crashed worker."""
    now = now or db.utcnow()
    session: Session = db.get_session()
    rows = (
        session.query(GenerationJob)
        .filter(GenerationJob.status == "processing", GenerationJob.started_at <= now - older_than)
        .order_by(GenerationJob.started_at.asc())
        .all()
    )
    session.close()
    return rows


def queue_summary(language: Optional[str] = None) -> QueueSummary:
    """Job counts plus the words currently waiting or being processed.

    Words already marked failed are left out of ``active_words`` so the UI does not
    report them twice.
    """
    session: Session = db.get_session()
    counts_query = session.query(GenerationJob.status, func.count(GenerationJob.id))
    if language:
        counts_query = counts_query.filter(GenerationJob.language == language)
    counts = dict(counts_query.group_by(GenerationJob.status).all())

    active_query = (
        session.query(GenerationJob, Word)
        .join(Word, Word.id == GenerationJob.word_id)
        .filter(
            GenerationJob.status.in_(("queued", "processing")),
            Word.processing_status != "failed",
        )
    )
    if language:
        active_query = active_query.filter(GenerationJob.language == language)
    active = active_query.order_by(GenerationJob.updated_at.asc(), GenerationJob.id.asc()).all()
    session.close()

    return QueueSummary(
        queued=counts.get("queued", 0),
        processing=counts.get("processing", 0),
        failed=counts.get("failed", 0),
        active_words=[
            QueuedWord(
                word_id=word.id,
                word=word.word,
                language=job.language,
                status=job.status,
                attempts=job.attempts,
            )
            for job, word in active
        ],
    )
