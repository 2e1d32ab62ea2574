import datetime
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from . import db
from .db import Word
from .errors import NotFound
from .logging import logger

SCHEDULER_VERSION = "sm2"
INITIAL_INTERVAL_DAYS = 1
INITIAL_EASE_FACTOR = 2.5
EXTENDED_FIELDS = {
    "difficulty": Word.difficulty,
    "stability": Word.stability,
    "lapses": Word.lapses,
    "last_rating": Word.last_rating,
    "scheduler_version": Word.scheduler_version,
}


def sm2_schedule(
    interval: int,
    ease_factor: float,
    repetitions: int,
    quality: int,
    now: Optional[datetime.datetime] = None,
) -> Tuple[int, float, int, datetime.datetime]:
    """
    SM-2 (SuperMemo 2) scheduling algorithm.

    Maintains three pieces of state per word:
      - interval   – current inter-repetition interval in days
      - ease_factor – E-Factor (minimum 1.3, default 2.5)
      - repetitions – how many consecutive correct reviews (n)

    Quality grades (0-5):
      0 – complete blackout
      1 – very poor, wrong answer remembered after seeing correct one
      2 – wrong answer but correct one seemed easy to recall
      3 – correct answer with serious difficulty
      4 – correct answer after some hesitation
      5 – perfect, instant recall

    Algorithm (per https://super-memory.com/english/ol/sm2.htm):
      1. Update E-Factor first.
      2. If quality < 3 (lapse): reset repetitions to 0, interval to 1.
         Otherwise increment repetitions and compute interval:
           n == 1  → 1 day
           n == 2  → 6 days
           n >= 3  → previous interval × updated E-Factor (ceiling)
      3. Compute next due datetime from ``now``.

    Returns:
        (new_interval, new_ease_factor, new_repetitions, next_due)
    """
    quality = max(0, min(5, quality))

    new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    if new_ef < 1.3:
        new_ef = 1.3

    if quality < 3:
        new_reps = 0
        new_interval = 1
    else:
        new_reps = repetitions + 1
        if new_reps == 1:
            new_interval = 1
        elif new_reps == 2:
            new_interval = 6
        else:
            new_interval = math.ceil(interval * new_ef)

    now = now or db.utcnow()
    next_due = now + datetime.timedelta(days=new_interval)

    return new_interval, new_ef, new_reps, next_due


def infer_repetitions(word: Word) -> int:
    """Recover the SM-2 repetition count from what a word row stores.

    Words keep no explicit counter: a never-graded, reset or just-lapsed word is
    at 0, and the interval ladder (1 day, 6 days, then multiplied) tells the rest apart.
    """
    if word.last_review is None or word.last_rating is None:
        return 0
    if word.last_rating < 3:
        return 0
    if word.interval_days <= 1:
        return 1
    if word.interval_days <= 6:
        return 2
    return 3


def overdue_days(next_due: datetime.datetime, now: datetime.datetime) -> int:
    """Whole days since ``next_due`` (floored, negative when not yet due)."""
    return (now - next_due) // datetime.timedelta(days=1)


def rank_by_review_priority(words: List[Word], now: datetime.datetime) -> List[Word]:
    """Most overdue first; equally overdue words weakest first."""
    return sorted(words, key=lambda w: (-overdue_days(w.next_due, now), w.strength, w.id))


def recommended_batch_size(due_total: int) -> int:
    if due_total <= 10:
        return due_total
    if due_total <= 25:
        return 15
    if due_total <= 50:
        return 20
    return 25


def _eligible_words(session: Session, language: str) -> Query:
    return (
        session.query(Word)
        .filter(
            Word.language == language,
            Word.known.is_(False),
            Word.ignored.is_(False),
            db.has_sentences_clause(),
        )
    )


def _check_limit(limit: int) -> None:
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")


def due_with_priority(limit: int, language: Optional[str] = None,
                      now: Optional[datetime.datetime] = None) -> List[Word]:
    """Due learning words that have sentences, ranked by review priority, at most ``limit``."""
    _check_limit(limit)
    language = db.resolve_language(language)
    now = now or db.utcnow()

    session: Session = db.get_session()
    candidates = _eligible_words(session, language).filter(Word.next_due <= now).all()
    session.close()

    return rank_by_review_priority(candidates, now)[:limit]


def due_count(language: Optional[str] = None, now: Optional[datetime.datetime] = None) -> int:
    language = db.resolve_language(language)
    now = now or db.utcnow()
    session: Session = db.get_session()
    total = _eligible_words(session, language).filter(Word.next_due <= now).count()
    session.close()
    return total


def study_batch(limit: int, language: Optional[str] = None,
                now: Optional[datetime.datetime] = None) -> List[Word]:
    """Build a study session of up to ``limit`` words.

    Due words come first in priority order. If there are not enough of them the
    rest of the batch is filled with not-yet-due learning words, weakest first with
    a random tie-break, so a session is never short just because nothing is due.
    """
    _check_limit(limit)
    language = db.resolve_language(language)
    now = now or db.utcnow()

    due = due_with_priority(limit, language, now)
    remaining = limit - len(due)
    if remaining <= 0:
        return due

    selected_ids = [w.id for w in due]
    session: Session = db.get_session()
    query = _eligible_words(session, language).filter(Word.next_due > now)
    if selected_ids:
        query = query.filter(Word.id.notin_(selected_ids))
    backlog = query.order_by(Word.strength.asc(), func.random()).limit(remaining).all()
    session.close()

    logger.debug("study_batch_built", language=language, due=len(due), backlog=len(backlog))
    return due + backlog


def todays_study_words(max_words: Optional[int] = None, language: Optional[str] = None) -> List[Word]:
    """Due words sized to a manageable session."""
    limit = recommended_batch_size(due_count(language))
    if max_words is not None:
        limit = min(max_words, limit)
    return due_with_priority(limit, language)


def record_outcome(word_id: int, new_strength: int, interval_days: int, ease_factor: float,
                   next_due: datetime.datetime, now: Optional[datetime.datetime] = None,
                   **extended: Any) -> None:
    """Persist the result of a review in one UPDATE.

    ``extended`` may carry difficulty, stability, lapses, last_rating and
    scheduler_version for schedulers that track them.
    """
    if new_strength < 0:
        raise ValueError(f"strength must be >= 0, got {new_strength}")
    if interval_days < 1:
        raise ValueError(f"interval_days must be >= 1, got {interval_days}")
    unknown = set(extended) - set(EXTENDED_FIELDS)
    if unknown:
        raise TypeError(f"Unknown scheduling fields: {', '.join(sorted(unknown))}")

    now = now or db.utcnow()
    values: Dict[Any, Any] = {
        Word.strength: new_strength,
        Word.interval_days: interval_days,
        Word.ease_factor: ease_factor,
        Word.next_due: next_due,
        Word.last_review: now,
        Word.last_studied: now,
    }
    for name, value in extended.items():
        values[EXTENDED_FIELDS[name]] = value

    session: Session = db.get_session()
    try:
        changed = (
            session.query(Word)
            .filter(Word.id == word_id)
            .update(values, synchronize_session=False)
        )
        if changed == 0:
            raise NotFound("Word", word_id)
        session.commit()
    finally:
        session.close()


def review_word(word_id: int, quality: int, now: Optional[datetime.datetime] = None) -> Optional[Word]:
    """Grade a review (0-5), run SM-2 and store the new schedule. Returns the updated word."""
    now = now or db.utcnow()
    session: Session = db.get_session()
    word = session.get(Word, word_id)
    session.close()
    if word is None:
        raise NotFound("Word", word_id)

    quality = max(0, min(5, quality))
    new_interval, new_ef, _new_reps, next_due = sm2_schedule(
        word.interval_days, word.ease_factor, infer_repetitions(word), quality, now=now
    )
    if quality >= 3:
        new_strength = word.strength + quality * 5
        lapses = word.lapses
    else:
        new_strength = max(0, word.strength - 20)
        lapses = word.lapses + 1

    record_outcome(
        word_id, new_strength, new_interval, new_ef, next_due, now=now,
        lapses=lapses, last_rating=quality, scheduler_version=SCHEDULER_VERSION,
    )
    logger.info("word_reviewed", word_id=word_id, quality=quality,
                interval_days=new_interval, strength=new_strength)

    return db.get_word(word_id)


def reset_word_progress(word_id: int) -> None:
    """Put a word back to its initial schedule (e.g. after it is unmarked as known)."""
    now = db.utcnow()
    record_outcome(
        word_id, 0, INITIAL_INTERVAL_DAYS, INITIAL_EASE_FACTOR,
        now + datetime.timedelta(days=1), now=now,
        lapses=0, last_rating=None, scheduler_version=SCHEDULER_VERSION,
    )


def srs_stats(language: Optional[str] = None, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    """Dashboard numbers for the learning words of a language."""
    language = db.resolve_language(language)
    now = now or db.utcnow()
    session: Session = db.get_session()
    learning = session.query(Word).filter(
        Word.language == language, Word.known.is_(False), Word.ignored.is_(False)
    )
    total = learning.count()
    avg_interval, avg_ease = (
        session.query(func.avg(Word.interval_days), func.avg(Word.ease_factor))
        .filter(Word.language == language, Word.known.is_(False), Word.ignored.is_(False))
        .one()
    )
    due_words = _eligible_words(session, language).filter(Word.next_due <= now).all()
    session.close()

    due_today = len(due_words)
    overdue = sum(1 for w in due_words if overdue_days(w.next_due, now) > 0)
    return {
        "total_words": total,
        "due_today": due_today,
        "overdue": overdue,
        "average_interval": float(avg_interval or 0),
        "average_ease_factor": float(avg_ease or 0),
        "recommended_study_size": recommended_batch_size(due_today),
    }
