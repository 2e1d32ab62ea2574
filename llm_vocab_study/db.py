from __future__ import annotations
from sqlalchemy import (
    create_engine, event, exists, func, or_, case,
    Boolean, DateTime, Float as SAFloat, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column
import datetime
import json
import os
from typing import Optional, List, Any, Dict, Tuple

from .errors import NotFound
from .logging import logger

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"
DEFAULT_LANGUAGE = "spanish"
PROCESSING_STATUSES = ("queued", "processing", "ready", "failed")


def utcnow() -> datetime.datetime:
    """Current UTC time without tzinfo, matching what SQLite DateTime columns give back."""
    return datetime.datetime.now(datetime.UTC).replace(tzinfo=None)


def _tomorrow() -> datetime.datetime:
    return utcnow() + datetime.timedelta(days=1)


class Base(DeclarativeBase):
    pass
DB_PATH: str = os.environ.get("LLM_VOCAB_DB", "vocab_learning.db")
engine = create_engine(f"sqlite:///{DB_PATH}")
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Word(Base):
    __tablename__ = "words"
    __table_args__ = (
        Index("idx_words_known_ignored", "known", "ignored"),
        Index("idx_words_srs_review", "next_due", "strength"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    word: Mapped[str] = mapped_column(String, nullable=False)
    language: Mapped[str] = mapped_column(String, nullable=False, default=DEFAULT_LANGUAGE)
    translation: Mapped[str] = mapped_column(Text, nullable=False, default="")
    audio_path: Mapped[Optional[str]] = mapped_column(String)
    strength: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    known: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ignored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_studied: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    # SRS fields
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ease_factor: Mapped[float] = mapped_column(SAFloat, nullable=False, default=2.5)
    last_review: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    next_due: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=_tomorrow)
    # Extended scheduler state, only stored here
    difficulty: Mapped[Optional[float]] = mapped_column(SAFloat)
    stability: Mapped[Optional[float]] = mapped_column(SAFloat)
    lapses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_rating: Mapped[Optional[int]] = mapped_column(Integer)
    scheduler_version: Mapped[Optional[str]] = mapped_column(String)
    # Generation pipeline
    processing_status: Mapped[str] = mapped_column(String, nullable=False, default="ready")
    sentence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Sentence(Base):
    __tablename__ = "sentences"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Legacy owner; the sentence_words table decides which words a sentence reinforces
    word_id: Mapped[Optional[int]] = mapped_column(ForeignKey("words.id", ondelete="CASCADE"), index=True)
    sentence: Mapped[str] = mapped_column(Text, nullable=False)
    translation: Mapped[str] = mapped_column(Text, nullable=False)
    audio_path: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_shown: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    context_before: Mapped[Optional[str]] = mapped_column(Text)
    context_after: Mapped[Optional[str]] = mapped_column(Text)
    context_before_translation: Mapped[Optional[str]] = mapped_column(Text)
    context_after_translation: Mapped[Optional[str]] = mapped_column(Text)
    sentence_parts: Mapped[Optional[str]] = mapped_column(Text)  # JSON list from split_sentence_into_parts
    sentence_generation_model: Mapped[Optional[str]] = mapped_column(String)


class SentenceWord(Base):
    __tablename__ = "sentence_words"
    sentence_id: Mapped[int] = mapped_column(ForeignKey("sentences.id", ondelete="CASCADE"), primary_key=True)
    word_id: Mapped[int] = mapped_column(ForeignKey("words.id", ondelete="CASCADE"), primary_key=True, index=True)


class GenerationJob(Base):
    __tablename__ = "word_generation_queue"
    __table_args__ = (
        Index("idx_word_generation_queue_status", "status", "updated_at"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    word_id: Mapped[int] = mapped_column(ForeignKey("words.id", ondelete="CASCADE"), nullable=False, unique=True)
    language: Mapped[str] = mapped_column(String, nullable=False)
    topic: Mapped[Optional[str]] = mapped_column(String)
    desired_sentence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    started_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)


class Setting(Base):
    __tablename__ = "settings"
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


def is_db_initialized() -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    table_names = inspector.get_table_names()

    required_tables = {'words', 'sentences', 'sentence_words', 'word_generation_queue', 'settings'}
    return required_tables.issubset(set(table_names))


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


__all__ = [
    "Word", "Sentence", "SentenceWord", "GenerationJob", "Setting",
    "utcnow", "init_db", "is_db_initialized", "get_session",
    "get_setting", "set_setting", "get_current_language", "set_current_language",
    "get_available_languages", "resolve_language",
    "add_word", "get_word", "require_word", "get_all_words",
    "mark_word_known", "mark_word_ignored", "update_last_studied",
    "insert_sentence", "delete_sentence", "get_sentence", "get_sentences_for_word",
    "get_sentence_parts", "update_sentence_last_shown", "update_sentence_audio_path",
    "get_word_processing_info", "get_study_stats", "has_sentences_clause",
]


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------
def get_setting(key: str) -> Optional[str]:
    session: Session = get_session()
    row = session.get(Setting, key)
    session.close()
    return row.value if row else None


def set_setting(key: str, value: str) -> None:
    session: Session = get_session()
    session.merge(Setting(key=key, value=value, updated_at=utcnow()))
    session.commit()
    session.close()


def get_current_language() -> str:
    return get_setting("current_language") or DEFAULT_LANGUAGE


def set_current_language(language: str) -> None:
    set_setting("current_language", language)


def resolve_language(language: Optional[str]) -> str:
    return language or get_current_language()


def get_available_languages() -> List[str]:
    """Languages that have at least one word, alphabetically."""
    session: Session = get_session()
    rows = session.query(Word.language).distinct().order_by(Word.language.asc()).all()
    session.close()
    return [row[0] for row in rows]


# ----------------------------------------------------------------------
# Words
# ----------------------------------------------------------------------
def add_word(word: str, language: str, translation: str, audio_path: Optional[str] = None) -> Optional[int]:
    """Add a word with initial SRS state. Returns the new id, or None if it already exists."""
    text = word.strip()
    if not text:
        raise ValueError("Word text must not be empty")

    session: Session = get_session()
    existing = (
        session.query(Word.id)
        .filter(func.lower(Word.word) == text.lower(), Word.language == language)
        .first()
    )
    if existing:
        session.close()
        return None

    row = Word(
        word=text,
        language=language,
        translation=translation,
        audio_path=audio_path,
        next_due=_tomorrow(),
    )
    session.add(row)
    session.commit()
    word_id = row.id
    session.close()
    logger.info("word_added", word_id=word_id, word=text, language=language)
    return word_id


def get_word(word_id: int) -> Optional[Word]:
    session: Session = get_session()
    row = session.get(Word, word_id)
    session.close()
    return row


def require_word(session: Session, word_id: int) -> Word:
    row = session.get(Word, word_id)
    if row is None:
        raise NotFound("Word", word_id)
    return row


def get_all_words(include_known: bool = True, include_ignored: bool = False,
                  language: Optional[str] = None) -> List[Word]:
    """All words of a language; learning-only listings are weakest first, others newest first."""
    language = resolve_language(language)
    session: Session = get_session()
    query = session.query(Word).filter(Word.language == language)
    if not include_known:
        query = query.filter(Word.known.is_(False))
    if not include_ignored:
        query = query.filter(Word.ignored.is_(False))
    if not include_known and not include_ignored:
        query = query.order_by(Word.strength.asc(), Word.id.asc())
    else:
        query = query.order_by(Word.created_at.desc(), Word.id.desc())
    rows = query.all()
    session.close()
    return rows


def _update_word(word_id: int, values: Dict[Any, Any]) -> None:
    session: Session = get_session()
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


def mark_word_known(word_id: int, known: bool = True) -> None:
    _update_word(word_id, {Word.known: known, Word.last_studied: utcnow()})


def mark_word_ignored(word_id: int, ignored: bool = True) -> None:
    _update_word(word_id, {Word.ignored: ignored, Word.last_studied: utcnow()})


def update_last_studied(word_id: int) -> None:
    _update_word(word_id, {Word.last_studied: utcnow()})


def has_sentences_clause() -> Any:
    """SQL predicate: the word has a linked sentence, or owns a legacy unlinked one."""
    return or_(
        exists().where(SentenceWord.word_id == Word.id),
        exists().where(Sentence.word_id == Word.id),
    )


def get_word_processing_info(word_id: int) -> Optional[Tuple[str, int]]:
    session: Session = get_session()
    row = (
        session.query(Word.processing_status, Word.sentence_count)
        .filter(Word.id == word_id)
        .first()
    )
    session.close()
    if row is None:
        return None
    return row[0], row[1]


def get_study_stats(language: Optional[str] = None) -> Dict[str, Any]:
    """Totals over non-ignored words of a language."""
    language = resolve_language(language)
    session: Session = get_session()
    row = (
        session.query(
            func.count(Word.id),
            func.count(Word.last_studied),
            func.avg(case((Word.last_studied.isnot(None), Word.strength))),
            func.max(Word.last_studied),
        )
        .filter(Word.ignored.is_(False), Word.language == language)
        .one()
    )
    session.close()
    return {
        "total_words": row[0] or 0,
        "words_studied": row[1] or 0,
        "average_strength": float(row[2] or 0),
        "last_study_date": row[3],
    }


# ----------------------------------------------------------------------
# Sentences
# ----------------------------------------------------------------------
def insert_sentence(word_id: int, sentence: str, translation: str, audio_path: str = "",
                    context_before: Optional[str] = None,
                    context_after: Optional[str] = None,
                    context_before_translation: Optional[str] = None,
                    context_after_translation: Optional[str] = None,
                    sentence_generation_model: Optional[str] = None) -> int:
    """Store a sentence owned by ``word_id`` and cross-link it to every learning word it contains.

    Linking runs in the same transaction as the insert, so a sentence is never
    visible without its links.
    """
    from .linker import link_on_insert, split_sentence_into_parts

    session: Session = get_session()
    try:
        owner = require_word(session, word_id)
        parts = split_sentence_into_parts(sentence)
        row = Sentence(
            word_id=owner.id,
            sentence=sentence,
            translation=translation,
            audio_path=audio_path,
            context_before=context_before,
            context_after=context_after,
            context_before_translation=context_before_translation,
            context_after_translation=context_after_translation,
            sentence_parts=json.dumps(parts, ensure_ascii=False) if parts else None,
            sentence_generation_model=sentence_generation_model,
        )
        session.add(row)
        session.flush()
        linked = link_on_insert(session, row.id, sentence, owner.language, owner_word_id=owner.id)
        session.commit()
        sentence_id = row.id
    finally:
        session.close()
    logger.info("sentence_inserted", sentence_id=sentence_id, word_id=word_id, linked_words=linked)
    return sentence_id


def delete_sentence(sentence_id: int) -> List[int]:
    """Delete a sentence and its links. Returns the ids of words whose counters were decremented."""
    from .linker import unlink_on_delete

    session: Session = get_session()
    try:
        affected = unlink_on_delete(session, sentence_id)
        session.commit()
    finally:
        session.close()
    logger.info("sentence_deleted", sentence_id=sentence_id, unlinked_words=affected)
    return affected


def get_sentence(sentence_id: int) -> Optional[Sentence]:
    session: Session = get_session()
    row = session.get(Sentence, sentence_id)
    session.close()
    return row


def get_sentences_for_word(word_id: int) -> List[Sentence]:
    """Sentences reinforcing a word: linked ones plus legacy sentences it owns without links."""
    session: Session = get_session()
    linked_ids = session.query(SentenceWord.sentence_id).filter(SentenceWord.word_id == word_id)
    rows = (
        session.query(Sentence)
        .filter(or_(Sentence.id.in_(linked_ids), Sentence.word_id == word_id))
        .order_by(Sentence.id.asc())
        .all()
    )
    session.close()
    return rows


def get_sentence_parts(row: Sentence) -> Optional[List[str]]:
    if not row.sentence_parts:
        return None
    try:
        parsed = json.loads(row.sentence_parts)
    except json.JSONDecodeError:
        logger.warning("sentence_parts_unreadable", sentence_id=row.id)
        return None
    return parsed if isinstance(parsed, list) else None


def _update_sentence(sentence_id: int, values: Dict[Any, Any]) -> None:
    session: Session = get_session()
    try:
        changed = (
            session.query(Sentence)
            .filter(Sentence.id == sentence_id)
            .update(values, synchronize_session=False)
        )
        if changed == 0:
            raise NotFound("Sentence", sentence_id)
        session.commit()
    finally:
        session.close()


def update_sentence_last_shown(sentence_id: int) -> None:
    _update_sentence(sentence_id, {Sentence.last_shown: utcnow()})


def update_sentence_audio_path(sentence_id: int, audio_path: str) -> None:
    _update_sentence(sentence_id, {Sentence.audio_path: audio_path})
