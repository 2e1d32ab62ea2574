"""
Sentence-word cross-linking.

A stored sentence reinforces every learning word it contains, not only the word
it was generated for. These helpers keep the ``sentence_words`` link table and
each word's ``sentence_count`` in step; they run inside the caller's session so
the insert or delete and its links commit together.
"""
import re
import unicodedata
from typing import Dict, List, Optional, Set

from sqlalchemy import case
from sqlalchemy.orm import Session

from .db import Sentence, SentenceWord, Word
from .errors import NotFound
from .logging import logger

SPLIT_PATTERN = re.compile(r"(\s+|[.,!?;:])")
MAX_PHRASE_WORDS = 3


def split_sentence_into_parts(sentence: Optional[str]) -> List[str]:
    """Split into words, whitespace runs and punctuation marks, keeping the separators."""
    if not sentence:
        return []
    return SPLIT_PATTERN.split(sentence)


def normalize_fragment(fragment: str) -> str:
    stripped = "".join(ch for ch in fragment if not unicodedata.category(ch).startswith("P"))
    return stripped.strip().lower()


def tokenize(text: str) -> List[str]:
    """Normalized word fragments of ``text``; whitespace and pure punctuation are dropped."""
    tokens = []
    for part in split_sentence_into_parts(text):
        if not part or part.isspace():
            continue
        normalized = normalize_fragment(part)
        if normalized:
            tokens.append(normalized)
    return tokens


def normalize_word_text(text: str) -> str:
    return " ".join(tokenize(text))


def candidate_phrases(tokens: List[str], max_words: int = MAX_PHRASE_WORDS) -> Set[str]:
    """Every run of 1..max_words consecutive tokens, joined by single spaces."""
    phrases = set()
    for start in range(len(tokens)):
        for size in range(1, max_words + 1):
            if start + size > len(tokens):
                break
            phrases.add(" ".join(tokens[start:start + size]))
    return phrases


def _learning_word_lookup(session: Session, language: str) -> Dict[str, List[int]]:
    rows = (
        session.query(Word.id, Word.word)
        .filter(Word.language == language, Word.known.is_(False), Word.ignored.is_(False))
        .all()
    )
    lookup: Dict[str, List[int]] = {}
    for word_id, text in rows:
        key = normalize_word_text(text)
        if key:
            lookup.setdefault(key, []).append(word_id)
    return lookup


def link_on_insert(session: Session, sentence_id: int, sentence_text: str, language: str,
                   owner_word_id: Optional[int] = None) -> List[int]:
    """Link a stored sentence to the learning words it contains.

    Each newly created link bumps the word's ``sentence_count`` by one; links that
    already exist are left alone. The owner word is always linked, even when the
    sentence only contains an inflected form of it. Returns the ids of words that
    got a new link.
    """
    if owner_word_id is None:
        sentence = session.get(Sentence, sentence_id)
        if sentence is None:
            raise NotFound("Sentence", sentence_id)
        owner_word_id = sentence.word_id

    lookup = _learning_word_lookup(session, language)
    matched: List[int] = []
    for phrase in sorted(candidate_phrases(tokenize(sentence_text))):
        for word_id in lookup.get(phrase, []):
            if word_id not in matched:
                matched.append(word_id)
    if owner_word_id is not None and owner_word_id not in matched:
        matched.append(owner_word_id)

    existing = {
        row[0]
        for row in session.query(SentenceWord.word_id).filter(SentenceWord.sentence_id == sentence_id).all()
    }
    created = [word_id for word_id in matched if word_id not in existing]
    for word_id in created:
        session.add(SentenceWord(sentence_id=sentence_id, word_id=word_id))
    session.flush()

    if created:
        (
            session.query(Word)
            .filter(Word.id.in_(created))
            .update({Word.sentence_count: Word.sentence_count + 1}, synchronize_session=False)
        )
    logger.debug("sentence_linked", sentence_id=sentence_id, created=created, already_linked=sorted(existing))
    return created


def unlink_on_delete(session: Session, sentence_id: int) -> List[int]:
    """Delete a sentence, decrementing every linked word's ``sentence_count`` (never below zero).

    Sentences stored before the link table existed have no link rows; for those the
    owner word is decremented instead. Returns the ids of decremented words.
    """
    sentence = session.get(Sentence, sentence_id)
    if sentence is None:
        raise NotFound("Sentence", sentence_id)

    linked = [
        row[0]
        for row in session.query(SentenceWord.word_id).filter(SentenceWord.sentence_id == sentence_id).all()
    ]
    affected = linked if linked else ([sentence.word_id] if sentence.word_id is not None else [])

    if affected:
        (
            session.query(Word)
            .filter(Word.id.in_(affected))
            .update(
                {Word.sentence_count: case((Word.sentence_count > 0, Word.sentence_count - 1), else_=0)},
                synchronize_session=False,
            )
        )
    session.query(SentenceWord).filter(SentenceWord.sentence_id == sentence_id).delete(synchronize_session=False)
    session.delete(sentence)
    session.flush()
    return affected
