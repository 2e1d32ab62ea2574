import datetime
import json
import pytest
from sqlalchemy import create_engine

from llm_vocab_study import db
from llm_vocab_study.db import get_session, Word
from llm_vocab_study.errors import NotFound


@pytest.fixture(autouse=True)
def setup_db(tmp_path, monkeypatch):
    # Use a temporary SQLite DB, and rebind engine/session to it
    test_db = str(tmp_path / "test.db")
    monkeypatch.setenv("LLM_VOCAB_DB", test_db)
    db.engine = create_engine(f"sqlite:///{test_db}")
    db.SessionLocal = db.sessionmaker(bind=db.engine, expire_on_commit=False)
    db.init_db()
    yield


def test_init_db_creates_all_tables():
    assert db.is_db_initialized()


def test_add_word_initial_state():
    before = db.utcnow()
    word_id = db.add_word("  hablar ", "spanish", "to speak")

    word = db.get_word(word_id)
    assert word.word == "hablar"
    assert word.strength == 0
    assert word.known is False
    assert word.ignored is False
    assert word.interval_days == 1
    assert word.ease_factor == pytest.approx(2.5)
    assert word.processing_status == "ready"
    assert word.sentence_count == 0
    assert word.next_due >= before + datetime.timedelta(days=1)


def test_add_word_duplicates_are_case_insensitive_per_language():
    assert db.add_word("Hablar", "spanish", "to speak") is not None
    assert db.add_word("hablar", "spanish", "to speak") is None
    assert db.add_word("hablar", "portuguese", "to speak") is not None


def test_add_word_rejects_empty_text():
    with pytest.raises(ValueError):
        db.add_word("   ", "spanish", "")


def test_current_language_setting():
    assert db.get_current_language() == db.DEFAULT_LANGUAGE
    db.set_current_language("german")
    assert db.get_current_language() == "german"
    db.set_current_language("italian")
    assert db.get_setting("current_language") == "italian"
    assert db.resolve_language(None) == "italian"
    assert db.resolve_language("french") == "french"


def test_available_languages():
    db.add_word("chat", "french", "cat")
    db.add_word("gato", "spanish", "cat")
    db.add_word("chien", "french", "dog")
    assert db.get_available_languages() == ["french", "spanish"]


def test_get_all_words_filters():
    learning = db.add_word("uno", "spanish", "one")
    known = db.add_word("dos", "spanish", "two")
    ignored = db.add_word("tres", "spanish", "three")
    db.mark_word_known(known)
    db.mark_word_ignored(ignored)

    assert {w.id for w in db.get_all_words(language="spanish")} == {learning, known}
    assert [w.id for w in db.get_all_words(include_known=False, language="spanish")] == [learning]
    assert {w.id for w in db.get_all_words(include_ignored=True, language="spanish")} == {learning, known, ignored}


def test_mark_unknown_word():
    with pytest.raises(NotFound):
        db.mark_word_known(31337)
    with pytest.raises(NotFound):
        db.update_last_studied(31337)


def test_insert_sentence_stores_parts_and_context():
    word_id = db.add_word("hablar", "spanish", "to speak")
    sentence_id = db.insert_sentence(
        word_id, "Quiero hablar, por favor.", "I want to speak, please.", "/a.mp3",
        context_before="Hola.", context_after_translation="Thanks.",
        sentence_generation_model="mock-model",
    )

    row = db.get_sentence(sentence_id)
    assert row.word_id == word_id
    assert row.audio_path == "/a.mp3"
    assert row.context_before == "Hola."
    assert row.context_after_translation == "Thanks."
    assert row.sentence_generation_model == "mock-model"
    assert db.get_sentence_parts(row) == ["Quiero", " ", "hablar", ",", "", " ", "por", " ", "favor", ".", ""]
    assert json.loads(row.sentence_parts)[0] == "Quiero"


def test_insert_sentence_for_unknown_word():
    with pytest.raises(NotFound):
        db.insert_sentence(404, "Hola.", "Hello.")
    session = get_session()
    assert session.query(db.Sentence).count() == 0
    session.close()


def test_sentence_updates():
    word_id = db.add_word("hablar", "spanish", "to speak")
    sentence_id = db.insert_sentence(word_id, "Hablar es fácil.", "Speaking is easy.")

    db.update_sentence_audio_path(sentence_id, "/b.mp3")
    db.update_sentence_last_shown(sentence_id)
    row = db.get_sentence(sentence_id)
    assert row.audio_path == "/b.mp3"
    assert row.last_shown is not None

    with pytest.raises(NotFound):
        db.update_sentence_audio_path(999, "/c.mp3")


def test_unreadable_sentence_parts():
    row = db.Sentence(id=1, sentence="x", translation="y", sentence_parts="{not json")
    assert db.get_sentence_parts(row) is None
    assert db.get_sentence_parts(db.Sentence(sentence="x", translation="y")) is None


def test_deleting_word_cascades_to_links_and_jobs():
    from llm_vocab_study import jobs

    word_id = db.add_word("hablar", "spanish", "to speak")
    db.insert_sentence(word_id, "Hablar es fácil.", "Speaking is easy.")
    jobs.enqueue(word_id, "spanish")

    session = get_session()
    session.query(Word).filter(Word.id == word_id).delete()
    session.commit()
    assert session.query(db.SentenceWord).count() == 0
    assert session.query(db.GenerationJob).count() == 0
    assert session.query(db.Sentence).count() == 0
    session.close()


def test_study_stats():
    studied = db.add_word("uno", "spanish", "one")
    db.add_word("dos", "spanish", "two")
    ignored = db.add_word("tres", "spanish", "three")
    db.mark_word_ignored(ignored)
    session = get_session()
    session.query(Word).filter(Word.id == studied).update({Word.strength: 40})
    session.commit()
    session.close()
    db.update_last_studied(studied)

    stats = db.get_study_stats("spanish")
    assert stats["total_words"] == 2
    assert stats["words_studied"] == 1
    assert stats["average_strength"] == pytest.approx(40.0)
    assert stats["last_study_date"] is not None
