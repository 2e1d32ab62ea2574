import datetime
import pytest
from sqlalchemy import create_engine

from llm_vocab_study import db, jobs
from llm_vocab_study.db import get_session, GenerationJob, Word
from llm_vocab_study.errors import InvalidTransition, NotFound


@pytest.fixture(autouse=True)
def setup_db(tmp_path, monkeypatch):
    # Use a temporary SQLite DB, and rebind engine/session to it
    test_db = str(tmp_path / "test.db")
    monkeypatch.setenv("LLM_VOCAB_DB", test_db)
    db.engine = create_engine(f"sqlite:///{test_db}")
    db.SessionLocal = db.sessionmaker(bind=db.engine, expire_on_commit=False)
    db.init_db()
    yield


def make_words(*texts, language="spanish"):
    return [db.add_word(text, language, f"{text} (en)") for text in texts]


def job_rows(word_id):
    session = get_session()
    count = session.query(GenerationJob).filter(GenerationJob.word_id == word_id).count()
    session.close()
    return count


def word_status(word_id):
    return db.get_word_processing_info(word_id)[0]


def test_enqueue_creates_queued_job():
    ids = make_words("uno", "dos", "tres", "cuatro", "cinco")
    assert ids[-1] == 5

    job = jobs.enqueue(5, "spanish", topic="food", desired_sentence_count=3)

    assert job_rows(5) == 1
    assert job.word_id == 5
    assert job.status == "queued"
    assert job.attempts == 0
    assert job.topic == "food"
    assert job.desired_sentence_count == 3
    assert word_status(5) == "queued"


def test_reenqueue_resets_existing_row():
    (word_id,) = make_words("casa")
    now = db.utcnow()
    first = jobs.enqueue(word_id, "spanish", topic="home", now=now)
    jobs.mark_processing(first.id, now=now)
    jobs.fail(first.id, "model exploded", now=now)

    again = jobs.enqueue(word_id, "spanish", topic="travel", desired_sentence_count=5)

    assert again.id == first.id
    assert job_rows(word_id) == 1
    assert again.status == "queued"
    assert again.attempts == 0
    assert again.last_error is None
    assert again.started_at is None
    assert again.topic == "travel"
    assert again.desired_sentence_count == 5
    assert word_status(word_id) == "queued"


def test_enqueue_unknown_word():
    with pytest.raises(NotFound):
        jobs.enqueue(404, "spanish")


def test_enqueue_rejects_non_positive_count():
    (word_id,) = make_words("perro")
    with pytest.raises(ValueError):
        jobs.enqueue(word_id, "spanish", desired_sentence_count=0)
    assert jobs.get_job_for_word(word_id) is None


def test_next_job_is_fifo_and_read_only():
    first_word, second_word = make_words("gato", "raton")
    now = db.utcnow()
    first = jobs.enqueue(first_word, "spanish", now=now - datetime.timedelta(seconds=10))
    jobs.enqueue(second_word, "spanish", now=now - datetime.timedelta(seconds=5))

    job = jobs.next_job(now)
    assert job.id == first.id
    # Reading does not claim
    assert jobs.next_job(now).id == first.id
    assert jobs.get_job(first.id).status == "queued"


def test_next_job_empty_queue():
    assert jobs.next_job() is None
    assert jobs.claim_next_job() is None


def test_mark_processing_claims_job():
    (word_id,) = make_words("mesa")
    now = db.utcnow()
    job = jobs.enqueue(word_id, "spanish", now=now)

    claimed = jobs.mark_processing(job.id, now=now)

    assert claimed.status == "processing"
    assert claimed.attempts == 1
    assert claimed.started_at == now
    assert word_status(word_id) == "processing"
    assert jobs.next_job(now) is None


def test_second_claim_is_rejected():
    (word_id,) = make_words("silla")
    job = jobs.enqueue(word_id, "spanish")
    jobs.mark_processing(job.id)

    with pytest.raises(InvalidTransition):
        jobs.mark_processing(job.id)
    assert jobs.get_job(job.id).attempts == 1


def test_complete_and_fail_require_processing():
    (word_id,) = make_words("libro")
    job = jobs.enqueue(word_id, "spanish")

    with pytest.raises(InvalidTransition):
        jobs.complete(job.id)
    with pytest.raises(InvalidTransition):
        jobs.fail(job.id, "nope")
    with pytest.raises(InvalidTransition):
        jobs.reschedule(job.id, 1000)
    assert jobs.get_job(job.id).status == "queued"


def test_transition_on_unknown_job():
    with pytest.raises(NotFound):
        jobs.complete(12345)


def test_reschedule_defers_visibility():
    ids = make_words("uno", "dos", "tres", "cuatro", "cinco")
    now = db.utcnow()
    job = jobs.enqueue(5, "spanish", topic="food", desired_sentence_count=3, now=now)
    jobs.mark_processing(job.id, now=now)

    rescheduled = jobs.reschedule(job.id, 5000, "timeout", now=now)

    assert rescheduled.status == "queued"
    assert rescheduled.attempts == 1
    assert rescheduled.last_error == "timeout"
    assert rescheduled.started_at is None
    assert word_status(ids[-1]) == "queued"
    assert jobs.next_job(now) is None
    assert jobs.next_job(now + datetime.timedelta(milliseconds=4999)) is None
    assert jobs.next_job(now + datetime.timedelta(seconds=5)).id == job.id


def test_reschedule_keeps_error_when_none_given():
    (word_id,) = make_words("agua")
    now = db.utcnow()
    job = jobs.enqueue(word_id, "spanish", now=now)
    jobs.mark_processing(job.id, now=now)
    jobs.reschedule(job.id, 0, "first", now=now)
    jobs.mark_processing(job.id, now=now)

    rescheduled = jobs.reschedule(job.id, 0, now=now)
    assert rescheduled.last_error == "first"
    assert rescheduled.attempts == 2


def test_reschedule_rejects_negative_delay():
    (word_id,) = make_words("leche")
    job = jobs.enqueue(word_id, "spanish")
    jobs.mark_processing(job.id)
    with pytest.raises(ValueError):
        jobs.reschedule(job.id, -1)


def test_fail_is_terminal_and_marks_word():
    (word_id,) = make_words("pan")
    job = jobs.enqueue(word_id, "spanish")
    jobs.mark_processing(job.id)

    failed = jobs.fail(job.id, "content filter")

    assert failed.status == "failed"
    assert failed.last_error == "content filter"
    assert failed.started_at is None
    assert word_status(word_id) == "failed"
    with pytest.raises(InvalidTransition):
        jobs.reschedule(job.id, 1000)
    assert jobs.next_job() is None


def test_complete_leaves_word_status_to_sync():
    (word_id,) = make_words("queso")
    job = jobs.enqueue(word_id, "spanish")
    jobs.mark_processing(job.id)

    completed = jobs.complete(job.id)
    assert completed.status == "completed"
    assert completed.started_at is None
    assert word_status(word_id) == "processing"

    # No sentences yet: a completed job does not make the word ready
    assert jobs.sync_word_status(word_id) == "processing"

    db.insert_sentence(word_id, "Me gusta el queso.", "I like cheese.")
    assert jobs.sync_word_status(word_id) == "ready"
    assert word_status(word_id) == "ready"


def test_sync_word_status_mirrors_job():
    (word_id,) = make_words("vino")
    job = jobs.enqueue(word_id, "spanish")
    session = get_session()
    session.query(Word).filter(Word.id == word_id).update({Word.processing_status: "ready"})
    session.commit()
    session.close()

    assert jobs.sync_word_status(word_id) == "queued"
    jobs.mark_processing(job.id)
    assert jobs.sync_word_status(word_id) == "processing"


@pytest.mark.parametrize("job_status,count,expected", [
    ("queued", 0, "queued"),
    ("processing", 2, "processing"),
    ("failed", 3, "failed"),
    ("completed", 1, "ready"),
    ("completed", 0, None),
])
def test_derive_processing_status(job_status, count, expected):
    assert jobs.derive_processing_status(job_status, count) == expected


def test_backoff_doubles_per_attempt():
    assert jobs.backoff_delay_ms(1, 2000) == 2000
    assert jobs.backoff_delay_ms(2, 2000) == 4000
    assert jobs.backoff_delay_ms(3, 2000) == 8000
    assert jobs.backoff_delay_ms(0, 500) == 500


def test_stuck_jobs():
    (word_id,) = make_words("hielo")
    now = db.utcnow()
    job = jobs.enqueue(word_id, "spanish", now=now - datetime.timedelta(hours=1))
    jobs.mark_processing(job.id, now=now - datetime.timedelta(hours=1))

    assert [j.id for j in jobs.stuck_jobs(datetime.timedelta(minutes=30), now=now)] == [job.id]
    assert jobs.stuck_jobs(datetime.timedelta(minutes=90), now=now) == []


def test_queue_summary_counts_and_active_words():
    queued_id, processing_id, failed_id, done_id = make_words("sol", "luna", "mar", "cielo")
    (french_id,) = make_words("arbre", language="french")
    now = db.utcnow()

    jobs.enqueue(queued_id, "spanish", now=now)
    processing = jobs.enqueue(processing_id, "spanish", now=now)
    failed = jobs.enqueue(failed_id, "spanish", now=now)
    done = jobs.enqueue(done_id, "spanish", now=now)
    jobs.enqueue(french_id, "french", now=now)
    jobs.mark_processing(processing.id, now=now)
    jobs.mark_processing(failed.id, now=now)
    jobs.fail(failed.id, "boom", now=now)
    jobs.mark_processing(done.id, now=now)
    jobs.complete(done.id, now=now)

    summary = jobs.queue_summary("spanish")
    assert (summary.queued, summary.processing, summary.failed) == (1, 1, 1)
    assert sorted(w.word_id for w in summary.active_words) == sorted([queued_id, processing_id])

    everything = jobs.queue_summary()
    assert everything.queued == 2
    assert french_id in [w.word_id for w in everything.active_words]


def test_queue_summary_skips_words_already_failed():
    (word_id,) = make_words("nube")
    jobs.enqueue(word_id, "spanish")
    session = get_session()
    session.query(Word).filter(Word.id == word_id).update({Word.processing_status: "failed"})
    session.commit()
    session.close()

    summary = jobs.queue_summary()
    assert summary.queued == 1
    assert summary.active_words == []
