"""
Background worker that drains the generation queue.

For each claimed job it tops the word up to its desired number of sentences,
synthesises audio for them and reports the outcome back to the queue. Retry
policy lives here, not in the queue: permanent failures fail the job at once,
anything else is rescheduled with exponential backoff until ``max_attempts``.
"""
import datetime
import os
import threading
from typing import Any, Callable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from . import db, jobs
from .db import GenerationJob, Word
from .errors import InvalidTransition, PermanentGenerationFailure, TransientGenerationFailure, VocabError
from .generation import AudioGenerator, ContentGenerator
from .logging import logger

POLL_INTERVAL_MS = int(os.getenv("LLM_VOCAB_POLL_INTERVAL_MS", "3000"))
MAX_ATTEMPTS = int(os.getenv("LLM_VOCAB_MAX_ATTEMPTS", "3"))
KNOWN_WORDS_HINT_SIZE = 50

WordUpdateCallback = Callable[[int, str, int], None]


def normalize_sentence(sentence: str) -> str:
    return " ".join(sentence.split()).lower()


class WordGenerationRunner:
    def __init__(self, content_generator: ContentGenerator,
                 audio_generator: Optional[AudioGenerator] = None,
                 poll_interval_ms: int = POLL_INTERVAL_MS,
                 max_attempts: int = MAX_ATTEMPTS,
                 retry_backoff_ms: int = jobs.RETRY_BACKOFF_MS,
                 on_word_updated: Optional[WordUpdateCallback] = None):
        self.content_generator = content_generator
        self.audio_generator = audio_generator
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.on_word_updated = on_word_updated
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- lifecycle ---
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="word-generation-runner", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                handled = self.run_once()
            except (SQLAlchemyError, VocabError):
                logger.exception("runner_loop_error")
                handled = False
            if not handled:
                self._stop_event.wait(self.poll_interval_ms / 1000)

    def drain(self) -> int:
        """Process jobs until none is visible. Returns how many were handled."""
        handled = 0
        while self.run_once():
            handled += 1
        return handled

    # --- one job ---
    def run_once(self, now: Optional[datetime.datetime] = None) -> bool:
        """Claim and process the next visible job. Returns False when the queue is idle."""
        job = jobs.claim_next_job(now)
        if job is None:
            return False

        logger.info("job_claimed", job_id=job.id, word_id=job.word_id, attempts=job.attempts,
                    desired_sentence_count=job.desired_sentence_count)
        self._emit(job.word_id)
        try:
            self._process(job)
        except PermanentGenerationFailure as e:
            logger.warning("job_failed_permanently", job_id=job.id, word_id=job.word_id, error=str(e))
            self._settle(job, jobs.fail, str(e))
            self._emit(job.word_id)
        except Exception as e:
            # Generators are external code; whatever they raise counts as retryable
            self._retry_or_fail(job, e)
        return True

    def _process(self, job: GenerationJob) -> None:
        word = db.get_word(job.word_id)
        if word is None:
            # No update is emitted: there is no word row left to report a status for
            logger.warning("job_word_missing", job_id=job.id, word_id=job.word_id)
            self._settle(job, jobs.complete)
            return

        language = job.language or word.language
        self._backfill_audio(word, language)

        desired = job.desired_sentence_count
        existing = db.get_sentences_for_word(word.id)
        seen: Set[str] = {normalize_sentence(s.sentence) for s in existing}
        total = len(existing)

        if total < desired:
            generated = self.content_generator.generate_sentences(
                word.word, language, desired - total,
                known_words_hint=self._known_words_hint(language),
                topic=job.topic,
            )
            for item in generated:
                normalized = normalize_sentence(item.text)
                if not normalized or normalized in seen:
                    continue
                audio_path = ""
                if self.audio_generator is not None:
                    audio_path = self.audio_generator.synthesize(item.text, language, word=word.word)
                db.insert_sentence(
                    word.id, item.text, item.translation, audio_path,
                    context_before=item.context_before,
                    context_after=item.context_after,
                    context_before_translation=item.context_before_translation,
                    context_after_translation=item.context_after_translation,
                    sentence_generation_model=item.model,
                )
                seen.add(normalized)
                total += 1
                if total >= desired:
                    break

        info = db.get_word_processing_info(word.id)
        sentence_count = info[1] if info else 0
        if sentence_count < desired:
            raise TransientGenerationFailure(
                f"Sentence generation incomplete. Have {sentence_count}, wanted {desired}.",
                word=word.word,
            )

        if not self._settle(job, jobs.complete):
            self._emit(word.id)
            return
        status = jobs.sync_word_status(word.id)
        logger.info("job_completed", job_id=job.id, word_id=word.id,
                    sentence_count=sentence_count, processing_status=status)
        self._emit(word.id)

    def _retry_or_fail(self, job: GenerationJob, error: Exception) -> None:
        message = str(error) or type(error).__name__
        if job.attempts < self.max_attempts:
            delay_ms = jobs.backoff_delay_ms(job.attempts, self.retry_backoff_ms)
            logger.warning("job_rescheduled", job_id=job.id, word_id=job.word_id,
                           attempt=job.attempts, delay_ms=delay_ms, error=message)
            self._settle(job, jobs.reschedule, delay_ms, message)
        else:
            logger.error("job_failed", job_id=job.id, word_id=job.word_id,
                         attempt=job.attempts, error=message)
            self._settle(job, jobs.fail, message)
        self._emit(job.word_id)

    def _settle(self, job: GenerationJob, transition: Callable[..., GenerationJob], *args: Any) -> bool:
        """Record a job outcome. Returns False if the job was re-enqueued while it was being processed."""
        try:
            transition(job.id, *args)
        except InvalidTransition as e:
            logger.warning("job_superseded", job_id=job.id, word_id=job.word_id,
                           current=e.current, attempted=e.attempted)
            return False
        return True

    def _backfill_audio(self, word: Word, language: str) -> None:
        """Give existing sentences without audio a recording; failures are left for the next run."""
        if self.audio_generator is None:
            return
        for sentence in db.get_sentences_for_word(word.id):
            if sentence.audio_path:
                continue
            try:
                audio_path = self.audio_generator.synthesize(sentence.sentence, language, word=word.word)
            except Exception as e:
                logger.warning("audio_backfill_failed", sentence_id=sentence.id, error=str(e))
                continue
            db.update_sentence_audio_path(sentence.id, audio_path)

    def _known_words_hint(self, language: str) -> List[str]:
        words = db.get_all_words(include_known=True, include_ignored=False, language=language)
        return [w.word for w in words if w.known][:KNOWN_WORDS_HINT_SIZE]

    def _emit(self, word_id: int) -> None:
        if self.on_word_updated is None:
            return
        info = db.get_word_processing_info(word_id)
        if info is None:
            return
        try:
            self.on_word_updated(word_id, info[0], info[1])
        except Exception as e:
            logger.warning("word_update_callback_failed", word_id=word_id, error=str(e))
