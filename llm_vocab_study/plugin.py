from typing import Any, Optional

import llm  # type: ignore

from . import db, jobs, scheduler
from .errors import InvalidTransition, NotFound
from .logging import configure_logging


@llm.hookimpl  # type: ignore[misc]
def register_commands(cli: Any) -> None:
    import click

    @cli.command("vocab-init-db")  # type: ignore[misc]
    def init_db() -> None:
        """Initialize the vocabulary database."""
        db.init_db()
        click.echo("Database initialized.")

    @cli.command("vocab-language")  # type: ignore[misc]
    @click.argument("language", required=False)
    def language(language: Optional[str]) -> None:
        """Show or change the language you are studying."""
        if language:
            db.set_current_language(language.strip().lower())
            click.echo(f"Current language set to '{db.get_current_language()}'.")
            return
        click.echo(f"Current language: {db.get_current_language()}")
        available = db.get_available_languages()
        if available:
            click.echo(f"Languages with words: {', '.join(available)}")

    @cli.command("vocab-add")  # type: ignore[misc]
    @click.argument("word")
    @click.argument("translation")
    @click.option("--language", default=None, help="Language of the word (defaults to the current language)")
    @click.option("--topic", default=None, help="Topic for the generated example sentences")
    @click.option("--sentences", default=jobs.DEFAULT_SENTENCE_COUNT, type=int,
                  help="How many example sentences to generate")
    def add(word: str, translation: str, language: Optional[str], topic: Optional[str], sentences: int) -> None:
        """Add a word and queue example sentence generation for it."""
        language = db.resolve_language(language)
        word_id = db.add_word(word, language, translation)
        if word_id is None:
            click.echo(f"Word '{word}' already exists in {language} (skipped).")
            return
        job = jobs.enqueue(word_id, language, topic=topic, desired_sentence_count=sentences)
        click.echo(f"Word '{word}' added (ID {word_id}); {job.desired_sentence_count} sentences queued.")

    @cli.command("vocab-due")  # type: ignore[misc]
    @click.option("--limit", default=20, type=int, help="Maximum number of words to list")
    @click.option("--language", default=None, help="Language (defaults to the current language)")
    def due(limit: int, language: Optional[str]) -> None:
        """List words due for review, most overdue first."""
        words = scheduler.due_with_priority(limit, language)
        if not words:
            click.echo("No words are due for review! All caught up!")
            return
        now = db.utcnow()
        for w in words:
            overdue = scheduler.overdue_days(w.next_due, now)
            click.echo(f"[{w.id}] {w.word} - {w.translation} (strength {w.strength}, overdue {overdue}d)")

    @cli.command("vocab-study")  # type: ignore[misc]
    @click.option("--limit", default=None, type=int, help="Session size (defaults to the recommended size)")
    @click.option("--language", default=None, help="Language (defaults to the current language)")
    def study(limit: Optional[int], language: Optional[str]) -> None:
        """Show a study session: due words first, topped up with weak words."""
        if limit is None:
            limit = scheduler.recommended_batch_size(scheduler.due_count(language)) or 10
        words = scheduler.study_batch(limit, language)
        if not words:
            click.echo("Nothing to study yet. Add words and run 'llm vocab-work' to generate sentences.")
            return
        for w in words:
            click.echo(f"\n[{w.id}] {w.word} - {w.translation}")
            for s in db.get_sentences_for_word(w.id):
                click.echo(f"  {s.sentence}")
                click.echo(f"    {s.translation}")
        click.echo("\nUse 'llm vocab-review <word_id> <quality>' to record your performance (quality: 0-5)")

    @cli.command("vocab-review")  # type: ignore[misc]
    @click.argument("word_id", type=int)
    @click.argument("quality", type=int)
    def review(word_id: int, quality: int) -> None:
        """Record a review for a word (quality: 0-5)."""
        if not 0 <= quality <= 5:
            click.echo("Quality must be between 0-5 (0=forgot, 3=remembered with effort, 5=easy)")
            return
        try:
            word = scheduler.review_word(word_id, quality)
        except NotFound as e:
            raise click.ClickException(str(e))
        if quality >= 3:
            click.echo(f"Good! '{word.word}' scheduled again in {word.interval_days} days.")
        else:
            click.echo(f"That's okay! '{word.word}' will be reviewed again tomorrow.")

    @cli.command("vocab-known")  # type: ignore[misc]
    @click.argument("word_id", type=int)
    @click.option("--undo", is_flag=True, help="Move the word back to learning")
    def known(word_id: int, undo: bool) -> None:
        """Mark a word as known so it leaves the review rotation."""
        try:
            db.mark_word_known(word_id, not undo)
            if undo:
                scheduler.reset_word_progress(word_id)
        except NotFound as e:
            raise click.ClickException(str(e))
        click.echo(f"Word {word_id} {'moved back to learning' if undo else 'marked as known'}.")

    @cli.command("vocab-ignore")  # type: ignore[misc]
    @click.argument("word_id", type=int)
    @click.option("--undo", is_flag=True, help="Stop ignoring the word")
    def ignore(word_id: int, undo: bool) -> None:
        """Hide a word from study sessions and sentence linking."""
        try:
            db.mark_word_ignored(word_id, not undo)
        except NotFound as e:
            raise click.ClickException(str(e))
        click.echo(f"Word {word_id} {'no longer ignored' if undo else 'ignored'}.")

    @cli.command("vocab-queue")  # type: ignore[misc]
    @click.option("--language", default=None, help="Only show jobs for this language")
    def queue(language: Optional[str]) -> None:
        """Show the sentence generation queue."""
        summary = jobs.queue_summary(language)
        click.echo(f"Queued: {summary.queued}  Processing: {summary.processing}  Failed: {summary.failed}")
        for item in summary.active_words:
            click.echo(f"  [{item.word_id}] {item.word} ({item.language}) {item.status}, attempts {item.attempts}")

    @cli.command("vocab-retry")  # type: ignore[misc]
    @click.argument("word_id", type=int)
    def retry(word_id: int) -> None:
        """Queue sentence generation for a word again, e.g. after it failed."""
        previous = jobs.get_job_for_word(word_id)
        try:
            word = db.get_word(word_id)
            if word is None:
                raise NotFound("Word", word_id)
            if previous is not None:
                job = jobs.enqueue(word_id, previous.language, topic=previous.topic,
                                   desired_sentence_count=previous.desired_sentence_count)
            else:
                job = jobs.enqueue(word_id, word.language)
        except NotFound as e:
            raise click.ClickException(str(e))
        click.echo(f"Word {word_id} queued again ({job.desired_sentence_count} sentences).")

    @cli.command("vocab-work")  # type: ignore[misc]
    @click.option("--model", default="gpt-4o-mini", help="LLM model name to use for sentence generation")
    @click.option("--once", is_flag=True, help="Process a single job and exit")
    def work(model: str, once: bool) -> None:
        """Generate sentences for queued words until the queue is empty."""
        from .generation import LLMContentGenerator
        from .runner import WordGenerationRunner

        configure_logging(db.DEBUG_MODE)
        try:
            llm_model = llm.get_model(model)
        except llm.UnknownModelError as e:
            raise click.ClickException(str(e))

        runner = WordGenerationRunner(LLMContentGenerator(llm_model))
        try:
            handled = (1 if runner.run_once() else 0) if once else runner.drain()
        except InvalidTransition as e:
            raise click.ClickException(str(e))
        click.echo(f"Processed {handled} job(s).")
        summary = jobs.queue_summary()
        if summary.queued:
            click.echo(f"{summary.queued} job(s) still waiting (some may be scheduled for a retry).")

    @cli.command("vocab-stats")  # type: ignore[misc]
    @click.option("--language", default=None, help="Language (defaults to the current language)")
    def stats(language: Optional[str]) -> None:
        """Show study statistics."""
        language = db.resolve_language(language)
        study = db.get_study_stats(language)
        srs = scheduler.srs_stats(language)
        click.echo(f"Statistics for {language}:")
        click.echo(f"  Total words: {study['total_words']}")
        click.echo(f"  Words studied: {study['words_studied']}")
        click.echo(f"  Average strength: {study['average_strength']:.1f}")
        click.echo(f"  Due today: {srs['due_today']} (overdue: {srs['overdue']})")
        click.echo(f"  Average interval: {srs['average_interval']:.1f} days")
        click.echo(f"  Recommended session size: {srs['recommended_study_size']}")
