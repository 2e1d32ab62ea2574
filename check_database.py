#!/usr/bin/env python3
"""
Script to examine the contents of the vocabulary database:
words, sentences and the sentence generation queue.
"""

import sys
import os

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from llm_vocab_study import db, jobs


def check_database_contents() -> None:
    """Print a summary of what is stored for every language."""
    print("🔍 Examining Vocabulary Database Contents")
    print("=" * 60)

    session = db.get_session()

    try:
        languages = db.get_available_languages()
        print(f"\n🌍 LANGUAGES: {', '.join(languages) or 'none'} (current: {db.get_current_language()})")

        for language in languages:
            words: list[db.Word] = (
                session.query(db.Word).filter(db.Word.language == language).order_by(db.Word.id.asc()).all()
            )
            known = sum(1 for w in words if w.known)
            ignored = sum(1 for w in words if w.ignored)
            print(f"\n📚 {language.upper()} ({len(words)} words, {known} known, {ignored} ignored):")
            for i, word in enumerate(words[-10:], 1):  # Show last 10
                print(f"  {i:2d}. {word.word} | {word.translation or 'N/A'} | "
                      f"strength {word.strength} | sentences {word.sentence_count} | {word.processing_status}")
            if len(words) > 10:
                print(f"     ... and {len(words) - 10} more words")

        sentence_total = session.query(db.Sentence).count()
        link_total = session.query(db.SentenceWord).count()
        unlinked = (
            session.query(db.Sentence)
            .filter(~db.Sentence.id.in_(session.query(db.SentenceWord.sentence_id)))
            .count()
        )
        print(f"\n💬 SENTENCES: {sentence_total} stored, {link_total} word links, {unlinked} without links")

        # Words whose counter disagrees with their links
        mismatched = []
        for word in session.query(db.Word).all():
            linked = session.query(db.SentenceWord).filter(db.SentenceWord.word_id == word.id).count()
            if linked and linked != word.sentence_count:
                mismatched.append((word, linked))
        if mismatched:
            print(f"\n⚠️  {len(mismatched)} words with a sentence_count that does not match their links:")
            for word, linked in mismatched[:10]:
                print(f"     - [{word.id}] {word.word}: count {word.sentence_count}, links {linked}")

        summary = jobs.queue_summary()
        print(f"\n⚙️  QUEUE: {summary.queued} queued, {summary.processing} processing, {summary.failed} failed")
        for item in summary.active_words[:10]:
            print(f"     - [{item.word_id}] {item.word} ({item.status}, attempts {item.attempts})")

        failed_jobs = (
            session.query(db.GenerationJob)
            .filter(db.GenerationJob.status == "failed")
            .order_by(db.GenerationJob.updated_at.desc())
            .limit(5)
            .all()
        )
        if failed_jobs:
            print("   Recent failures:")
            for job in failed_jobs:
                print(f"     - word {job.word_id}: {job.last_error or 'no error recorded'}")

    except Exception as e:
        print(f"❌ Error examining database: {e}")
    finally:
        session.close()


if __name__ == "__main__":
    # Check if database exists
    if not os.path.exists(db.DB_PATH):
        print(f"❌ Database file '{db.DB_PATH}' not found!")
        print("   Make sure you're running this from the correct directory or set LLM_VOCAB_DB.")
        sys.exit(1)

    check_database_contents()
