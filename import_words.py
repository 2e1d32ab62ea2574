#!/usr/bin/env python3
"""Import words from a CSV (columns: word, translation[, topic]) and queue sentence generation.

Usage: python import_words.py path.csv [--language L] [--max N] [--sentences N] [--no-queue]
"""
import sys, os, argparse, csv
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from llm_vocab_study import db, jobs

def main() -> None:
    parser = argparse.ArgumentParser(description="Import a word list CSV")
    parser.add_argument("csv")
    parser.add_argument("--language", default=None, help="Defaults to the current language")
    parser.add_argument("--max", type=int, default=10000, help="Max rows to import")
    parser.add_argument("--sentences", type=int, default=jobs.DEFAULT_SENTENCE_COUNT)
    parser.add_argument("--no-queue", action="store_true", help="Add the words without queueing generation")
    args = parser.parse_args()

    if not os.path.exists(args.csv):
        print(f"❌ CSV not found: {args.csv}"); sys.exit(1)

    db.init_db()
    language = db.resolve_language(args.language)
    imported = skipped = 0
    with open(args.csv, "r", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for i, row in enumerate(reader):
            if i >= args.max:
                break
            text = (row.get("word") or "").strip()
            if not text:
                continue
            word_id = db.add_word(text, language, (row.get("translation") or "").strip())
            if word_id is None:
                skipped += 1
                continue
            if not args.no_queue:
                jobs.enqueue(word_id, language, topic=row.get("topic") or None,
                             desired_sentence_count=args.sentences)
            imported += 1

    print(f"✅ Imported {imported} words into {language} ({skipped} already present)")
    summary = jobs.queue_summary(language)
    print(f"   Queue: {summary.queued} queued, {summary.processing} processing, {summary.failed} failed")

if __name__ == "__main__":
    main()
