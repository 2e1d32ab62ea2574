#!/usr/bin/env python3
"""Put generation jobs left in 'processing' by a crashed worker back in the queue.

Usage: python requeue_stuck_jobs.py [--minutes N] [--dry-run]
"""
import sys, os, argparse, datetime
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from llm_vocab_study import jobs

def main() -> None:
    parser = argparse.ArgumentParser(description="Requeue stuck generation jobs")
    parser.add_argument("--minutes", type=int, default=30, help="Minimum time a job has been processing")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    stuck = jobs.stuck_jobs(datetime.timedelta(minutes=args.minutes))
    if not stuck:
        print("✅ No stuck jobs"); return

    for job in stuck:
        print(f"  - job {job.id} (word {job.word_id}) processing since {job.started_at}, attempts {job.attempts}")
        if not args.dry_run:
            jobs.reschedule(job.id, 0, last_error="Requeued after worker stopped responding")
    print(f"{'Would requeue' if args.dry_run else 'Requeued'} {len(stuck)} job(s)")

if __name__ == "__main__":
    main()
