"""
Recompute readiness and load records for one athlete over a date range.

Useful after a late wearable backfill or a correction to historical
samples. Readiness and load rows are upserts, so reruns are safe. Session
adjustments are NOT evaluated here (pass --evaluate to also run the
adjustment step for the last day).

Usage (inside api container):
  python scripts/recompute_daily_scores.py 4368ec7f-c30d-45ff-a6ee-58db7716be24 --start 2024-03-01 --end 2024-03-15
  python scripts/recompute_daily_scores.py 4368ec7f-c30d-45ff-a6ee-58db7716be24 --days 28 --commit
"""

from __future__ import annotations

import os
import sys
from datetime import date, timedelta
from uuid import UUID


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument("athlete_id", type=str, help="UUID of athlete")
    parser.add_argument("--start", type=date.fromisoformat, help="first day (ISO date)")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="last day (ISO date, default today)")
    parser.add_argument("--days", type=int, default=None, help="number of days ending on --end (instead of --start)")
    parser.add_argument(
        "--evaluate",
        action="store_true",
        help="Also evaluate the next planned session for the last day.",
    )
    parser.add_argument(
        "--commit",
        action="store_true",
        help="Persist results. Default is dry-run (rolled back).",
    )
    args = parser.parse_args()

    athlete_id = UUID(args.athlete_id)
    end = args.end or date.today()
    if args.start:
        start = args.start
    elif args.days:
        start = end - timedelta(days=args.days - 1)
    else:
        start = end
    if start > end:
        print("ERROR: --start is after --end")
        return 2

    from core.database import SessionLocal
    from core.logging import setup_logging
    from services.adjustment_engine import run_athlete_pipeline

    setup_logging()

    mode = "COMMIT" if args.commit else "DRY_RUN"
    print(f"MODE={mode} athlete_id={athlete_id} start={start} end={end}")

    db = SessionLocal()
    try:
        day = start
        while day <= end:
            evaluate = args.evaluate and day == end
            result = run_athlete_pipeline(db, athlete_id, day, evaluate_session=evaluate)
            readiness = result.readiness
            load = result.load
            print(
                f"{day} readiness={readiness.score if readiness.has_data else 'no_data'}"
                f"{'/' + readiness.band.value if readiness.band else ''} "
                f"acwr={round(load.acwr, 3) if load.acwr is not None else 'n/a'} band={load.band.value}"
            )
            if evaluate:
                adjustment = result.adjustment
                print(
                    f"  session={result.session.id if result.session else None} "
                    f"adjustment={adjustment.reason + ' x' + str(adjustment.adjustment_factor) if adjustment else None}"
                )
            day += timedelta(days=1)

        if args.commit:
            db.commit()
            print("Committed.")
        else:
            db.rollback()
            print("Dry run, rolled back.")
        return 0
    except Exception as e:
        db.rollback()
        print(f"ERROR: {type(e).__name__}: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
