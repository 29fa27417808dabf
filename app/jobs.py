"""
Scheduler entry points.

    python -m app.jobs sweep                # expire stale sessions (run daily)
    python -m app.jobs recompute-counters   # reset program roll-up counters
    python -m app.jobs repair-ancestry      # fix observation site/program copies

Each job runs as a system operation: no principal, so no history rows.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.db.session import SessionLocal
from app.services.maintenance import recompute_program_counters, repair_observation_ancestry
from app.services.sessions import sweep_expired_sessions
from app.settings import get_settings

logger = logging.getLogger(__name__)


def run_sweep(db: Session) -> dict[str, int]:
    return sweep_expired_sessions(db)


def run_recompute_counters(db: Session) -> dict[str, int]:
    with unit_of_work(db, None):
        return {"programs_changed": recompute_program_counters(db)}


def run_repair_ancestry(db: Session) -> dict[str, int]:
    with unit_of_work(db, None):
        return {"observations_repaired": repair_observation_ancestry(db)}


JOBS: dict[str, Callable[[Session], dict[str, int]]] = {
    "sweep": run_sweep,
    "recompute-counters": run_recompute_counters,
    "repair-ancestry": run_repair_ancestry,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m app.jobs", description="Run a fieldtrack maintenance job.")
    parser.add_argument("job", choices=sorted(JOBS))
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    logger.info("Job starting job=%s", args.job)
    with SessionLocal() as db:
        try:
            result = JOBS[args.job](db)
        except Exception:
            logger.exception("Job failed job=%s", args.job)
            return 1

    logger.info("Job finished job=%s result=%s", args.job, result)
    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
