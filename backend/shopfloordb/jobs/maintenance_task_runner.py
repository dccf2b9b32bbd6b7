"""Maintenance task generation runner.

Safe to run from cron: a plan that already has an open task is skipped, so
overlapping or repeated runs never duplicate work.
"""

from __future__ import annotations

import logging
import os

from shopfloordb.database import WriteSessionLocal
from shopfloordb.apps.maintenance import generator


def run() -> dict:
    db = WriteSessionLocal()
    try:
        summary = generator.generate_tasks(db, lookahead=generator.configured_lookahead())
        db.commit()
        return summary.as_dict()
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    result = run()
    print("Maintenance task runner completed:", result)


if __name__ == "__main__":
    main()
