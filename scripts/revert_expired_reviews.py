"""
Daily job: approved documents whose next review date has passed go back to draft,
and their owners are notified.

Schedule with cron (or the platform's job runner), e.g.:
  0 0 * * *  python scripts/revert_expired_reviews.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

logger = logging.getLogger("ims.jobs.review_dates")


def run() -> list[int]:
    from app.ims import create_app
    from app.ims.db import session_scope
    from app.ims.modules.documents.service import revert_expired_reviews

    app = create_app()
    with session_scope(app) as s:
        reverted = revert_expired_reviews(s)
    logger.info("Reverted %d document(s) with passed review dates: %s", len(reverted), reverted)
    return reverted


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run()


if __name__ == "__main__":
    main()
