"""
Purge publications that expired more than N days ago, together with their files.

Usage:
  python scripts/cleanup_expired_publications.py [--days 30] [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.campus.config import load_config
from app.campus.models import Publication
from app.campus.modules.publications.service import CLEANUP_DEFAULT_DAYS, cleanup_expired_publications
from app.campus.storage import storage_from_config
from scripts._db_utils import script_session

logger = logging.getLogger("cleanup_expired_publications")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--days", type=int, default=CLEANUP_DEFAULT_DAYS, help="Days after expiry before purging.")
    parser.add_argument("--dry-run", action="store_true", help="Only count matching publications.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config()
    db_url = (os.environ.get("DATABASE_URL") or config["DATABASE_URL"]).strip()

    with script_session(db_url) as s:
        if args.dry_run:
            cutoff = date.today() - timedelta(days=args.days)
            n = (
                s.query(Publication)
                .filter(Publication.expires_at.is_not(None), Publication.expires_at < cutoff)
                .count()
            )
            logger.info("Dry run: %s publication(s) expired before %s", n, cutoff.isoformat())
            return 0
        n = cleanup_expired_publications(s, storage_from_config(config), days=args.days)

    print(f"Removed {n} expired publication(s).", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
