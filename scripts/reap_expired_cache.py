"""Periodic maintenance for the semantic cache and knowledge store.

Usage:
    python scripts/reap_expired_cache.py
    python scripts/reap_expired_cache.py --retention-user USER_ID --days 90

Deletes expired semantic_cache rows for every user. With --retention-user,
also sweeps that user's conversation fragments older than --days.
Intended for cron; exits non-zero on failure.
"""

import argparse
import logging
import sys

from app.core.config import get_settings
from app.core.logging import get_logger, log_with_context
from app.core.semantic_cache import SemanticCache
from app.db.knowledge import delete_fragments_older_than
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--retention-user", action="append", default=[], help="User id to sweep (repeatable)")
    parser.add_argument("--days", type=int, default=None, help="Retention window in days")
    args = parser.parse_args(argv)

    supabase = get_supabase()
    days = args.days or get_settings().KNOWLEDGE_RETENTION_DAYS

    try:
        reaped = SemanticCache(supabase).cleanup_expired()
        print(f"Reaped {reaped} expired cache rows")

        swept_total = 0
        for user_id in args.retention_user:
            swept = delete_fragments_older_than(supabase, user_id, days)
            swept_total += swept
            print(f"Swept {swept} conversation fragments older than {days} days for {user_id}")
    except Exception as e:
        logger.error(f"Maintenance run failed: {e}")
        return 1

    log_with_context(
        logger,
        logging.INFO,
        "Maintenance run complete",
        cache_rows_reaped=reaped,
        fragments_swept=swept_total,
        users_swept=len(args.retention_user),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
