"""
Housekeeping job for the aggregate store.

Removes rows that only exist to support pipeline correctness and would
otherwise grow without bound:

- Expired concurrent-call markers: calls whose call_ended never arrived.
  Expired markers are already excluded from the gauge; deleting them only
  reclaims space.
- Idempotency-ledger rows older than the retention window. The window must
  exceed the longest redelivery delay of the event producers, or a late
  redelivery would be counted twice.

Aggregate rows are never deleted here; their retention is managed outside
this service.

Usage:
    # From a scheduler (cron, Cloud Scheduler, ...)
    python -m call_analytics.jobs.housekeeping

    # Programmatically
    result = await run_housekeeping()
    if result['success']:
        print(result['expired_markers'], result['ledger_rows'])
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from call_analytics.core.config import get_settings
from call_analytics.core.database import close_db, execute_command
from call_analytics.sql.aggregate_queries import (
    PURGE_EXPIRED_CALL_MARKERS_QUERY,
    PURGE_PROCESSED_EVENTS_QUERY,
)


logger = logging.getLogger(__name__)


def _rows_affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. 'DELETE 3'
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


async def purge_expired_call_markers(now: Optional[datetime] = None) -> int:
    """Delete call markers past their expiry; returns the number removed."""
    now = now or datetime.now(timezone.utc)
    status = await execute_command(PURGE_EXPIRED_CALL_MARKERS_QUERY, now)
    removed = _rows_affected(status)
    logger.info(f"Removed {removed} expired call markers")
    return removed


async def purge_processed_events(
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    """Delete ledger rows older than `retention_days`; returns the number removed."""
    if retention_days < 1:
        raise ValueError(f"retention_days must be at least 1, got {retention_days}")

    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
    status = await execute_command(PURGE_PROCESSED_EVENTS_QUERY, cutoff)
    removed = _rows_affected(status)
    logger.info(f"Removed {removed} idempotency ledger rows older than {cutoff.isoformat()}")
    return removed


async def run_housekeeping(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run every housekeeping task.

    Returns:
        Dict with:
        - success: True if every task completed
        - expired_markers: Number of call markers removed
        - ledger_rows: Number of ledger rows removed
        - error: Error message (if failed)

    Raises:
        No exceptions are raised - all errors are captured in the return dict.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    try:
        expired_markers = await purge_expired_call_markers(now)
        ledger_rows = await purge_processed_events(settings.processed_event_retention_days, now)
    except Exception as e:
        logger.error(f"Housekeeping failed: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Housekeeping failed: {str(e)}',
        }

    return {
        'success': True,
        'expired_markers': expired_markers,
        'ledger_rows': ledger_rows,
    }


async def _main() -> Dict[str, Any]:
    try:
        return await run_housekeeping()
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = asyncio.run(_main())
    raise SystemExit(0 if result['success'] else 1)
