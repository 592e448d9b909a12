"""
Scheduled maintenance jobs for the call analytics service.

- housekeeping: purge expired concurrent-call markers and idempotency-ledger
  rows older than PROCESSED_EVENT_RETENTION_DAYS

Jobs return result dicts ({'success': bool, ...}) instead of raising, so a
scheduler can log the outcome without special error handling.
"""

from call_analytics.jobs.housekeeping import (
    purge_expired_call_markers,
    purge_processed_events,
    run_housekeeping,
)

__all__ = [
    'purge_expired_call_markers',
    'purge_processed_events',
    'run_housekeeping',
]
