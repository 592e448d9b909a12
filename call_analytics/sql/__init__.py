"""
SQL Query Module for the call analytics backend.

Provides the schema DDL and parameterized statements of the aggregate store:
- Delta application (build_delta_update_query) against whitelisted columns
- Aggregate read-back for alerts and the dashboard
- Idempotency ledger claims and purges
- Concurrent-call markers
- Assistant directory lookup

Example usage:
    from call_analytics.sql import TEMPLATE_AGGREGATE_TABLE, build_delta_update_query

    query, params = build_delta_update_query(
        TEMPLATE_AGGREGATE_TABLE, analytics_id, deltas, now
    )
    await conn.execute(query, *params)
"""

from call_analytics.sql.aggregate_queries import (
    CREATE_SCHEMA_QUERY,
    TableSpec,
    TEMPLATE_AGGREGATE_TABLE,
    ASSISTANT_AGGREGATE_TABLE,
    build_delta_update_query,
)

__all__ = [
    'CREATE_SCHEMA_QUERY',
    'TableSpec',
    'TEMPLATE_AGGREGATE_TABLE',
    'ASSISTANT_AGGREGATE_TABLE',
    'build_delta_update_query',
]
