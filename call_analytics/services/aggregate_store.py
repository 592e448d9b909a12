"""
Aggregate Store - atomic accumulation of analytics counters.

This module defines the storage interface used by the aggregation updater and
the alert evaluator, and its PostgreSQL implementation on the shared asyncpg
pool.

Guarantees of the PostgreSQL implementation:
- Every delta is applied relative to the current column value in a single
  UPDATE statement, so concurrent writers to the same row always sum.
- Rows are created on first write (INSERT ... ON CONFLICT DO NOTHING).
- `claim_event()` is a conditional insert into the idempotency ledger; it
  returns False for a fact that has already been processed.
- `transaction()` yields a store bound to one connection inside a database
  transaction, so the ledger claim and the primary writes commit together.

Usage:
    store = PostgresAggregateStore(await get_db_pool())

    async with store.transaction() as tx:
        if await tx.claim_event(key, 'call_ended', call_id):
            await tx.apply_template_deltas(monthly_key, deltas)
"""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from asyncpg import Connection, Pool

from call_analytics.models.deltas import DeltaOp, TemplateAggregateKey
from call_analytics.models.enums import PeriodType
from call_analytics.models.schemas import AssistantAggregate, TemplateAggregate
from call_analytics.sql.aggregate_queries import (
    ASSISTANT_AGGREGATE_TABLE,
    CLAIM_EVENT_QUERY,
    CLOSE_CALL_MARKER_QUERY,
    COUNT_ACTIVE_CALLS_QUERY,
    ENSURE_ASSISTANT_ROW_QUERY,
    ENSURE_TEMPLATE_ROW_QUERY,
    OPEN_CALL_MARKER_QUERY,
    SELECT_ASSISTANT_AGGREGATE_QUERY,
    SELECT_HOURLY_TEMPLATE_AGGREGATES_QUERY,
    SELECT_TEMPLATE_AGGREGATE_QUERY,
    TEMPLATE_AGGREGATE_TABLE,
    build_delta_update_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Interface
# =============================================================================


class AggregateStore(ABC):
    """Storage operations needed by the analytics pipeline."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager["AggregateStore"]:
        """Async context manager yielding a store whose writes commit together."""

    @abstractmethod
    async def claim_event(self, event_key: str, event_type: str, call_id: Optional[str]) -> bool:
        """Record a fact in the idempotency ledger; False if already recorded."""

    @abstractmethod
    async def apply_template_deltas(self, key: TemplateAggregateKey, deltas: Sequence[DeltaOp]) -> bool:
        """Apply deltas to a template row; False when the deltas touch nothing."""

    @abstractmethod
    async def apply_assistant_deltas(self, assistant_id: str, deltas: Sequence[DeltaOp]) -> bool:
        """Apply deltas to an assistant row; False when the deltas touch nothing."""

    @abstractmethod
    async def get_template_aggregate(self, analytics_id: str) -> Optional[TemplateAggregate]:
        ...

    @abstractmethod
    async def list_hourly_aggregates(self, template_id: str, day: date) -> List[TemplateAggregate]:
        ...

    @abstractmethod
    async def get_assistant_aggregate(self, assistant_id: str) -> Optional[AssistantAggregate]:
        ...

    @abstractmethod
    async def open_call_marker(
        self,
        call_id: str,
        template_id: str,
        assistant_id: Optional[str],
        started_at: datetime,
        ttl: timedelta,
    ) -> None:
        ...

    @abstractmethod
    async def close_call_marker(self, call_id: str) -> bool:
        ...

    @abstractmethod
    async def count_active_calls(self, template_id: str, now: Optional[datetime] = None) -> int:
        ...


# =============================================================================
# Record Conversion
# =============================================================================


def _json_map(value: Any) -> Dict[str, float]:
    # asyncpg returns jsonb as text unless a type codec is registered
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    return {str(k): float(v) for k, v in value.items()}


def record_to_template_aggregate(row: Mapping[str, Any]) -> TemplateAggregate:
    """Convert a template_aggregate row to its API model."""
    return TemplateAggregate(
        analyticsId=row['analytics_id'],
        templateId=row['template_id'],
        period=row['period'],
        periodType=PeriodType(row['period_type']),
        hourOfDay=row['hour_of_day'],
        totalCalls=row['total_calls'],
        successfulCalls=row['successful_calls'],
        failedCalls=row['failed_calls'],
        escalationsTriggered=row['escalations_triggered'],
        totalDuration=row['total_duration'],
        qualityScoreSum=row['quality_score_sum'],
        qualityScoreCount=row['quality_score_count'],
        totalUsages=row['total_usages'],
        templateViews=row['template_views'],
        totalRatings=row['total_ratings'],
        ratingSum=row['rating_sum'],
        ratingDistribution=list(row['rating_distribution'] or [0, 0, 0, 0, 0]),
        activeAssistants=row['active_assistants'],
        deployedAssistants=row['deployed_assistants'],
        hourlyUsage=row['hourly_usage'],
        objectivesAchieved=_json_map(row['objectives_achieved']),
        uniqueUsers=list(row['unique_users'] or []),
        viewingUsers=list(row['viewing_users'] or []),
        failureReasons=list(row['failure_reasons'] or []),
        escalationReasons=list(row['escalation_reasons'] or []),
        computedAt=row['computed_at'],
    )


def record_to_assistant_aggregate(row: Mapping[str, Any]) -> AssistantAggregate:
    """Convert an assistant_aggregate row to its API model."""
    return AssistantAggregate(
        assistantId=row['assistant_id'],
        totalCalls=row['total_calls'],
        successfulCalls=row['successful_calls'],
        totalDuration=row['total_duration'],
        performanceMetrics=_json_map(row['performance_metrics']),
        lastCallAt=row['last_call_at'],
        updatedAt=row['updated_at'],
    )


# =============================================================================
# PostgreSQL Implementation
# =============================================================================


class PostgresAggregateStore(AggregateStore):
    """
    Aggregate store backed by PostgreSQL through an asyncpg pool.

    Args:
        pool: Shared asyncpg pool (see core.database.get_db_pool).
        conn: Connection to use for every statement; set by transaction().
    """

    def __init__(self, pool: Pool, conn: Optional[Connection] = None):
        self._pool = pool
        self._conn = conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Connection]:
        if self._conn is not None:
            yield self._conn
        else:
            async with self._pool.acquire() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgresAggregateStore"]:
        if self._conn is not None:
            # Nested use joins the outer transaction
            yield self
            return
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresAggregateStore(self._pool, conn)

    async def claim_event(self, event_key: str, event_type: str, call_id: Optional[str]) -> bool:
        async with self._connection() as conn:
            claimed = await conn.fetchval(
                CLAIM_EVENT_QUERY,
                event_key,
                event_type,
                call_id,
                datetime.now(timezone.utc),
            )
        return claimed is not None

    async def apply_template_deltas(self, key: TemplateAggregateKey, deltas: Sequence[DeltaOp]) -> bool:
        now = datetime.now(timezone.utc)
        statement = build_delta_update_query(TEMPLATE_AGGREGATE_TABLE, key.analytics_id, deltas, now)
        if statement is None:
            return False

        query, params = statement
        async with self._connection() as conn:
            await conn.execute(
                ENSURE_TEMPLATE_ROW_QUERY,
                key.analytics_id,
                key.template_id,
                key.period,
                key.period_type.value,
                key.hour_of_day,
                now,
            )
            await conn.execute(query, *params)

        logger.debug(f"Applied {len(deltas)} deltas to template aggregate {key.analytics_id}")
        return True

    async def apply_assistant_deltas(self, assistant_id: str, deltas: Sequence[DeltaOp]) -> bool:
        now = datetime.now(timezone.utc)
        statement = build_delta_update_query(ASSISTANT_AGGREGATE_TABLE, assistant_id, deltas, now)
        if statement is None:
            return False

        query, params = statement
        async with self._connection() as conn:
            await conn.execute(ENSURE_ASSISTANT_ROW_QUERY, assistant_id, now)
            await conn.execute(query, *params)

        logger.debug(f"Applied {len(deltas)} deltas to assistant aggregate {assistant_id}")
        return True

    async def get_template_aggregate(self, analytics_id: str) -> Optional[TemplateAggregate]:
        async with self._connection() as conn:
            row = await conn.fetchrow(SELECT_TEMPLATE_AGGREGATE_QUERY, analytics_id)
        return record_to_template_aggregate(row) if row else None

    async def list_hourly_aggregates(self, template_id: str, day: date) -> List[TemplateAggregate]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                SELECT_HOURLY_TEMPLATE_AGGREGATES_QUERY,
                template_id,
                day.strftime('%Y-%m-%d'),
            )
        return [record_to_template_aggregate(row) for row in rows]

    async def get_assistant_aggregate(self, assistant_id: str) -> Optional[AssistantAggregate]:
        async with self._connection() as conn:
            row = await conn.fetchrow(SELECT_ASSISTANT_AGGREGATE_QUERY, assistant_id)
        return record_to_assistant_aggregate(row) if row else None

    async def open_call_marker(
        self,
        call_id: str,
        template_id: str,
        assistant_id: Optional[str],
        started_at: datetime,
        ttl: timedelta,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                OPEN_CALL_MARKER_QUERY,
                call_id,
                template_id,
                assistant_id,
                started_at,
                started_at + ttl,
            )

    async def close_call_marker(self, call_id: str) -> bool:
        async with self._connection() as conn:
            closed = await conn.fetchval(CLOSE_CALL_MARKER_QUERY, call_id)
        return closed is not None

    async def count_active_calls(self, template_id: str, now: Optional[datetime] = None) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                COUNT_ACTIVE_CALLS_QUERY,
                template_id,
                now or datetime.now(timezone.utc),
            )
        return int(count or 0)
