"""
Parameterized SQL for the call analytics aggregate store.

This module owns every statement the aggregate store sends to PostgreSQL:
the schema DDL, the statements that apply delta operations to aggregate rows,
the read-back queries used by the alert evaluator and the dashboard, the
idempotency ledger, and the per-call markers behind the concurrent-calls gauge.

Atomic Accumulation:
    Rows are created with INSERT ... ON CONFLICT DO NOTHING and all deltas for
    one row are then applied in a single UPDATE whose assignments are relative
    to the current column value (`total_calls = total_calls + $2`). PostgreSQL
    serializes concurrent UPDATEs of the same row, so concurrent deltas always
    sum and no update is lost.

Column names are never taken from input: every delta is checked against the
table's whitelist before a statement is built.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from call_analytics.models.deltas import (
    BucketIncrement,
    CounterDelta,
    DeltaOp,
    LastWriteWins,
    MapCounterDelta,
    SetUnion,
)


# =============================================================================
# Schema
# =============================================================================

CREATE_SCHEMA_QUERY = """
CREATE TABLE IF NOT EXISTS template_aggregate (
    analytics_id          TEXT PRIMARY KEY,
    template_id           TEXT NOT NULL,
    period                TEXT NOT NULL,
    period_type           TEXT NOT NULL DEFAULT 'monthly',
    hour_of_day           SMALLINT,
    total_calls           BIGINT NOT NULL DEFAULT 0,
    successful_calls      BIGINT NOT NULL DEFAULT 0,
    failed_calls          BIGINT NOT NULL DEFAULT 0,
    escalations_triggered BIGINT NOT NULL DEFAULT 0,
    total_duration        DOUBLE PRECISION NOT NULL DEFAULT 0,
    quality_score_sum     DOUBLE PRECISION NOT NULL DEFAULT 0,
    quality_score_count   BIGINT NOT NULL DEFAULT 0,
    total_usages          BIGINT NOT NULL DEFAULT 0,
    template_views        BIGINT NOT NULL DEFAULT 0,
    total_ratings         BIGINT NOT NULL DEFAULT 0,
    rating_sum            DOUBLE PRECISION NOT NULL DEFAULT 0,
    rating_distribution   INTEGER[] NOT NULL DEFAULT '{0,0,0,0,0}',
    active_assistants     BIGINT NOT NULL DEFAULT 0,
    deployed_assistants   BIGINT NOT NULL DEFAULT 0,
    hourly_usage          BIGINT NOT NULL DEFAULT 0,
    objectives_achieved   JSONB NOT NULL DEFAULT '{}'::jsonb,
    unique_users          TEXT[] NOT NULL DEFAULT '{}',
    viewing_users         TEXT[] NOT NULL DEFAULT '{}',
    failure_reasons       TEXT[] NOT NULL DEFAULT '{}',
    escalation_reasons    TEXT[] NOT NULL DEFAULT '{}',
    computed_at           TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS template_aggregate_template_period_idx
    ON template_aggregate (template_id, period);

CREATE TABLE IF NOT EXISTS assistant_aggregate (
    assistant_id         TEXT PRIMARY KEY,
    total_calls          BIGINT NOT NULL DEFAULT 0,
    successful_calls     BIGINT NOT NULL DEFAULT 0,
    total_duration       DOUBLE PRECISION NOT NULL DEFAULT 0,
    performance_metrics  JSONB NOT NULL DEFAULT '{}'::jsonb,
    last_call_at         TIMESTAMPTZ,
    updated_at           TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS processed_event (
    event_key     TEXT PRIMARY KEY,
    event_type    TEXT NOT NULL,
    call_id       TEXT,
    processed_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS processed_event_processed_at_idx
    ON processed_event (processed_at);

CREATE TABLE IF NOT EXISTS active_call_marker (
    call_id       TEXT PRIMARY KEY,
    template_id   TEXT NOT NULL,
    assistant_id  TEXT,
    started_at    TIMESTAMPTZ NOT NULL,
    expires_at    TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS active_call_marker_template_idx
    ON active_call_marker (template_id, expires_at);
"""


# =============================================================================
# Table Specifications (column whitelists)
# =============================================================================


@dataclass(frozen=True)
class TableSpec:
    """Columns of an aggregate table grouped by the delta kinds they accept."""
    name: str
    key_column: str
    stamp_column: str
    integer_counters: FrozenSet[str] = frozenset()
    float_counters: FrozenSet[str] = frozenset()
    sets: FrozenSet[str] = frozenset()
    maps: FrozenSet[str] = frozenset()
    buckets: Dict[str, int] = field(default_factory=dict)
    replaceable: FrozenSet[str] = frozenset()


TEMPLATE_AGGREGATE_TABLE = TableSpec(
    name='template_aggregate',
    key_column='analytics_id',
    stamp_column='computed_at',
    integer_counters=frozenset({
        'total_calls',
        'successful_calls',
        'failed_calls',
        'escalations_triggered',
        'quality_score_count',
        'total_usages',
        'template_views',
        'total_ratings',
        'active_assistants',
        'deployed_assistants',
        'hourly_usage',
    }),
    float_counters=frozenset({
        'total_duration',
        'quality_score_sum',
        'rating_sum',
    }),
    sets=frozenset({
        'unique_users',
        'viewing_users',
        'failure_reasons',
        'escalation_reasons',
    }),
    maps=frozenset({'objectives_achieved'}),
    buckets={'rating_distribution': 5},
)

ASSISTANT_AGGREGATE_TABLE = TableSpec(
    name='assistant_aggregate',
    key_column='assistant_id',
    stamp_column='updated_at',
    integer_counters=frozenset({'total_calls', 'successful_calls'}),
    float_counters=frozenset({'total_duration'}),
    maps=frozenset({'performance_metrics'}),
    replaceable=frozenset({'last_call_at'}),
)


# =============================================================================
# Row Creation (upsert-on-first-write)
# =============================================================================

ENSURE_TEMPLATE_ROW_QUERY = """
INSERT INTO template_aggregate (
    analytics_id, template_id, period, period_type, hour_of_day, computed_at
) VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (analytics_id) DO NOTHING
"""

ENSURE_ASSISTANT_ROW_QUERY = """
INSERT INTO assistant_aggregate (assistant_id, updated_at)
VALUES ($1, $2)
ON CONFLICT (assistant_id) DO NOTHING
"""


# =============================================================================
# Delta Application
# =============================================================================


@dataclass
class _MergedDeltas:
    counters: Dict[str, float] = field(default_factory=dict)
    sets: Dict[str, set] = field(default_factory=dict)
    maps: Dict[str, Dict[str, float]] = field(default_factory=dict)
    buckets: Dict[str, Dict[int, int]] = field(default_factory=dict)
    replacements: Dict[str, Any] = field(default_factory=dict)


def _merge_deltas(table: TableSpec, deltas: Sequence[DeltaOp]) -> _MergedDeltas:
    """
    Validate deltas against the table whitelist and combine them per column.

    Merging keeps one assignment per column (per bucket for arrays), which
    PostgreSQL requires, and makes the statement independent of delta order.
    """
    merged = _MergedDeltas()
    for op in deltas:
        if isinstance(op, CounterDelta):
            if op.field not in table.integer_counters and op.field not in table.float_counters:
                raise ValueError(f"'{op.field}' is not a counter of {table.name}")
            if op.field in table.integer_counters and not float(op.amount).is_integer():
                raise ValueError(f"Counter '{op.field}' requires an integral delta, got {op.amount}")
            merged.counters[op.field] = merged.counters.get(op.field, 0) + op.amount
        elif isinstance(op, SetUnion):
            if op.field not in table.sets:
                raise ValueError(f"'{op.field}' is not a set column of {table.name}")
            merged.sets.setdefault(op.field, set()).update(op.members)
        elif isinstance(op, MapCounterDelta):
            if op.field not in table.maps:
                raise ValueError(f"'{op.field}' is not a map column of {table.name}")
            column = merged.maps.setdefault(op.field, {})
            column[op.key] = column.get(op.key, 0) + op.amount
        elif isinstance(op, BucketIncrement):
            size = table.buckets.get(op.field)
            if size is None:
                raise ValueError(f"'{op.field}' is not a bucket column of {table.name}")
            if op.index >= size:
                raise ValueError(f"Bucket index {op.index} out of range for '{op.field}' (size {size})")
            column = merged.buckets.setdefault(op.field, {})
            column[op.index] = column.get(op.index, 0) + op.amount
        elif isinstance(op, LastWriteWins):
            if op.field not in table.replaceable:
                raise ValueError(f"'{op.field}' is not a replaceable column of {table.name}")
            merged.replacements[op.field] = op.value
        else:
            raise TypeError(f"Unsupported delta operation: {op!r}")
    return merged


def build_delta_update_query(
    table: TableSpec,
    key_value: str,
    deltas: Sequence[DeltaOp],
    stamp: datetime,
) -> Optional[Tuple[str, List[Any]]]:
    """
    Build the single UPDATE statement applying `deltas` to one row.

    Args:
        table: Table whitelist (TEMPLATE_AGGREGATE_TABLE or ASSISTANT_AGGREGATE_TABLE).
        key_value: Primary key of the row, bound as $1.
        deltas: Delta operations for the row.
        stamp: Value written to the table's stamp column (computed_at / updated_at).

    Returns:
        (query, params) ready for `conn.execute(query, *params)`, or None when
        the deltas touch no column (the caller treats that as a no-op).

    Raises:
        ValueError: If a delta targets a column outside the whitelist, an
            integer counter receives a fractional delta, or a bucket index is
            out of range.

    Example:
        >>> query, params = build_delta_update_query(
        ...     TEMPLATE_AGGREGATE_TABLE,
        ...     'tpl-1#2026-03',
        ...     [CounterDelta('total_calls'), CounterDelta('total_duration', 90.0)],
        ...     datetime.now(timezone.utc),
        ... )
    """
    merged = _merge_deltas(table, deltas)
    params: List[Any] = [key_value]
    assignments: List[str] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    for column in sorted(merged.counters):
        amount = merged.counters[column]
        if column in table.integer_counters:
            amount = int(amount)
        else:
            amount = float(amount)
        assignments.append(f"{column} = {column} + {bind(amount)}")

    for column in sorted(merged.sets):
        placeholder = bind(sorted(merged.sets[column]))
        assignments.append(
            f"{column} = ARRAY(SELECT DISTINCT member FROM unnest({column} || {placeholder}::text[]) "
            f"AS member ORDER BY member)"
        )

    for column in sorted(merged.maps):
        pairs = []
        for key in sorted(merged.maps[column]):
            key_placeholder = bind(key)
            amount_placeholder = bind(float(merged.maps[column][key]))
            pairs.append(
                f"{key_placeholder}::text, "
                f"COALESCE(({column} ->> {key_placeholder}::text)::double precision, 0) "
                f"+ {amount_placeholder}::double precision"
            )
        assignments.append(f"{column} = {column} || jsonb_build_object({', '.join(pairs)})")

    for column in sorted(merged.buckets):
        for index in sorted(merged.buckets[column]):
            # PostgreSQL arrays are 1-based
            position = index + 1
            assignments.append(
                f"{column}[{position}] = COALESCE({column}[{position}], 0) "
                f"+ {bind(int(merged.buckets[column][index]))}"
            )

    for column in sorted(merged.replacements):
        assignments.append(f"{column} = {bind(merged.replacements[column])}")

    if not assignments:
        return None

    assignments.append(f"{table.stamp_column} = {bind(stamp)}")
    query = (
        f"UPDATE {table.name} SET {', '.join(assignments)} "
        f"WHERE {table.key_column} = $1"
    )
    return query, params


# =============================================================================
# Read-back Queries
# =============================================================================

SELECT_TEMPLATE_AGGREGATE_QUERY = """
SELECT *
FROM template_aggregate
WHERE analytics_id = $1
"""

SELECT_HOURLY_TEMPLATE_AGGREGATES_QUERY = """
SELECT *
FROM template_aggregate
WHERE template_id = $1
  AND period = $2
  AND period_type = 'hourly'
ORDER BY hour_of_day
"""

SELECT_ASSISTANT_AGGREGATE_QUERY = """
SELECT *
FROM assistant_aggregate
WHERE assistant_id = $1
"""


# =============================================================================
# Idempotency Ledger
# =============================================================================

# Conditional insert: returns the key only for the first delivery of a fact
CLAIM_EVENT_QUERY = """
INSERT INTO processed_event (event_key, event_type, call_id, processed_at)
VALUES ($1, $2, $3, $4)
ON CONFLICT (event_key) DO NOTHING
RETURNING event_key
"""

PURGE_PROCESSED_EVENTS_QUERY = """
DELETE FROM processed_event
WHERE processed_at < $1
"""


# =============================================================================
# Concurrent-Calls Gauge
# =============================================================================

OPEN_CALL_MARKER_QUERY = """
INSERT INTO active_call_marker (call_id, template_id, assistant_id, started_at, expires_at)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (call_id) DO NOTHING
"""

CLOSE_CALL_MARKER_QUERY = """
DELETE FROM active_call_marker
WHERE call_id = $1
RETURNING call_id
"""

COUNT_ACTIVE_CALLS_QUERY = """
SELECT COUNT(*)
FROM active_call_marker
WHERE template_id = $1
  AND expires_at > $2
"""

PURGE_EXPIRED_CALL_MARKERS_QUERY = """
DELETE FROM active_call_marker
WHERE expires_at <= $1
"""


# =============================================================================
# Assistant Directory (tables owned by the assistant management service)
# =============================================================================

SELECT_ASSISTANT_PROFILE_QUERY = """
SELECT
    ua.assistant_id,
    ua.user_id,
    ua.template_id,
    ua.vapi_assistant_id,
    pt.category AS template_category
FROM user_assistant ua
LEFT JOIN prompt_template pt ON pt.template_id = ua.template_id
WHERE ua.assistant_id = $1
   OR ua.vapi_assistant_id = $1
LIMIT 1
"""
