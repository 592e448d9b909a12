"""
Pytest test module for the aggregate store SQL builder and aggregate keys.

Covers:
- build_delta_update_query: relative assignments, per-column merging,
  order independence, 1-based bucket positions, no-op detection
- Column whitelisting (no identifier ever comes from input)
- Delta operation validation (no decrements, non-negative bucket indexes)
- TemplateAggregateKey identities for monthly and hourly rows
"""

from datetime import datetime, timedelta, timezone

import pytest

from call_analytics.models.deltas import (
    BucketIncrement,
    CounterDelta,
    LastWriteWins,
    MapCounterDelta,
    SetUnion,
    TemplateAggregateKey,
)
from call_analytics.models.enums import PeriodType
from call_analytics.sql.aggregate_queries import (
    ASSISTANT_AGGREGATE_TABLE,
    TEMPLATE_AGGREGATE_TABLE,
    build_delta_update_query,
)


STAMP = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)
ROW_ID = 'lead-qualification-specialist#2026-03'


# =============================================================================
# Test Class: TestDeltaUpdateQuery
# =============================================================================

class TestDeltaUpdateQuery:
    """Shape and parameters of the generated UPDATE statement."""

    def test_counters_are_relative_assignments(self) -> None:
        query, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE,
            ROW_ID,
            [CounterDelta('total_calls'), CounterDelta('total_duration', 90.0)],
            STAMP,
        )

        assert query == (
            "UPDATE template_aggregate SET "
            "total_calls = total_calls + $2, "
            "total_duration = total_duration + $3, "
            "computed_at = $4 "
            "WHERE analytics_id = $1"
        )
        assert params == [ROW_ID, 1, 90.0, STAMP]

    def test_same_column_deltas_are_merged(self) -> None:
        query, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE,
            ROW_ID,
            [CounterDelta('total_calls'), CounterDelta('total_calls', 2)],
            STAMP,
        )

        assert query.count('total_calls = total_calls') == 1
        assert params[1] == 3
        assert isinstance(params[1], int)

    def test_float_counters_are_bound_as_float(self) -> None:
        _, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE, ROW_ID, [CounterDelta('total_duration', 60)], STAMP
        )

        assert params[1] == 60.0
        assert isinstance(params[1], float)

    def test_statement_is_independent_of_delta_order(self) -> None:
        deltas = [
            CounterDelta('total_calls'),
            SetUnion('unique_users', ('user-2', 'user-1')),
            MapCounterDelta('objectives_achieved', 'budget_discussed'),
            BucketIncrement('rating_distribution', 2),
        ]

        forward = build_delta_update_query(TEMPLATE_AGGREGATE_TABLE, ROW_ID, deltas, STAMP)
        backward = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE, ROW_ID, list(reversed(deltas)), STAMP
        )

        assert forward == backward

    def test_set_union_binds_sorted_distinct_members(self) -> None:
        query, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE,
            ROW_ID,
            [SetUnion('unique_users', ['user-2', 'user-1', 'user-2'])],
            STAMP,
        )

        assert 'unnest(unique_users || $2::text[])' in query
        assert params[1] == ['user-1', 'user-2']

    def test_map_counter_uses_sanitized_key(self) -> None:
        query, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE,
            ROW_ID,
            [MapCounterDelta('objectives_achieved', 'budget-discussed')],
            STAMP,
        )

        assert 'jsonb_build_object' in query
        assert params[1:3] == ['budget_discussed', 1.0]

    def test_bucket_positions_are_one_based(self) -> None:
        """Rating 5 is index 4 in Python and position 5 in a PostgreSQL array."""
        query, params = build_delta_update_query(
            TEMPLATE_AGGREGATE_TABLE,
            ROW_ID,
            [BucketIncrement('rating_distribution', 4)],
            STAMP,
        )

        assert 'rating_distribution[5] = COALESCE(rating_distribution[5], 0) + $2' in query
        assert params[1] == 1

    def test_last_write_wins_on_assistant_row(self) -> None:
        query, params = build_delta_update_query(
            ASSISTANT_AGGREGATE_TABLE,
            'assistant-1',
            [LastWriteWins('last_call_at', STAMP)],
            STAMP,
        )

        assert 'last_call_at = $2' in query
        assert 'updated_at = $3' in query
        assert query.endswith('WHERE assistant_id = $1')
        assert params == ['assistant-1', STAMP, STAMP]

    def test_no_deltas_is_a_no_op(self) -> None:
        assert build_delta_update_query(TEMPLATE_AGGREGATE_TABLE, ROW_ID, [], STAMP) is None


# =============================================================================
# Test Class: TestWhitelist
# =============================================================================

class TestWhitelist:
    """Deltas outside a table's whitelist are rejected before any SQL is built."""

    @pytest.mark.parametrize('delta', [
        CounterDelta('total_calls; DROP TABLE template_aggregate'),
        CounterDelta('unique_users'),
        SetUnion('total_calls', ('x',)),
        MapCounterDelta('failure_reasons', 'x'),
        BucketIncrement('total_calls', 0),
        LastWriteWins('computed_at', STAMP),
    ])
    def test_unknown_or_mistyped_column(self, delta) -> None:
        with pytest.raises(ValueError):
            build_delta_update_query(TEMPLATE_AGGREGATE_TABLE, ROW_ID, [delta], STAMP)

    def test_fractional_delta_on_integer_counter(self) -> None:
        with pytest.raises(ValueError, match='integral'):
            build_delta_update_query(
                TEMPLATE_AGGREGATE_TABLE, ROW_ID, [CounterDelta('total_calls', 0.5)], STAMP
            )

    def test_bucket_index_out_of_range(self) -> None:
        with pytest.raises(ValueError, match='out of range'):
            build_delta_update_query(
                TEMPLATE_AGGREGATE_TABLE, ROW_ID, [BucketIncrement('rating_distribution', 5)], STAMP
            )

    def test_template_columns_not_writable_on_assistant_table(self) -> None:
        with pytest.raises(ValueError):
            build_delta_update_query(
                ASSISTANT_AGGREGATE_TABLE, 'assistant-1', [CounterDelta('failed_calls')], STAMP
            )

    def test_unsupported_operation_type(self) -> None:
        with pytest.raises(TypeError):
            build_delta_update_query(TEMPLATE_AGGREGATE_TABLE, ROW_ID, [object()], STAMP)


# =============================================================================
# Test Class: TestDeltaOperations
# =============================================================================

class TestDeltaOperations:
    """Counters only grow."""

    def test_counter_cannot_decrement(self) -> None:
        with pytest.raises(ValueError):
            CounterDelta('total_calls', -1)

    def test_map_counter_cannot_decrement(self) -> None:
        with pytest.raises(ValueError):
            MapCounterDelta('objectives_achieved', 'budget_discussed', -1)

    def test_bucket_cannot_decrement(self) -> None:
        with pytest.raises(ValueError):
            BucketIncrement('rating_distribution', 0, -1)

    def test_bucket_index_cannot_be_negative(self) -> None:
        with pytest.raises(ValueError):
            BucketIncrement('rating_distribution', -1)

    def test_set_union_accepts_any_iterable(self) -> None:
        op = SetUnion('unique_users', {'b', 'a'})

        assert op.members == ('a', 'b')


# =============================================================================
# Test Class: TestTemplateAggregateKey
# =============================================================================

class TestTemplateAggregateKey:

    def test_monthly_key(self) -> None:
        key = TemplateAggregateKey.monthly('tpl', STAMP)

        assert key.analytics_id == 'tpl#2026-03'
        assert key.period_type is PeriodType.MONTHLY
        assert key.hour_of_day is None

    def test_hourly_key(self) -> None:
        key = TemplateAggregateKey.hourly('tpl', STAMP)

        assert key.analytics_id == 'tpl#2026-03-14#15'
        assert key.period == '2026-03-14'
        assert key.hour_of_day == 15

    def test_keys_use_utc(self) -> None:
        """22:00 on March 31 at UTC-5 is already April 1 in UTC."""
        local = datetime(2026, 3, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))

        assert TemplateAggregateKey.monthly('tpl', local).analytics_id == 'tpl#2026-04'
        assert TemplateAggregateKey.hourly('tpl', local).analytics_id == 'tpl#2026-04-01#3'

    def test_naive_timestamp_is_treated_as_utc(self) -> None:
        naive = datetime(2026, 12, 31, 23, 59)

        assert TemplateAggregateKey.monthly('tpl', naive).period == '2026-12'
