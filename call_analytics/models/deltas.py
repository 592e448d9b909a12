"""
Delta operations and aggregate keys for the aggregate store.

Every mutation of an aggregate row is expressed as one of a closed set of
operations relative to the row's current value, never as a computed new value,
so two updates for different events commute and neither can be lost:

- CounterDelta: add a non-negative amount to a numeric column
- SetUnion: add members to a string-set column
- MapCounterDelta: add a non-negative amount to one key of a counter map
- BucketIncrement: add to one bucket of a fixed-size counter array
- LastWriteWins: replace a scalar column (timestamps); unordered by design

Aggregate keys follow the `{templateId}#{period}` convention of the dashboard
read path: monthly rows use `YYYY-MM`, capacity-planning rows use
`YYYY-MM-DD#{hour}`.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple, Union

from call_analytics.models.enums import PeriodType


# Characters outside this set are replaced in map keys (objective tags)
_MAP_KEY_PATTERN = re.compile(r'[^a-zA-Z0-9]')


def sanitize_map_key(key: str) -> str:
    """Normalize a map key the way objective tags are stored."""
    return _MAP_KEY_PATTERN.sub('_', key)


# =============================================================================
# Delta Operations
# =============================================================================


@dataclass(frozen=True)
class CounterDelta:
    field: str
    amount: Union[int, float] = 1

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Counter '{self.field}' cannot be decremented ({self.amount})")


@dataclass(frozen=True)
class SetUnion:
    field: str
    members: Tuple[str, ...]

    def __post_init__(self) -> None:
        # Accept any iterable of strings; store a sorted, de-duplicated tuple
        object.__setattr__(self, 'members', tuple(sorted({str(m) for m in self.members})))


@dataclass(frozen=True)
class MapCounterDelta:
    field: str
    key: str
    amount: Union[int, float] = 1

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Map counter '{self.field}.{self.key}' cannot be decremented")
        object.__setattr__(self, 'key', sanitize_map_key(self.key))


@dataclass(frozen=True)
class BucketIncrement:
    field: str
    index: int
    amount: int = 1

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"Bucket index must be non-negative, got {self.index}")
        if self.amount < 0:
            raise ValueError(f"Bucket '{self.field}[{self.index}]' cannot be decremented")


@dataclass(frozen=True)
class LastWriteWins:
    field: str
    value: Any


DeltaOp = Union[CounterDelta, SetUnion, MapCounterDelta, BucketIncrement, LastWriteWins]


# =============================================================================
# Aggregate Keys
# =============================================================================


def _utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


@dataclass(frozen=True)
class TemplateAggregateKey:
    """Identity of one template aggregate row."""
    template_id: str
    period: str
    period_type: PeriodType = PeriodType.MONTHLY
    hour_of_day: Optional[int] = None

    @property
    def analytics_id(self) -> str:
        if self.period_type is PeriodType.HOURLY:
            return f"{self.template_id}#{self.period}#{self.hour_of_day}"
        return f"{self.template_id}#{self.period}"

    @classmethod
    def monthly(cls, template_id: str, timestamp: datetime) -> "TemplateAggregateKey":
        """Key of the calendar-month row containing `timestamp` (UTC)."""
        return cls(template_id=template_id, period=_utc(timestamp).strftime('%Y-%m'))

    @classmethod
    def hourly(cls, template_id: str, timestamp: datetime) -> "TemplateAggregateKey":
        """Key of the capacity-planning row for the date and hour of `timestamp` (UTC)."""
        ts = _utc(timestamp)
        return cls(
            template_id=template_id,
            period=ts.strftime('%Y-%m-%d'),
            period_type=PeriodType.HOURLY,
            hour_of_day=ts.hour,
        )
