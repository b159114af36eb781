"""
Daily series down-sampling for charts.

Long date ranges are compressed to a bounded number of buckets so chart
rendering cost does not grow with the range. Short ranges render per day.

Usage:
    from storesync.series import aggregate, resolution, RawSeriesPoint

    points = [RawSeriesPoint.from_row(row) for row in rows]
    buckets = aggregate(points, resolution(start, end))
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from storesync.config import config
from storesync.exceptions import ValidationError
from storesync.validators import validate_date_range, validate_date_string

Number = Union[int, float]

DATE_PRESETS = (
    "today",
    "yesterday",
    "last7days",
    "last30days",
    "last90days",
    "thisMonth",
    "lastMonth",
)


def format_day(day: date) -> str:
    """Short chart label, e.g. 'Jan 5'."""
    return f"{day:%b} {day.day}"


def span_days(start: date, end: date) -> int:
    """Inclusive number of days in a range."""
    return (end - start).days + 1


# ═══════════════════════════════════════════════════════════════════════════════
# POINT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RawSeriesPoint:
    """One day of metrics."""

    date: date
    metrics: Dict[str, Number] = field(default_factory=dict)

    # Same read surface as AggregatedSeriesPoint so charts take either type
    @property
    def anchor_date(self) -> date:
        return self.date

    @property
    def range_label(self) -> str:
        return format_day(self.date)

    @property
    def days_count(self) -> int:
        return 1

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RawSeriesPoint":
        """
        Build a point from a REST row like {"date": "2026-01-05", "revenue": 120.5}.

        Numeric fields become metrics; everything else is ignored.

        Raises:
            ValidationError: If the row has no valid date
        """
        raw_date = row.get("date")
        if isinstance(raw_date, datetime):
            day = raw_date.date()
        elif isinstance(raw_date, date):
            day = raw_date
        else:
            # Accept ISO timestamps by keeping the date part
            day = validate_date_string(str(raw_date or "")[:10], "date")

        metrics = {
            key: value
            for key, value in row.items()
            if key != "date" and isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        return cls(date=day, metrics=metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "dateRange": self.range_label,
            "daysCount": 1,
            **self.metrics,
        }


@dataclass(frozen=True)
class AggregatedSeriesPoint:
    """A bucket of consecutive days with summed metrics."""

    anchor_date: date
    range_label: str
    days_count: int
    metrics: Dict[str, Number] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.anchor_date.isoformat(),
            "dateRange": self.range_label,
            "daysCount": self.days_count,
            **self.metrics,
        }


SeriesPoint = Union[RawSeriesPoint, AggregatedSeriesPoint]


# ═══════════════════════════════════════════════════════════════════════════════
# RESOLUTION & AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def resolution(start: date, end: date) -> int:
    """
    Target bucket count for a date range.

    Args:
        start: First day of the range
        end: Last day of the range (inclusive)

    Returns:
        50 for spans up to 30 days, 60 up to 90 days, 50 beyond

    Raises:
        ValidationError: If end is before start
    """
    start, end = validate_date_range(start, end)

    days = span_days(start, end)
    for max_span, buckets in config.series.steps:
        if days <= max_span:
            return buckets
    return config.series.long_range_buckets


def aggregate(raw: Sequence[RawSeriesPoint], n: int) -> List[SeriesPoint]:
    """
    Compress a daily series to at most `n` buckets.

    A series already within `n` points is returned unchanged. Otherwise the
    series is split into consecutive chunks of ceil(len / n) days (the last
    chunk may be shorter) and each chunk's metrics are summed. Metrics
    missing from a day count as zero for that day.

    Args:
        raw: Daily points in date order
        n: Maximum number of buckets

    Returns:
        The input points, or one AggregatedSeriesPoint per chunk

    Raises:
        ValidationError: If n is less than 1
    """
    if not isinstance(n, int) or n < 1:
        raise ValidationError("n", "Bucket count must be a positive integer", n)

    if len(raw) <= n:
        return list(raw)

    chunk_size = math.ceil(len(raw) / n)
    buckets = []
    for offset in range(0, len(raw), chunk_size):
        buckets.append(_bucket(raw[offset:offset + chunk_size]))
    return buckets


def _bucket(chunk: Sequence[RawSeriesPoint]) -> AggregatedSeriesPoint:
    first, last = chunk[0].date, chunk[-1].date
    label = format_day(first) if first == last else f"{format_day(first)} - {format_day(last)}"

    names: List[str] = []
    for point in chunk:
        for name in point.metrics:
            if name not in names:
                names.append(name)

    # Summed left to right so results are reproducible
    metrics: Dict[str, Number] = {}
    for name in names:
        total: Number = 0
        for point in chunk:
            total += point.metrics.get(name, 0)
        metrics[name] = total

    return AggregatedSeriesPoint(
        anchor_date=first,
        range_label=label,
        days_count=len(chunk),
        metrics=metrics,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CHART HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def fill_missing_days(
    raw: Sequence[RawSeriesPoint],
    start: date,
    end: date,
) -> List[RawSeriesPoint]:
    """
    Return one point per day in [start, end], inserting zero-metric days.

    Points outside the range are dropped. Inserted days carry every metric
    name seen in the input with a value of 0.
    """
    by_day = {point.date: point for point in raw}
    names: List[str] = []
    for point in raw:
        for name in point.metrics:
            if name not in names:
                names.append(name)

    filled = []
    for offset in range(max(span_days(start, end), 0)):
        day = start + timedelta(days=offset)
        filled.append(by_day.get(day) or RawSeriesPoint(day, {name: 0 for name in names}))
    return filled


def with_dashboard_metrics(points: Sequence[SeriesPoint]) -> List[Dict[str, Any]]:
    """
    Chart rows with the dashboard's derived metrics.

    Adds total_ad_spend (Google + Facebook), profit (revenue minus cost of
    goods and ad spend) and profit_margin (percent of revenue, 0 without
    revenue).
    """
    rows = []
    for point in points:
        row = point.to_dict()
        revenue = row.get("revenue") or 0
        ad_spend = (row.get("google_ads_spend") or 0) + (row.get("facebook_ads_spend") or 0)
        profit = revenue - (row.get("cost_of_goods") or 0) - ad_spend

        row["total_ad_spend"] = ad_spend
        row["profit"] = profit
        row["profit_margin"] = (profit / revenue) * 100 if revenue > 0 else 0
        rows.append(row)
    return rows


def date_range_for_preset(preset: str, today: Optional[date] = None) -> Tuple[date, date]:
    """
    Resolve a date preset to (start, end).

    Args:
        preset: One of DATE_PRESETS
        today: Reference day (defaults to the current date)

    Returns:
        Tuple of (start, end) dates, end inclusive

    Raises:
        ValidationError: If the preset is unknown
    """
    today = today or date.today()

    if preset == "today":
        return today, today
    if preset == "yesterday":
        return today - timedelta(days=1), today
    if preset in ("last7days", "last30days", "last90days"):
        days = int(preset[len("last"):-len("days")])
        return today - timedelta(days=days), today
    if preset == "thisMonth":
        return today.replace(day=1), today
    if preset == "lastMonth":
        last_month_end = today.replace(day=1) - timedelta(days=1)
        return last_month_end.replace(day=1), last_month_end

    raise ValidationError(
        "preset",
        f"Must be one of: {', '.join(DATE_PRESETS)}",
        preset,
    )
