"""
Derivations of stock state from the transaction ledger.

Everything here is pure: callers pass in products and transactions (or rows
already grouped by SQL) and get numbers back. No session, no clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core.errors import InvalidArgument
from .models import TransactionType


class StockStatus(str, Enum):
    OK = "OK"
    LOW = "LOW"
    OUT = "OUT"


# A product is LOW once it is at or below this share of its initial stock
LOW_STOCK_RATIO = 0.5


@dataclass
class StockTotals:
    in_qty: int = 0
    out_qty: int = 0


@dataclass
class DayBucket:
    day: str  # YYYY-MM-DD in the report timezone
    sales: float = 0.0
    transactions: int = 0


def derive_initial_stock(product: Any, in_sum: int, out_sum: int) -> int:
    """Explicit initial stock when known, otherwise back-derived from quantity."""
    if product.initial_stock is not None:
        return product.initial_stock
    return product.quantity - in_sum + out_sum


def derive_current_stock(
    initial: int,
    in_sum: int,
    out_sum: int,
    has_explicit_initial: bool,
    quantity: int,
) -> int:
    """
    Recompute stock from the ledger when the baseline is a stored fact.

    A derived baseline was itself computed from ``quantity``, so in that case
    the stored quantity is returned as ground truth.
    """
    if has_explicit_initial:
        return initial + in_sum - out_sum
    return quantity


def classify_status(current: int, initial: Optional[int]) -> StockStatus:
    if current <= 0:
        return StockStatus.OUT
    threshold = (initial or 0) * LOW_STOCK_RATIO
    # Inclusive: exactly half of the initial stock is already LOW
    if current <= threshold:
        return StockStatus.LOW
    return StockStatus.OK


def rebuilt_quantity(product: Any, in_sum: int, out_sum: int) -> Optional[int]:
    """Quantity as a materialized view over the full ledger, None if unknown."""
    if product.initial_stock is None:
        return None
    return product.initial_stock + in_sum - out_sum


def aggregate_by_product(rows: Iterable[Any]) -> Dict[int, StockTotals]:
    """
    Sum in/out quantities per product.

    ``rows`` may be transactions or rows already grouped by
    (product_id, type); partial sums add up the same way.
    """
    totals: Dict[int, StockTotals] = {}
    for row in rows:
        entry = totals.setdefault(row.product_id, StockTotals())
        if row.type == TransactionType.IN:
            entry.in_qty += row.quantity or 0
        elif row.type == TransactionType.OUT:
            entry.out_qty += row.quantity or 0
    return totals


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    """Convert a stored naive-UTC timestamp to ``tz``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def to_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def bucket_by_day(
    transactions: Iterable[Any],
    prices: Mapping[int, Optional[float]],
    tz: tzinfo,
) -> List[DayBucket]:
    """Sales amount and transaction count per local calendar day, ascending."""
    buckets: Dict[str, DayBucket] = {}
    for tr in transactions:
        if tr.type != TransactionType.OUT:
            continue
        day = to_local(tr.date, tz).date().isoformat()
        bucket = buckets.setdefault(day, DayBucket(day=day))
        bucket.sales += tr.quantity * (prices.get(tr.product_id) or 0)
        bucket.transactions += 1
    return [buckets[day] for day in sorted(buckets)]


def _local_midnight_utc(day: date, tz: tzinfo) -> datetime:
    return to_utc_naive(datetime.combine(day, time.min, tzinfo=tz))


def day_window(day: Optional[date], tz: tzinfo) -> Tuple[datetime, datetime]:
    """[day 00:00, next day 00:00) in ``tz``, as naive UTC."""
    if day is None:
        raise InvalidArgument("Date is required (YYYY-MM-DD)")
    return _local_midnight_utc(day, tz), _local_midnight_utc(day + timedelta(days=1), tz)


def month_window(month: Optional[int], year: Optional[int], tz: tzinfo) -> Tuple[datetime, datetime]:
    """[first of month, first of next month) in ``tz``, as naive UTC."""
    if not month or not year or month < 1 or month > 12:
        raise InvalidArgument("month (1-12) and year are required", month=month, year=year)
    if year < 1 or year > 9998:
        raise InvalidArgument("year is out of range", month=month, year=year)
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return _local_midnight_utc(start, tz), _local_midnight_utc(end, tz)


def date_range_window(
    start_date: Optional[date],
    end_date: Optional[date],
    tz: tzinfo,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive calendar-date range as a half-open UTC window, either side open."""
    if start_date and end_date and start_date > end_date:
        raise InvalidArgument(
            "start_date must not be after end_date",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
    start = _local_midnight_utc(start_date, tz) if start_date else None
    end = _local_midnight_utc(end_date + timedelta(days=1), tz) if end_date else None
    return start, end
