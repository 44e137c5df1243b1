"""
Arrears Classification Module

Days-overdue and delinquency-bucket classification for loans, plus the
late-payment penalty charged per started 30-day period overdue.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum
import math

from .currency import ZERO, to_decimal
from .exceptions import InvalidArgumentError
from .loans import LoanStatus, REPAYING_STATUSES, parse_iso_date


PENALTY_PERIOD_DAYS = 30
DEFAULT_PENALTY_RATE_PER_MONTH = Decimal('0.02')


class DelinquencyBucket(Enum):
    """Days-past-due aging buckets"""
    CURRENT = "CURRENT"          # 0 days
    D1_30 = "D1_30"              # 1-30 days
    D31_60 = "D31_60"            # 31-60 days
    D61_90 = "D61_90"            # 61-90 days
    D91_180 = "D91_180"          # 91-180 days
    D180_PLUS = "D180_PLUS"      # more than 180 days


# Upper bound (inclusive) of each bucket; anything above the last is 180+
_BUCKET_LIMITS = (
    (0, DelinquencyBucket.CURRENT),
    (30, DelinquencyBucket.D1_30),
    (60, DelinquencyBucket.D31_60),
    (90, DelinquencyBucket.D61_90),
    (180, DelinquencyBucket.D91_180),
)


@dataclass(frozen=True)
class ArrearsStatus:
    """Arrears position of a loan on a given day"""
    days_overdue: int
    bucket: DelinquencyBucket
    due_date: Optional[date] = None
    as_of: Optional[date] = None

    @property
    def is_overdue(self) -> bool:
        return self.days_overdue > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'days_overdue': self.days_overdue,
            'bucket': self.bucket.value,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'as_of': self.as_of.isoformat() if self.as_of else None
        }


def _coerce_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_iso_date(value, field_name)
    raise InvalidArgumentError(f"{field_name} must be a date, got {type(value).__name__}")


def days_overdue(due_date: Any, as_of: Any) -> int:
    """
    Whole days elapsed since the due date, never negative

    A loan without a due date (closed, or never scheduled) is 0 days overdue.

    Raises:
        InvalidArgumentError: Malformed due date or as-of date
    """
    if due_date is None:
        return 0
    due = _coerce_date(due_date, "due_date")
    today = _coerce_date(as_of, "as_of")
    return max(0, (today - due).days)


def bucket_for(days: int) -> DelinquencyBucket:
    """Map days overdue to its aging bucket"""
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidArgumentError(f"days_overdue must be an integer, got {days!r}")
    if days < 0:
        raise InvalidArgumentError(f"days_overdue cannot be negative, got {days}")
    for limit, bucket in _BUCKET_LIMITS:
        if days <= limit:
            return bucket
    return DelinquencyBucket.D180_PLUS


def classify(due_date: Any, as_of: Any, status: Optional[LoanStatus] = None) -> ArrearsStatus:
    """
    Classify a loan's arrears position as of a date

    Loans that are not being repaid (pending, approved, closed or written
    off) are always CURRENT.
    """
    as_of_date = _coerce_date(as_of, "as_of")
    if status is not None and status not in REPAYING_STATUSES:
        return ArrearsStatus(days_overdue=0, bucket=DelinquencyBucket.CURRENT, as_of=as_of_date)

    days = days_overdue(due_date, as_of_date)
    return ArrearsStatus(
        days_overdue=days,
        bucket=bucket_for(days),
        due_date=_coerce_date(due_date, "due_date") if due_date is not None else None,
        as_of=as_of_date
    )


def penalty_due(outstanding_balance: Any, days: int,
                monthly_rate: Any = DEFAULT_PENALTY_RATE_PER_MONTH) -> Decimal:
    """
    Late-payment penalty: outstanding x monthly rate x started 30-day periods

    Returned unrounded; callers round at their boundary.
    """
    balance = to_decimal(outstanding_balance, "outstanding_balance")
    rate = to_decimal(monthly_rate, "monthly_rate")
    if balance < ZERO:
        raise InvalidArgumentError("outstanding_balance cannot be negative")
    if rate < ZERO:
        raise InvalidArgumentError("Penalty rate cannot be negative")
    if days <= 0:
        return ZERO
    periods = math.ceil(days / PENALTY_PERIOD_DAYS)
    return balance * rate * Decimal(periods)
