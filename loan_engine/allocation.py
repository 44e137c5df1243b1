"""
Repayment Allocation Module

Splits a repayment across penalties, fees, interest and principal in a
configurable priority order. The order is organisation policy: changing it
changes the split.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from enum import Enum

from .currency import ZERO, to_decimal
from .exceptions import InvalidArgumentError


class AllocationBucket(Enum):
    """Obligation buckets a repayment can settle"""
    PENALTIES = "penalties"
    FEES = "fees"
    INTEREST = "interest"
    PRINCIPAL = "principal"


DEFAULT_ALLOCATION_ORDER = (
    AllocationBucket.PENALTIES,
    AllocationBucket.FEES,
    AllocationBucket.INTEREST,
    AllocationBucket.PRINCIPAL,
)


@dataclass(frozen=True)
class RepaymentAllocation:
    """
    Breakdown of one payment. Components plus `unallocated` always equal the
    amount paid; `unallocated` is whatever exceeded the total dues and must be
    handled by the caller (prepayment/credit), never silently dropped.
    """
    amount: Decimal
    penalties: Decimal
    fees: Decimal
    interest: Decimal
    principal: Decimal
    unallocated: Decimal = ZERO

    @property
    def allocated_total(self) -> Decimal:
        return self.penalties + self.fees + self.interest + self.principal

    @property
    def has_excess(self) -> bool:
        return self.unallocated > ZERO

    def component(self, bucket: AllocationBucket) -> Decimal:
        return getattr(self, bucket.value)

    def to_dict(self) -> Dict[str, str]:
        return {
            'amount': str(self.amount),
            'penalties': str(self.penalties),
            'fees': str(self.fees),
            'interest': str(self.interest),
            'principal': str(self.principal),
            'unallocated': str(self.unallocated)
        }


def parse_allocation_order(
    order: Optional[Iterable[Union[AllocationBucket, str]]]
) -> List[AllocationBucket]:
    """
    Normalise an allocation order given as enum members or bucket names

    Buckets left out of the order receive nothing.

    Raises:
        InvalidArgumentError: Empty order, unknown name or duplicate bucket
    """
    if order is None:
        return list(DEFAULT_ALLOCATION_ORDER)

    buckets: List[AllocationBucket] = []
    for item in order:
        if isinstance(item, AllocationBucket):
            bucket = item
        else:
            try:
                bucket = AllocationBucket(str(item).strip().lower())
            except ValueError:
                raise InvalidArgumentError(f"Unknown allocation bucket: {item!r}")
        if bucket in buckets:
            raise InvalidArgumentError(f"Allocation bucket listed twice: {bucket.value}")
        buckets.append(bucket)

    if not buckets:
        raise InvalidArgumentError("Allocation order cannot be empty")
    return buckets


def _due(value: Any, field_name: str) -> Decimal:
    due = to_decimal(value, field_name)
    if due < ZERO:
        raise InvalidArgumentError(f"{field_name} cannot be negative, got {due}")
    return due


def allocate(
    amount: Any,
    penalties_due: Any,
    fees_due: Any,
    interest_due: Any,
    principal_due: Any,
    order: Optional[Sequence[Union[AllocationBucket, str]]] = None
) -> RepaymentAllocation:
    """
    Greedy allocation of a payment across obligation buckets

    Walks `order` (default penalties, fees, interest, principal), giving each
    bucket min(remaining, due) and stopping once nothing remains.

    Args:
        amount: Payment amount (> 0)
        penalties_due: Outstanding penalties (>= 0)
        fees_due: Outstanding fees (>= 0)
        interest_due: Outstanding interest (>= 0)
        principal_due: Outstanding principal (>= 0)
        order: Priority order of buckets

    Returns:
        RepaymentAllocation

    Raises:
        InvalidArgumentError: amount <= 0, a missing or negative due, or a bad order
    """
    payment = to_decimal(amount, "amount")
    if payment <= ZERO:
        raise InvalidArgumentError(f"Repayment amount must be greater than zero, got {payment}")

    dues = {
        AllocationBucket.PENALTIES: _due(penalties_due, "penalties_due"),
        AllocationBucket.FEES: _due(fees_due, "fees_due"),
        AllocationBucket.INTEREST: _due(interest_due, "interest_due"),
        AllocationBucket.PRINCIPAL: _due(principal_due, "principal_due"),
    }
    allocated = {bucket: ZERO for bucket in AllocationBucket}

    remaining = payment
    for bucket in parse_allocation_order(order):
        if remaining <= ZERO:
            break
        share = min(remaining, dues[bucket])
        allocated[bucket] = share
        remaining -= share

    return RepaymentAllocation(
        amount=payment,
        penalties=allocated[AllocationBucket.PENALTIES],
        fees=allocated[AllocationBucket.FEES],
        interest=allocated[AllocationBucket.INTEREST],
        principal=allocated[AllocationBucket.PRINCIPAL],
        unallocated=remaining
    )
