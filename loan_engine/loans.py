"""
Loan Ledger Module

Loan state, repayment records and the ledger mutator: the only component
allowed to change a loan's balance, status and due date. A mutation is
persisted before it is reported, so a caller that gets a transition back
knows the new state is durable.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple
from enum import Enum
import uuid
import logging

from .allocation import RepaymentAllocation
from .currency import Currency, ZERO, round_money, to_decimal
from .exceptions import InvalidArgumentError, InvalidStateError
from .interest import (
    InterestConvention, ADD_ON_CONVENTIONS,
    add_months, monthly_payment, parse_convention, reducing_balance_interest, total_interest
)
from .storage import StorageRecord, utc_now


logger = logging.getLogger("loan_engine.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    ARREARS = "ARREARS"
    CLOSED = "CLOSED"
    WRITTEN_OFF = "WRITTEN_OFF"


TERMINAL_STATUSES = frozenset({LoanStatus.CLOSED, LoanStatus.WRITTEN_OFF})
REPAYING_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.ARREARS})
# Statuses that still carry a debt after disbursement
OUTSTANDING_STATUSES = REPAYING_STATUSES | {LoanStatus.WRITTEN_OFF}


def parse_iso_date(value: str, field_name: str = "date") -> date:
    """Parse a full ISO date or datetime string; trailing text is rejected"""
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise InvalidArgumentError(f"{field_name} is not a valid ISO date: {value!r}")


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    return parse_iso_date(str(value), field_name)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Loan(StorageRecord):
    """
    A disbursed (or about to be disbursed) loan

    `version` is the optimistic-concurrency token: repositories refuse a
    save whose expected version no longer matches the stored one.

    The `period_*_paid` fields accumulate what has been paid against the
    instalment currently due (the one falling on `next_payment_date`). They
    reset when the due date rolls forward, so penalties and interest for a
    period are charged once however many payments settle them.
    """
    loan_number: str
    customer_id: str
    principal: Decimal
    annual_interest_rate: Decimal  # percent, e.g. 12 for 12%
    term_months: int
    outstanding_balance: Decimal
    status: LoanStatus = LoanStatus.PENDING
    interest_convention: InterestConvention = InterestConvention.REDUCING
    currency: Currency = Currency.ZMW
    organisation_id: Optional[str] = None
    disbursement_date: Optional[date] = None
    next_payment_date: Optional[date] = None
    last_payment_date: Optional[date] = None
    total_paid: Decimal = ZERO
    period_penalties_paid: Decimal = ZERO
    period_interest_paid: Decimal = ZERO
    period_principal_paid: Decimal = ZERO
    version: int = 0

    def __post_init__(self):
        self.principal = to_decimal(self.principal, "principal")
        self.annual_interest_rate = to_decimal(self.annual_interest_rate, "annual_interest_rate")
        self.outstanding_balance = to_decimal(self.outstanding_balance, "outstanding_balance")
        self.total_paid = to_decimal(self.total_paid, "total_paid")
        self.period_penalties_paid = to_decimal(self.period_penalties_paid, "period_penalties_paid")
        self.period_interest_paid = to_decimal(self.period_interest_paid, "period_interest_paid")
        self.period_principal_paid = to_decimal(self.period_principal_paid, "period_principal_paid")
        self.interest_convention = parse_convention(self.interest_convention)

        if self.principal <= ZERO:
            raise InvalidArgumentError(f"Principal must be positive, got {self.principal}")
        if self.annual_interest_rate < ZERO:
            raise InvalidArgumentError("Annual interest rate cannot be negative")
        if isinstance(self.term_months, bool) or not isinstance(self.term_months, int) or self.term_months <= 0:
            raise InvalidArgumentError(f"Term must be a positive number of months, got {self.term_months!r}")
        if self.outstanding_balance < ZERO or self.outstanding_balance > self.principal:
            raise InvalidStateError(
                f"Outstanding balance {self.outstanding_balance} outside [0, {self.principal}]"
            )
        if min(self.period_penalties_paid, self.period_interest_paid, self.period_principal_paid) < ZERO:
            raise InvalidStateError(f"Loan {self.id} has negative amounts paid for the period")
        # Undisbursed loans may carry any balance; afterwards zero means CLOSED
        zero_balance = self.outstanding_balance == ZERO
        if (self.status == LoanStatus.CLOSED and not zero_balance) or \
                (self.status in OUTSTANDING_STATUSES and zero_balance):
            raise InvalidStateError(
                f"Loan {self.id} is {self.status.value} with outstanding balance {self.outstanding_balance}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_repaying(self) -> bool:
        return self.status in REPAYING_STATUSES

    @property
    def period_opening_balance(self) -> Decimal:
        """Balance when the current period started, before this period's payments"""
        return self.outstanding_balance + self.period_principal_paid

    def period_interest_due(self) -> Decimal:
        """
        Interest charged for the current period, before any of it is paid

        Amortizing conventions charge the monthly rate on the period's
        opening balance; add-on conventions charge an even share of their total.
        """
        if self.interest_convention in ADD_ON_CONVENTIONS:
            total = total_interest(self.principal, self.annual_interest_rate,
                                   self.term_months, self.interest_convention)
            return total / Decimal(self.term_months)
        return reducing_balance_interest(self.period_opening_balance, self.annual_interest_rate)

    @property
    def period_instalment_paid(self) -> Decimal:
        """Interest and principal paid toward the instalment currently due"""
        return self.period_interest_paid + self.period_principal_paid

    def scheduled_instalment(self) -> Decimal:
        """Contractual instalment, rounded to the loan currency"""
        n = Decimal(self.term_months)
        if self.interest_convention == InterestConvention.REDUCING:
            amount = monthly_payment(self.principal, self.annual_interest_rate, self.term_months)
        elif self.interest_convention == InterestConvention.DECLINING:
            amount = self.principal / n + self.period_interest_due()
        else:
            amount = (self.principal + total_interest(
                self.principal, self.annual_interest_rate, self.term_months, self.interest_convention
            )) / n
        return round_money(amount, self.currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_number': self.loan_number,
            'customer_id': self.customer_id,
            'organisation_id': self.organisation_id,
            'principal': str(self.principal),
            'annual_interest_rate': str(self.annual_interest_rate),
            'term_months': self.term_months,
            'outstanding_balance': str(self.outstanding_balance),
            'status': self.status.value,
            'interest_convention': self.interest_convention.value,
            'currency': self.currency.code,
            'disbursement_date': _iso(self.disbursement_date),
            'next_payment_date': _iso(self.next_payment_date),
            'last_payment_date': _iso(self.last_payment_date),
            'total_paid': str(self.total_paid),
            'period_penalties_paid': str(self.period_penalties_paid),
            'period_interest_paid': str(self.period_interest_paid),
            'period_principal_paid': str(self.period_principal_paid),
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            customer_id=data['customer_id'],
            organisation_id=data.get('organisation_id'),
            principal=Decimal(data['principal']),
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            term_months=int(data['term_months']),
            outstanding_balance=Decimal(data['outstanding_balance']),
            status=LoanStatus(data['status']),
            interest_convention=InterestConvention(data['interest_convention']),
            currency=Currency[data['currency']],
            disbursement_date=_parse_date(data.get('disbursement_date'), 'disbursement_date'),
            next_payment_date=_parse_date(data.get('next_payment_date'), 'next_payment_date'),
            last_payment_date=_parse_date(data.get('last_payment_date'), 'last_payment_date'),
            total_paid=Decimal(data.get('total_paid', '0')),
            period_penalties_paid=Decimal(data.get('period_penalties_paid', '0')),
            period_interest_paid=Decimal(data.get('period_interest_paid', '0')),
            period_principal_paid=Decimal(data.get('period_principal_paid', '0')),
            version=int(data.get('version', 0))
        )


@dataclass
class RepaymentRecord(StorageRecord):
    """Append-only record of one posted repayment and its split"""
    loan_id: str
    payment_date: date
    amount: Decimal
    penalties: Decimal
    fees: Decimal
    interest: Decimal
    principal: Decimal
    unallocated: Decimal
    balance_after: Decimal
    payment_method: str = "cash"
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['payment_date'] = self.payment_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepaymentRecord':
        data = dict(data)
        data['payment_date'] = _parse_date(data['payment_date'], 'payment_date')
        for key in ('amount', 'penalties', 'fees', 'interest', 'principal', 'unallocated', 'balance_after'):
            data[key] = Decimal(data[key])
        return super().from_dict(data)

    @classmethod
    def from_allocation(
        cls,
        loan: Loan,
        allocation: RepaymentAllocation,
        payment_date: date,
        payment_method: str = "cash",
        reference: Optional[str] = None
    ) -> 'RepaymentRecord':
        now = utc_now()
        return cls(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            payment_date=payment_date,
            amount=allocation.amount,
            penalties=allocation.penalties,
            fees=allocation.fees,
            interest=allocation.interest,
            principal=allocation.principal,
            unallocated=allocation.unallocated,
            balance_after=loan.outstanding_balance,
            payment_method=payment_method,
            reference=reference
        )


@dataclass(frozen=True)
class LedgerTransition:
    """Before/after view of one ledger mutation"""
    loan_id: str
    previous_status: LoanStatus
    new_status: LoanStatus
    previous_balance: Decimal
    new_balance: Decimal
    previous_due_date: Optional[date] = None
    new_due_date: Optional[date] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.new_status

    @property
    def closed(self) -> bool:
        return self.new_status == LoanStatus.CLOSED and self.previous_status != LoanStatus.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'previous_balance': str(self.previous_balance),
            'new_balance': str(self.new_balance),
            'previous_due_date': _iso(self.previous_due_date),
            'new_due_date': _iso(self.new_due_date)
        }


def open_loan(
    loan_number: str,
    customer_id: str,
    principal: Any,
    annual_interest_rate: Any,
    term_months: int,
    disbursement_date: date,
    interest_convention: Any = InterestConvention.REDUCING,
    currency: Currency = Currency.ZMW,
    organisation_id: Optional[str] = None,
    loan_id: Optional[str] = None
) -> Loan:
    """
    Build a freshly disbursed ACTIVE loan

    The full principal is outstanding and the first instalment falls due one
    month after disbursement.
    """
    disbursed = _parse_date(disbursement_date, "disbursement_date")
    if disbursed is None:
        raise InvalidArgumentError("disbursement_date is required")
    amount = to_decimal(principal, "principal")
    now = utc_now()
    return Loan(
        id=loan_id or str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        loan_number=loan_number,
        customer_id=customer_id,
        organisation_id=organisation_id,
        principal=amount,
        annual_interest_rate=annual_interest_rate,
        term_months=term_months,
        outstanding_balance=amount,
        status=LoanStatus.ACTIVE,
        interest_convention=interest_convention,
        currency=currency,
        disbursement_date=disbursed,
        next_payment_date=add_months(disbursed, 1)
    )


class LoanLedgerMutator:
    """
    Applies allocations and status transitions to loans

    Every mutation goes through `repository.save(loan, expected_version)`,
    so a concurrent writer that got there first turns this one into a
    ConflictError instead of a lost update.
    """

    def __init__(self, loan_repository):
        self.loan_repository = loan_repository

    def apply_repayment(
        self,
        loan: Loan,
        allocation: RepaymentAllocation,
        payment_date: date,
        next_payment_date: Optional[date] = None
    ) -> Tuple[Loan, LedgerTransition]:
        """
        Reduce the balance by the allocation's principal share

        Args:
            loan: Current loan state (its version is the expected version)
            allocation: Split produced by the allocator
            payment_date: Date the money was received
            next_payment_date: Due date to carry forward; unchanged when None

        Returns:
            Tuple of (persisted loan, transition)

        Raises:
            InvalidStateError: Loan is CLOSED/WRITTEN_OFF or not yet disbursed
            ConflictError: Loan changed since it was read
        """
        if loan.is_terminal:
            raise InvalidStateError(f"Loan {loan.id} is {loan.status.value} and cannot accept repayments")
        if not loan.is_repaying:
            raise InvalidStateError(f"Loan {loan.id} is {loan.status.value}; repayments require a disbursed loan")

        new_balance = max(ZERO, loan.outstanding_balance - allocation.principal)
        closed = new_balance == ZERO
        if closed:
            new_status, new_due = LoanStatus.CLOSED, None
        else:
            new_status, new_due = loan.status, next_payment_date or loan.next_payment_date

        if closed or new_due != loan.next_payment_date:
            # A new period starts with nothing paid against it
            period_paid = (ZERO, ZERO, ZERO)
        else:
            period_paid = (
                loan.period_penalties_paid + allocation.penalties,
                loan.period_interest_paid + allocation.interest,
                loan.period_principal_paid + allocation.principal
            )

        updated = replace(
            loan,
            outstanding_balance=new_balance,
            status=new_status,
            next_payment_date=new_due,
            last_payment_date=payment_date,
            total_paid=loan.total_paid + allocation.allocated_total,
            period_penalties_paid=period_paid[0],
            period_interest_paid=period_paid[1],
            period_principal_paid=period_paid[2],
            updated_at=utc_now()
        )
        saved = self.loan_repository.save(updated, expected_version=loan.version)

        if closed:
            logger.info(f"Loan {loan.id} fully repaid and closed")
        return saved, self._transition(loan, saved)

    def mark_arrears(self, loan: Loan) -> Tuple[Loan, LedgerTransition]:
        """ACTIVE -> ARREARS"""
        return self._set_status(loan, LoanStatus.ARREARS, {LoanStatus.ACTIVE})

    def restore_active(self, loan: Loan) -> Tuple[Loan, LedgerTransition]:
        """ARREARS -> ACTIVE once the loan is current again"""
        return self._set_status(loan, LoanStatus.ACTIVE, {LoanStatus.ARREARS})

    def write_off(self, loan: Loan) -> Tuple[Loan, LedgerTransition]:
        """Terminal write-off; the remaining balance is kept as the written-off amount"""
        return self._set_status(loan, LoanStatus.WRITTEN_OFF, REPAYING_STATUSES)

    def _set_status(self, loan: Loan, status: LoanStatus, allowed_from) -> Tuple[Loan, LedgerTransition]:
        if loan.status not in allowed_from:
            raise InvalidStateError(
                f"Loan {loan.id} cannot move from {loan.status.value} to {status.value}"
            )
        updated = replace(loan, status=status, updated_at=utc_now())
        saved = self.loan_repository.save(updated, expected_version=loan.version)
        logger.info(f"Loan {loan.id} status {loan.status.value} -> {status.value}")
        return saved, self._transition(loan, saved)

    @staticmethod
    def _transition(before: Loan, after: Loan) -> LedgerTransition:
        return LedgerTransition(
            loan_id=before.id,
            previous_status=before.status,
            new_status=after.status,
            previous_balance=before.outstanding_balance,
            new_balance=after.outstanding_balance,
            previous_due_date=before.next_payment_date,
            new_due_date=after.next_payment_date
        )
