"""
Repayment Orchestration Module

The repayment use case: validate, classify arrears, work out what is owed,
allocate the payment, mutate the ledger and append the repayment record in
one storage transaction, then re-stage the loan if its delinquency bucket
moved. Re-staging is advisory: its failure is logged and never undoes the
repayment.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Dict, Optional, Sequence, Tuple, TypeVar
import time
import uuid
import logging

from .allocation import RepaymentAllocation, allocate, parse_allocation_order
from .arrears import ArrearsStatus, DEFAULT_PENALTY_RATE_PER_MONTH, classify, penalty_due
from .currency import ZERO, format_amount, round_money, to_decimal
from .events import DomainEvent, EventDispatcher, loan_event
from .exceptions import ConflictError, InvalidArgumentError, InvalidStateError, UnavailableError
from .interest import add_months
from .locks import LoanLockRegistry
from .loans import LedgerTransition, Loan, LoanLedgerMutator, LoanStatus, RepaymentRecord
from .logging_config import log_action
from .repositories import LoanRepository, RepaymentRepository, StagingResultRepository
from .staging import CreditStageResult, CreditStagingEngine, ProvisionResult


logger = logging.getLogger("loan_engine.repayments")

T = TypeVar("T")


@dataclass
class RepaymentRequest:
    """A payment received against a loan"""
    loan_id: str
    amount: Decimal
    payment_date: date
    payment_method: str = "cash"
    reference: Optional[str] = None
    fees_due: Decimal = ZERO
    correlation_id: Optional[str] = None


@dataclass
class AmountsDue:
    """What a loan owes as of a date"""
    penalties: Decimal
    fees: Decimal
    interest: Decimal
    principal: Decimal

    @property
    def total(self) -> Decimal:
        return self.penalties + self.fees + self.interest + self.principal

    def to_dict(self) -> Dict[str, str]:
        return {
            'penalties': str(self.penalties),
            'fees': str(self.fees),
            'interest': str(self.interest),
            'principal': str(self.principal),
            'total': str(self.total)
        }


@dataclass
class RepaymentOutcome:
    """Everything that happened while posting one repayment"""
    repayment: RepaymentRecord
    allocation: RepaymentAllocation
    loan: Loan
    transition: LedgerTransition
    arrears_before: ArrearsStatus
    arrears_after: ArrearsStatus
    stage_result: Optional[CreditStageResult] = None
    provision_result: Optional[ProvisionResult] = None
    staging_error: Optional[str] = None
    attempts: int = 1

    @property
    def bucket_changed(self) -> bool:
        return self.arrears_before.bucket != self.arrears_after.bucket


class RepaymentOrchestrator:
    """
    Posts repayments against loans

    Concurrency: each posting holds the loan's lock from read to commit and
    relies on the repository's version check as a second line. A
    ConflictError re-runs the whole read-allocate-write sequence; an
    UnavailableError is retried with exponential backoff. Both are bounded
    and the last error is raised once the budget is spent.
    """

    def __init__(
        self,
        loan_repository: LoanRepository,
        repayment_repository: RepaymentRepository,
        staging_repository: StagingResultRepository,
        transaction: Callable[[], ContextManager],
        staging_engine: Optional[CreditStagingEngine] = None,
        locks: Optional[LoanLockRegistry] = None,
        allocation_order: Optional[Sequence[str]] = None,
        penalty_rate_per_month: Any = DEFAULT_PENALTY_RATE_PER_MONTH,
        advance_due_date: bool = True,
        max_conflict_retries: int = 3,
        max_unavailable_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
        dispatcher: Optional[EventDispatcher] = None,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.loan_repository = loan_repository
        self.repayment_repository = repayment_repository
        self.staging_repository = staging_repository
        self.staging_engine = staging_engine or CreditStagingEngine()
        self.locks = locks or LoanLockRegistry()
        self.mutator = LoanLedgerMutator(loan_repository)
        self.allocation_order = parse_allocation_order(allocation_order)
        self.penalty_rate_per_month = to_decimal(penalty_rate_per_month, "penalty_rate_per_month")
        self.advance_due_date = advance_due_date
        self.max_conflict_retries = max_conflict_retries
        self.max_unavailable_retries = max_unavailable_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        if transaction is None:
            raise InvalidArgumentError("A storage transaction is required to post repayments atomically")
        self.transaction = transaction
        self.dispatcher = dispatcher or EventDispatcher()
        self._today = today
        self._sleep = sleep

    # Public operations

    def post_repayment(self, request: RepaymentRequest) -> RepaymentOutcome:
        """
        Post a repayment

        Raises:
            InvalidArgumentError: amount <= 0 or payment date in the future
            NotFoundError: Unknown loan
            InvalidStateError: Loan is closed, written off or not disbursed
            ConflictError: Still conflicting after the retry budget
            UnavailableError: Persistence or lock still unavailable after retries
        """
        correlation_id = request.correlation_id or str(uuid.uuid4())
        amount = self._validate(request)

        outcome, attempts = self._with_retries(
            lambda: self._post_once(request, amount),
            request.loan_id, "post_repayment", correlation_id
        )
        outcome.attempts = attempts

        log_action(
            logger, "info",
            f"Posted repayment of {format_amount(amount, outcome.loan.currency)}; "
            f"balance now {format_amount(outcome.loan.outstanding_balance, outcome.loan.currency)}",
            loan_id=request.loan_id, action="post_repayment", correlation_id=correlation_id,
            extra={'allocation': outcome.allocation.to_dict(), 'status': outcome.loan.status.value}
        )

        if outcome.bucket_changed:
            self._restage_after_repayment(outcome, request.payment_date, correlation_id)

        self._publish(outcome)
        return outcome

    def amounts_due(self, loan_id: str, as_of: Optional[date] = None, fees_due: Any = ZERO) -> AmountsDue:
        """Penalties, fees, interest and principal owed as of a date"""
        loan = self.loan_repository.get_by_id(loan_id)
        as_of = as_of or self._today()
        arrears = classify(loan.next_payment_date, as_of, loan.status)
        return self._amounts_due(loan, arrears, to_decimal(fees_due, "fees_due"))

    def refresh_arrears_status(self, loan_id: str, as_of: Optional[date] = None) -> Tuple[Loan, ArrearsStatus]:
        """
        Move a loan ACTIVE -> ARREARS when overdue, or ARREARS -> ACTIVE when
        it is current again. Other statuses are left alone.
        """
        as_of = as_of or self._today()
        correlation_id = str(uuid.uuid4())

        def refresh() -> Tuple[Loan, ArrearsStatus, Optional[LedgerTransition]]:
            with self.locks.hold(loan_id):
                loan = self.loan_repository.get_by_id(loan_id)
                arrears = classify(loan.next_payment_date, as_of, loan.status)
                if loan.status == LoanStatus.ACTIVE and arrears.is_overdue:
                    loan, transition = self.mutator.mark_arrears(loan)
                    return loan, arrears, transition
                if loan.status == LoanStatus.ARREARS and not arrears.is_overdue:
                    loan, transition = self.mutator.restore_active(loan)
                    return loan, arrears, transition
                return loan, arrears, None

        (loan, arrears, transition), _ = self._with_retries(refresh, loan_id, "refresh_arrears", correlation_id)
        if transition is not None:
            event_type = (DomainEvent.LOAN_IN_ARREARS if loan.status == LoanStatus.ARREARS
                          else DomainEvent.LOAN_RESTORED)
            self.dispatcher.publish(loan_event(event_type, loan, days_overdue=arrears.days_overdue))
        return loan, arrears

    def restage_loan(
        self,
        loan_id: str,
        as_of: Optional[date] = None,
        base_pd: Any = None,
        loss_given_default: Any = None
    ) -> Tuple[CreditStageResult, ProvisionResult]:
        """
        Recompute and append the loan's staging and provisioning results

        Raises:
            NotFoundError: Unknown loan
        """
        as_of = as_of or self._today()
        with self.locks.hold(loan_id):
            loan = self.loan_repository.get_by_id(loan_id)
            previous = self.staging_repository.latest_stage(loan_id)
            stage_result, provision_result = self.staging_engine.assess_loan(
                loan, as_of, base_pd, loss_given_default
            )
            with self.transaction():
                self.staging_repository.append_stage(loan_id, stage_result, as_of)
                self.staging_repository.append_provision(loan_id, provision_result, as_of)

        if previous is None or previous.result.stage != stage_result.stage:
            self.dispatcher.publish(loan_event(
                DomainEvent.CREDIT_STAGE_CHANGED, loan,
                previous_stage=previous.result.stage.value if previous else None,
                stage=stage_result.stage.value,
                ecl_value=str(stage_result.ecl_value)
            ))
        return stage_result, provision_result

    def write_off(self, loan_id: str) -> Loan:
        """Write off a loan that is still being repaid"""
        correlation_id = str(uuid.uuid4())

        def write_off() -> Loan:
            with self.locks.hold(loan_id):
                loan, _ = self.mutator.write_off(self.loan_repository.get_by_id(loan_id))
                return loan

        loan, _ = self._with_retries(write_off, loan_id, "write_off", correlation_id)
        log_action(logger, "warning", f"Loan written off with balance {loan.outstanding_balance}",
                   loan_id=loan_id, action="write_off", correlation_id=correlation_id)
        self.dispatcher.publish(loan_event(DomainEvent.LOAN_WRITTEN_OFF, loan))
        return loan

    # Steps

    def _validate(self, request: RepaymentRequest) -> Decimal:
        amount = to_decimal(request.amount, "amount")
        if amount <= ZERO:
            raise InvalidArgumentError(f"Repayment amount must be greater than zero, got {amount}")
        if not isinstance(request.payment_date, date):
            raise InvalidArgumentError("payment_date must be a date")
        if request.payment_date > self._today():
            raise InvalidArgumentError(f"Payment date {request.payment_date} is in the future")
        fees = to_decimal(request.fees_due, "fees_due")
        if fees < ZERO:
            raise InvalidArgumentError("fees_due cannot be negative")
        return amount

    def _amounts_due(self, loan: Loan, arrears: ArrearsStatus, fees_due: Decimal) -> AmountsDue:
        # Billed amounts are rounded to the loan currency so balances stay in whole minor units.
        # What was already paid this period is netted off so nothing is charged twice.
        penalties = round_money(
            penalty_due(loan.period_opening_balance, arrears.days_overdue, self.penalty_rate_per_month),
            loan.currency
        )
        interest = round_money(loan.period_interest_due(), loan.currency)
        return AmountsDue(
            penalties=max(ZERO, penalties - loan.period_penalties_paid),
            fees=round_money(fees_due, loan.currency),
            interest=max(ZERO, interest - loan.period_interest_paid),
            principal=loan.outstanding_balance
        )

    def _next_due_date(self, loan: Loan, allocation: RepaymentAllocation) -> Optional[date]:
        """Roll the due date forward a month once the period's payments cover the instalment"""
        if not self.advance_due_date or loan.next_payment_date is None:
            return loan.next_payment_date
        paid = loan.period_instalment_paid + allocation.interest + allocation.principal
        if paid >= loan.scheduled_instalment():
            return add_months(loan.next_payment_date, 1)
        return loan.next_payment_date

    def _post_once(self, request: RepaymentRequest, amount: Decimal) -> RepaymentOutcome:
        with self.locks.hold(request.loan_id):
            loan = self.loan_repository.get_by_id(request.loan_id)
            if loan.is_terminal or not loan.is_repaying:
                raise InvalidStateError(
                    f"Loan {loan.id} is {loan.status.value} and cannot accept repayments"
                )
            if amount != round_money(amount, loan.currency):
                raise InvalidArgumentError(
                    f"Amount {amount} has more decimal places than {loan.currency.code} allows"
                )

            arrears_before = classify(loan.next_payment_date, request.payment_date, loan.status)
            due = self._amounts_due(loan, arrears_before, to_decimal(request.fees_due, "fees_due"))
            allocation = allocate(amount, due.penalties, due.fees, due.interest, due.principal,
                                  order=self.allocation_order)

            with self.transaction():
                updated, transition = self.mutator.apply_repayment(
                    loan, allocation, request.payment_date, self._next_due_date(loan, allocation)
                )
                record = self.repayment_repository.append(RepaymentRecord.from_allocation(
                    updated, allocation, request.payment_date, request.payment_method, request.reference
                ))

        arrears_after = classify(updated.next_payment_date, request.payment_date, updated.status)
        return RepaymentOutcome(
            repayment=record,
            allocation=allocation,
            loan=updated,
            transition=transition,
            arrears_before=arrears_before,
            arrears_after=arrears_after
        )

    def _restage_after_repayment(self, outcome: RepaymentOutcome, as_of: date, correlation_id: str) -> None:
        try:
            outcome.stage_result, outcome.provision_result = self.restage_loan(outcome.loan.id, as_of)
        except Exception as e:
            # The repayment is committed; staging can be recomputed later
            outcome.staging_error = str(e)
            log_action(
                logger, "error", f"Re-staging after repayment failed: {e}",
                loan_id=outcome.loan.id, action="restage_after_repayment",
                correlation_id=correlation_id, exc_info=True
            )

    def _with_retries(self, operation: Callable[[], T], loan_id: str, action: str,
                      correlation_id: str) -> Tuple[T, int]:
        conflicts = 0
        unavailable = 0
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(), attempt
            except ConflictError:
                conflicts += 1
                if conflicts > self.max_conflict_retries:
                    log_action(logger, "error", f"Giving up after {conflicts} conflicts",
                               loan_id=loan_id, action=action, correlation_id=correlation_id)
                    raise
                log_action(logger, "warning", f"Conflict on attempt {attempt}, retrying",
                           loan_id=loan_id, action=action, correlation_id=correlation_id)
            except UnavailableError as e:
                unavailable += 1
                if unavailable > self.max_unavailable_retries:
                    log_action(logger, "error", f"Giving up after {unavailable} unavailable errors: {e}",
                               loan_id=loan_id, action=action, correlation_id=correlation_id)
                    raise
                delay = self.retry_backoff_seconds * (2 ** (unavailable - 1))
                log_action(logger, "warning", f"Persistence unavailable ({e}), retrying in {delay:.3f}s",
                           loan_id=loan_id, action=action, correlation_id=correlation_id)
                self._sleep(delay)

    def _publish(self, outcome: RepaymentOutcome) -> None:
        self.dispatcher.publish(loan_event(
            DomainEvent.REPAYMENT_POSTED, outcome.loan,
            repayment_id=outcome.repayment.id,
            amount=str(outcome.allocation.amount),
            allocation=outcome.allocation.to_dict()
        ))
        if outcome.transition.closed:
            self.dispatcher.publish(loan_event(DomainEvent.LOAN_CLOSED, outcome.loan))
