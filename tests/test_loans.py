"""
Test suite for the loan ledger

Tests loan validation, serialization, opening loans and the ledger mutator's
balance and status transitions.
"""

import pytest
from decimal import Decimal
from datetime import date
from dataclasses import replace

from loan_engine.allocation import allocate
from loan_engine.currency import Currency
from loan_engine.exceptions import ConflictError, InvalidArgumentError, InvalidStateError
from loan_engine.interest import InterestConvention
from loan_engine.loans import (
    Loan, LoanLedgerMutator, LoanStatus, RepaymentRecord, open_loan
)
from loan_engine.repositories import StorageLoanRepository
from loan_engine.storage import InMemoryStorage, utc_now


DISBURSED = date(2024, 1, 1)


def make_loan(**overrides):
    arguments = dict(
        loan_number="LN-0001",
        customer_id="CUST-1",
        principal=Decimal('12000'),
        annual_interest_rate=Decimal('12'),
        term_months=12,
        disbursement_date=DISBURSED
    )
    arguments.update(overrides)
    return open_loan(**arguments)


class TestLoan:
    """Test loan construction and derived values"""

    def test_open_loan(self):
        loan = make_loan()

        assert loan.status == LoanStatus.ACTIVE
        assert loan.outstanding_balance == Decimal('12000')
        assert loan.next_payment_date == date(2024, 2, 1)
        assert loan.interest_convention == InterestConvention.REDUCING
        assert loan.currency == Currency.ZMW
        assert loan.version == 0
        assert loan.is_repaying
        assert not loan.is_terminal

    def test_open_loan_accepts_strings(self):
        loan = make_loan(principal="5000", annual_interest_rate="18.5",
                         interest_convention="flat", disbursement_date="2024-03-15")
        assert loan.principal == Decimal('5000')
        assert loan.interest_convention == InterestConvention.FLAT
        assert loan.next_payment_date == date(2024, 4, 15)

    @pytest.mark.parametrize("overrides", [
        {"principal": Decimal('0')},
        {"principal": Decimal('-1')},
        {"annual_interest_rate": Decimal('-0.5')},
        {"term_months": 0},
        {"term_months": 1.5},
        {"interest_convention": "balloon"},
        {"disbursement_date": None},
    ])
    def test_invalid_terms_rejected(self, overrides):
        with pytest.raises(InvalidArgumentError):
            make_loan(**overrides)

    def test_balance_cannot_exceed_principal(self):
        with pytest.raises(InvalidStateError):
            replace(make_loan(), outstanding_balance=Decimal('12000.01'))

    def test_closed_loan_must_have_zero_balance(self):
        with pytest.raises(InvalidStateError):
            replace(make_loan(), status=LoanStatus.CLOSED)

    def test_zero_balance_must_be_closed(self):
        with pytest.raises(InvalidStateError):
            replace(make_loan(), outstanding_balance=Decimal('0'))

    @pytest.mark.parametrize("status", [LoanStatus.PENDING, LoanStatus.APPROVED])
    def test_undisbursed_loan_may_have_zero_balance(self, status):
        loan = replace(make_loan(), status=status, outstanding_balance=Decimal('0'))
        assert loan.outstanding_balance == Decimal('0')
        assert not loan.is_repaying

    def test_written_off_loan_needs_a_balance(self):
        with pytest.raises(InvalidStateError):
            replace(make_loan(), status=LoanStatus.WRITTEN_OFF, outstanding_balance=Decimal('0'))

    def test_disbursement_date_must_be_a_full_iso_date(self):
        with pytest.raises(InvalidArgumentError):
            make_loan(disbursement_date="2024-01-01garbage")
        assert make_loan(disbursement_date="2024-01-01T09:00:00").next_payment_date == date(2024, 2, 1)

    def test_period_interest_reducing(self):
        loan = replace(make_loan(), outstanding_balance=Decimal('6000'))
        assert loan.period_interest_due() == Decimal('60')

    def test_period_interest_uses_opening_balance(self):
        loan = replace(make_loan(), outstanding_balance=Decimal('11620'),
                       period_interest_paid=Decimal('120'), period_principal_paid=Decimal('380'))
        assert loan.period_opening_balance == Decimal('12000')
        assert loan.period_interest_due() == Decimal('120')
        assert loan.period_instalment_paid == Decimal('500')

    def test_period_interest_flat_ignores_balance(self):
        loan = replace(make_loan(interest_convention="flat"), outstanding_balance=Decimal('6000'))
        assert loan.period_interest_due() == Decimal('120')

    def test_scheduled_instalment(self):
        assert make_loan().scheduled_instalment() == Decimal('1066.19')
        assert make_loan(interest_convention="flat").scheduled_instalment() == Decimal('1120.00')

    def test_zero_precision_currency_instalment(self):
        loan = make_loan(currency=Currency.UGX)
        assert loan.scheduled_instalment() == Decimal('1066')

    def test_dict_round_trip(self):
        loan = make_loan(organisation_id="org-1", currency=Currency.USD)
        data = loan.to_dict()

        assert data['principal'] == '12000'
        assert data['status'] == 'ACTIVE'
        assert data['currency'] == 'USD'
        assert data['next_payment_date'] == '2024-02-01'
        assert Loan.from_dict(data) == loan


class TestRepaymentRecord:
    """Test repayment record construction"""

    def test_from_allocation(self):
        loan = replace(make_loan(), outstanding_balance=Decimal('11053.81'))
        allocation = allocate(Decimal('1066.19'), Decimal('0'), Decimal('0'),
                              Decimal('120.00'), Decimal('12000'))
        record = RepaymentRecord.from_allocation(loan, allocation, date(2024, 2, 1), "mobile_money", "TX-1")

        assert record.loan_id == loan.id
        assert record.interest == Decimal('120.00')
        assert record.principal == Decimal('946.19')
        assert record.balance_after == Decimal('11053.81')
        assert record.reference == "TX-1"
        assert RepaymentRecord.from_dict(record.to_dict()) == record


class TestLoanLedgerMutator:
    """Test balance and status transitions"""

    def setup_method(self):
        """Set up test fixtures"""
        self.repository = StorageLoanRepository(InMemoryStorage())
        self.mutator = LoanLedgerMutator(self.repository)
        self.loan = self.repository.add(make_loan())

    def _allocation(self, amount, interest='120.00'):
        return allocate(Decimal(amount), Decimal('0'), Decimal('0'),
                        Decimal(interest), self.loan.outstanding_balance)

    def test_partial_repayment(self):
        loan, transition = self.mutator.apply_repayment(
            self.loan, self._allocation('1066.19'), date(2024, 2, 1), date(2024, 3, 1)
        )

        assert loan.outstanding_balance == Decimal('11053.81')
        assert loan.status == LoanStatus.ACTIVE
        assert loan.next_payment_date == date(2024, 3, 1)
        assert loan.last_payment_date == date(2024, 2, 1)
        assert loan.total_paid == Decimal('1066.19')
        assert loan.version == 1
        assert transition.previous_balance == Decimal('12000')
        assert transition.new_balance == Decimal('11053.81')
        assert not transition.status_changed
        assert self.repository.get_by_id(loan.id) == loan

    def test_due_date_kept_when_not_given(self):
        loan, _ = self.mutator.apply_repayment(self.loan, self._allocation('500'), date(2024, 2, 1))
        assert loan.next_payment_date == date(2024, 2, 1)

    def test_period_payments_accumulate_until_due_date_moves(self):
        loan, _ = self.mutator.apply_repayment(self.loan, self._allocation('500'), date(2024, 2, 1))
        assert loan.period_interest_paid == Decimal('120.00')
        assert loan.period_principal_paid == Decimal('380.00')

        allocation = allocate(Decimal('566.19'), Decimal('0'), Decimal('0'), Decimal('0'),
                              loan.outstanding_balance)
        loan, _ = self.mutator.apply_repayment(loan, allocation, date(2024, 2, 1), date(2024, 3, 1))

        assert loan.next_payment_date == date(2024, 3, 1)
        assert loan.period_penalties_paid == Decimal('0')
        assert loan.period_interest_paid == Decimal('0')
        assert loan.period_principal_paid == Decimal('0')
        assert Loan.from_dict(loan.to_dict()) == loan

    def test_exact_payoff_closes_loan(self):
        """Principal share equal to the balance closes the loan"""
        loan, transition = self.mutator.apply_repayment(
            self.loan, self._allocation('12120.00'), date(2024, 2, 1), date(2024, 3, 1)
        )

        assert loan.status == LoanStatus.CLOSED
        assert loan.outstanding_balance == Decimal('0')
        assert loan.next_payment_date is None
        assert transition.closed
        assert transition.status_changed

    def test_closed_loan_rejects_repayment(self):
        closed, _ = self.mutator.apply_repayment(self.loan, self._allocation('12120.00'), date(2024, 2, 1))

        with pytest.raises(InvalidStateError):
            self.mutator.apply_repayment(closed, self._allocation('100'), date(2024, 2, 2))

    def test_pending_loan_rejects_repayment(self):
        pending = replace(self.loan, status=LoanStatus.PENDING)
        with pytest.raises(InvalidStateError):
            self.mutator.apply_repayment(pending, self._allocation('100'), date(2024, 2, 1))

    def test_stale_loan_conflicts(self):
        self.mutator.apply_repayment(self.loan, self._allocation('500'), date(2024, 2, 1))

        with pytest.raises(ConflictError):
            self.mutator.apply_repayment(self.loan, self._allocation('500'), date(2024, 2, 1))
        assert self.repository.get_by_id(self.loan.id).outstanding_balance == Decimal('11620.00')

    def test_arrears_round_trip(self):
        in_arrears, transition = self.mutator.mark_arrears(self.loan)
        assert in_arrears.status == LoanStatus.ARREARS
        assert transition.status_changed

        restored, _ = self.mutator.restore_active(in_arrears)
        assert restored.status == LoanStatus.ACTIVE
        assert restored.version == 2

    def test_invalid_status_transitions(self):
        with pytest.raises(InvalidStateError):
            self.mutator.restore_active(self.loan)

        in_arrears, _ = self.mutator.mark_arrears(self.loan)
        with pytest.raises(InvalidStateError):
            self.mutator.mark_arrears(in_arrears)

    def test_write_off_is_terminal(self):
        written_off, _ = self.mutator.write_off(self.loan)

        assert written_off.status == LoanStatus.WRITTEN_OFF
        assert written_off.outstanding_balance == Decimal('12000')
        assert written_off.is_terminal
        with pytest.raises(InvalidStateError):
            self.mutator.write_off(written_off)
        with pytest.raises(InvalidStateError):
            self.mutator.apply_repayment(written_off, self._allocation('100'), date(2024, 2, 1))

    def test_mutations_preserve_identity(self):
        now = utc_now()
        loan, _ = self.mutator.apply_repayment(self.loan, self._allocation('500'), date(2024, 2, 1))
        assert loan.id == self.loan.id
        assert loan.created_at == self.loan.created_at
        assert loan.updated_at <= utc_now()
        assert loan.updated_at >= now
