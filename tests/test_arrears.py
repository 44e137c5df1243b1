"""
Test suite for arrears classification

Tests days-overdue counting, bucket boundaries and late-payment penalties.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime

from loan_engine.arrears import (
    DelinquencyBucket, bucket_for, classify, days_overdue, penalty_due
)
from loan_engine.exceptions import InvalidArgumentError
from loan_engine.loans import LoanStatus


DUE = date(2024, 1, 1)


class TestDaysOverdue:
    """Test days elapsed since the due date"""

    def test_counts_whole_days(self):
        assert days_overdue(DUE, date(2024, 1, 31)) == 30

    def test_never_negative(self):
        assert days_overdue(DUE, date(2023, 12, 1)) == 0
        assert days_overdue(DUE, DUE) == 0

    def test_no_due_date_is_not_overdue(self):
        assert days_overdue(None, date(2024, 6, 1)) == 0

    def test_accepts_iso_strings_and_datetimes(self):
        assert days_overdue("2024-01-01", datetime(2024, 1, 11, 15, 30)) == 10

    def test_malformed_due_date_rejected(self):
        with pytest.raises(InvalidArgumentError):
            days_overdue("2024-13-01", DUE)

    @pytest.mark.parametrize("value", ["2024-01-01garbage", "2024-01-01T25:00"])
    def test_trailing_text_rejected(self, value):
        with pytest.raises(InvalidArgumentError):
            days_overdue(value, DUE)

    def test_iso_datetime_string_accepted(self):
        assert days_overdue("2024-01-01T08:30:00", date(2024, 1, 11)) == 10

    def test_non_date_rejected(self):
        with pytest.raises(InvalidArgumentError):
            days_overdue(12345, DUE)


class TestBuckets:
    """Test delinquency bucket boundaries"""

    @pytest.mark.parametrize("days,bucket", [
        (0, DelinquencyBucket.CURRENT),
        (1, DelinquencyBucket.D1_30),
        (30, DelinquencyBucket.D1_30),
        (31, DelinquencyBucket.D31_60),
        (60, DelinquencyBucket.D31_60),
        (61, DelinquencyBucket.D61_90),
        (90, DelinquencyBucket.D61_90),
        (91, DelinquencyBucket.D91_180),
        (180, DelinquencyBucket.D91_180),
        (181, DelinquencyBucket.D180_PLUS),
        (5000, DelinquencyBucket.D180_PLUS),
    ])
    def test_boundaries(self, days, bucket):
        assert bucket_for(days) == bucket

    @pytest.mark.parametrize("days", [-1, 1.5, "30", True])
    def test_invalid_days_rejected(self, days):
        with pytest.raises(InvalidArgumentError):
            bucket_for(days)


class TestClassify:
    """Test full arrears classification"""

    def test_overdue_loan(self):
        status = classify(DUE, date(2024, 2, 15), LoanStatus.ACTIVE)

        assert status.days_overdue == 45
        assert status.bucket == DelinquencyBucket.D31_60
        assert status.is_overdue
        assert status.due_date == DUE

    def test_closed_loan_is_current(self):
        status = classify(DUE, date(2024, 12, 31), LoanStatus.CLOSED)
        assert status.days_overdue == 0
        assert status.bucket == DelinquencyBucket.CURRENT

    def test_pending_loan_is_current(self):
        assert classify(DUE, date(2024, 12, 31), LoanStatus.PENDING).bucket == DelinquencyBucket.CURRENT

    def test_without_status(self):
        # 2024 is a leap year: 2024-03-31 is day 90, 2024-04-01 day 91
        assert classify(DUE, date(2024, 3, 31)).bucket == DelinquencyBucket.D61_90
        assert classify(DUE, date(2024, 4, 1)).bucket == DelinquencyBucket.D91_180

    def test_to_dict(self):
        assert classify(DUE, date(2024, 1, 11)).to_dict() == {
            'days_overdue': 10,
            'bucket': 'D1_30',
            'due_date': '2024-01-01',
            'as_of': '2024-01-11'
        }


class TestPenalty:
    """Test late-payment penalties per started 30-day period"""

    def test_no_penalty_when_current(self):
        assert penalty_due(Decimal('10000'), 0) == Decimal('0')

    def test_first_period(self):
        assert penalty_due(Decimal('10000'), 1) == Decimal('200')
        assert penalty_due(Decimal('10000'), 30) == Decimal('200')

    def test_started_second_period(self):
        assert penalty_due(Decimal('10000'), 31) == Decimal('400')

    def test_custom_rate(self):
        assert penalty_due(Decimal('10000'), 45, Decimal('0.01')) == Decimal('200')

    def test_negative_balance_rejected(self):
        with pytest.raises(InvalidArgumentError):
            penalty_due(Decimal('-1'), 10)
