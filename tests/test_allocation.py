"""
Test suite for repayment allocation

Tests the greedy priority split, excess handling, custom orders and input validation.
"""

import pytest
from decimal import Decimal

from loan_engine.allocation import (
    AllocationBucket, DEFAULT_ALLOCATION_ORDER, RepaymentAllocation,
    allocate, parse_allocation_order
)
from loan_engine.exceptions import InvalidArgumentError


class TestAllocate:
    """Test allocation across penalties, fees, interest and principal"""

    def test_default_order_settles_penalties_first(self):
        """1,000 against 200 penalties, 300 interest, 800 principal"""
        allocation = allocate(Decimal('1000'), Decimal('200'), Decimal('0'),
                              Decimal('300'), Decimal('800'))

        assert allocation.penalties == Decimal('200')
        assert allocation.fees == Decimal('0')
        assert allocation.interest == Decimal('300')
        assert allocation.principal == Decimal('500')
        assert allocation.unallocated == Decimal('0')
        assert allocation.allocated_total == Decimal('1000')

    def test_components_plus_excess_equal_amount(self):
        allocation = allocate(Decimal('1500'), Decimal('50'), Decimal('25'),
                              Decimal('100'), Decimal('1000'))

        assert allocation.allocated_total == Decimal('1175')
        assert allocation.unallocated == Decimal('325')
        assert allocation.has_excess
        assert allocation.allocated_total + allocation.unallocated == allocation.amount

    def test_no_component_exceeds_its_due(self):
        allocation = allocate(Decimal('10000'), Decimal('1'), Decimal('2'),
                              Decimal('3'), Decimal('4'))

        assert allocation.penalties == Decimal('1')
        assert allocation.fees == Decimal('2')
        assert allocation.interest == Decimal('3')
        assert allocation.principal == Decimal('4')

    def test_partial_payment_stops_once_exhausted(self):
        allocation = allocate(Decimal('150'), Decimal('200'), Decimal('50'),
                              Decimal('300'), Decimal('800'))

        assert allocation.penalties == Decimal('150')
        assert allocation.fees == Decimal('0')
        assert allocation.interest == Decimal('0')
        assert allocation.principal == Decimal('0')
        assert not allocation.has_excess

    def test_custom_order_changes_the_split(self):
        """Interest before penalties is a different policy with a different result"""
        order = [AllocationBucket.INTEREST, AllocationBucket.PRINCIPAL,
                 AllocationBucket.PENALTIES, AllocationBucket.FEES]
        allocation = allocate(Decimal('1000'), Decimal('200'), Decimal('0'),
                              Decimal('300'), Decimal('800'), order=order)

        assert allocation.interest == Decimal('300')
        assert allocation.principal == Decimal('700')
        assert allocation.penalties == Decimal('0')

    def test_buckets_left_out_of_order_receive_nothing(self):
        allocation = allocate(Decimal('1000'), Decimal('200'), Decimal('0'),
                              Decimal('300'), Decimal('800'), order=["principal"])

        assert allocation.principal == Decimal('800')
        assert allocation.penalties == Decimal('0')
        assert allocation.interest == Decimal('0')
        assert allocation.unallocated == Decimal('200')

    def test_accepts_string_amounts(self):
        allocation = allocate("100.50", "0", "0", "0.50", "1000")
        assert allocation.interest == Decimal('0.50')
        assert allocation.principal == Decimal('100.00')

    def test_component_lookup(self):
        allocation = allocate(Decimal('1000'), Decimal('200'), Decimal('0'),
                              Decimal('300'), Decimal('800'))
        assert allocation.component(AllocationBucket.PRINCIPAL) == Decimal('500')

    def test_to_dict(self):
        allocation = RepaymentAllocation(
            amount=Decimal('10'), penalties=Decimal('1'), fees=Decimal('2'),
            interest=Decimal('3'), principal=Decimal('4')
        )
        assert allocation.to_dict() == {
            'amount': '10', 'penalties': '1', 'fees': '2',
            'interest': '3', 'principal': '4', 'unallocated': '0'
        }

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5'), None, "abc"])
    def test_invalid_amount_rejected(self, amount):
        with pytest.raises(InvalidArgumentError):
            allocate(amount, Decimal('0'), Decimal('0'), Decimal('0'), Decimal('100'))

    def test_negative_due_rejected(self):
        with pytest.raises(InvalidArgumentError):
            allocate(Decimal('100'), Decimal('-1'), Decimal('0'), Decimal('0'), Decimal('100'))

    def test_missing_due_rejected(self):
        with pytest.raises(InvalidArgumentError):
            allocate(Decimal('100'), Decimal('0'), Decimal('0'), None, Decimal('100'))


class TestAllocationOrder:
    """Test allocation order parsing"""

    def test_default_order(self):
        assert parse_allocation_order(None) == list(DEFAULT_ALLOCATION_ORDER)

    def test_names_are_case_insensitive(self):
        assert parse_allocation_order(["Interest", " PRINCIPAL "]) == [
            AllocationBucket.INTEREST, AllocationBucket.PRINCIPAL
        ]

    def test_unknown_bucket_rejected(self):
        with pytest.raises(InvalidArgumentError):
            parse_allocation_order(["interest", "insurance"])

    def test_duplicate_bucket_rejected(self):
        with pytest.raises(InvalidArgumentError):
            parse_allocation_order(["interest", AllocationBucket.INTEREST])

    def test_empty_order_rejected(self):
        with pytest.raises(InvalidArgumentError):
            parse_allocation_order([])
