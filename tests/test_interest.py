"""
Test suite for interest calculation

Tests amortization formulas, schedule generation under each convention,
APR root finding and the loan-cost helpers. All financial math must be precise.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_engine.exceptions import InvalidArgumentError
from loan_engine.interest import (
    InterestConvention, add_months, calculate_apr, compare_loan_costs, compound_interest,
    declining_balance_interest, early_repayment_amount, effective_annual_rate,
    flat_rate_interest, generate_schedule, interest_for_period, monthly_payment,
    parse_convention, recalculate_schedule_after_early_repayment, reducing_balance_interest,
    simple_interest, total_cost, total_interest
)
from loan_engine.currency import round_money


START = date(2024, 1, 1)


class TestMonthlyPayment:
    """Test the level-payment formula"""

    def test_standard_annuity(self):
        """12,000 at 12% over 12 months"""
        payment = monthly_payment(Decimal('12000'), Decimal('12'), 12)
        assert round_money(payment) == Decimal('1066.19')

    def test_zero_rate_is_exact_division(self):
        """A zero rate returns principal / months with no division by zero"""
        assert monthly_payment(Decimal('1200'), Decimal('0'), 12) == Decimal('100')

    def test_accepts_string_and_int_inputs(self):
        assert round_money(monthly_payment("12000", 12, 12)) == Decimal('1066.19')

    @pytest.mark.parametrize("principal,rate,months", [
        (Decimal('0'), Decimal('12'), 12),
        (Decimal('-100'), Decimal('12'), 12),
        (Decimal('1000'), Decimal('-1'), 12),
        (Decimal('1000'), Decimal('12'), 0),
        (Decimal('1000'), Decimal('12'), -3),
        (None, Decimal('12'), 12),
    ])
    def test_invalid_terms_rejected(self, principal, rate, months):
        """Invalid terms fail fast rather than defaulting"""
        with pytest.raises(InvalidArgumentError):
            monthly_payment(principal, rate, months)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            monthly_payment(Decimal('1000'), Decimal('12'), 0)


class TestInterestConventions:
    """Test the per-convention interest formulas"""

    def test_reducing_balance_interest(self):
        assert reducing_balance_interest(Decimal('10000'), Decimal('12')) == Decimal('100')

    def test_flat_rate_interest(self):
        assert flat_rate_interest(Decimal('10000'), Decimal('12'), 12) == Decimal('1200')

    def test_declining_balance_interest(self):
        """Opening balances 12000, 11000, ..., 1000 at 1% a month"""
        assert declining_balance_interest(Decimal('12000'), Decimal('12'), 12) == Decimal('780')

    def test_simple_interest(self):
        assert simple_interest(Decimal('10000'), Decimal('10'), 24) == Decimal('2000')

    def test_compound_interest(self):
        interest = compound_interest(Decimal('10000'), Decimal('12'), 12)
        assert round_money(interest) == Decimal('1268.25')

    def test_total_interest_dispatches_by_convention(self):
        assert total_interest(Decimal('12000'), Decimal('12'), 12, InterestConvention.FLAT) == Decimal('1440')
        assert total_interest(Decimal('12000'), Decimal('12'), 12, "declining") == Decimal('780')

    def test_reducing_costs_less_than_flat(self):
        reducing = total_interest(Decimal('12000'), Decimal('12'), 12)
        flat = total_interest(Decimal('12000'), Decimal('12'), 12, InterestConvention.FLAT)
        assert reducing < flat

    def test_parse_convention(self):
        assert parse_convention("REDUCING") == InterestConvention.REDUCING
        assert parse_convention(" flat ") == InterestConvention.FLAT
        with pytest.raises(InvalidArgumentError):
            parse_convention("balloon")


class TestScheduleGeneration:
    """Test amortization schedule generation"""

    def test_reducing_balance_first_period(self):
        """Period 1 interest is a month's interest on the full principal"""
        schedule = generate_schedule(Decimal('12000'), Decimal('12'), 12, START)

        first = schedule[0]
        assert schedule.monthly_payment == Decimal('1066.19')
        assert first.payment_number == 1
        assert first.due_date == date(2024, 2, 1)
        assert first.interest_portion == Decimal('120.00')
        assert first.principal_portion == Decimal('946.19')
        assert first.outstanding_balance == Decimal('11053.81')
        assert first.cumulative_interest == Decimal('120.00')

    @pytest.mark.parametrize("principal,rate,months", [
        (Decimal('12000'), Decimal('12'), 12),
        (Decimal('5000'), Decimal('18.5'), 7),
        (Decimal('999.99'), Decimal('36'), 24),
        (Decimal('250000'), Decimal('9.75'), 360),
        (Decimal('1000'), Decimal('0'), 3),
        (Decimal('100'), Decimal('24'), 1),
    ])
    @pytest.mark.parametrize("convention", list(InterestConvention))
    def test_principal_sums_and_balance_reaches_zero(self, principal, rate, months, convention):
        """Principal portions repay the loan exactly and the last balance is zero"""
        schedule = generate_schedule(principal, rate, months, START, convention)

        assert len(schedule) == months
        assert [entry.payment_number for entry in schedule] == list(range(1, months + 1))
        assert abs(sum(entry.principal_portion for entry in schedule) - principal) <= Decimal('0.01')
        assert schedule[-1].outstanding_balance == Decimal('0')

    def test_totals_are_consistent(self):
        schedule = generate_schedule(Decimal('5000'), Decimal('18.5'), 7, START)

        for entry in schedule:
            assert entry.total_payment == entry.principal_portion + entry.interest_portion
        assert schedule.total_interest == sum(entry.interest_portion for entry in schedule)
        assert schedule.total_payment == Decimal('5000') + schedule.total_interest
        assert schedule[-1].cumulative_interest == schedule.total_interest

    def test_balances_never_increase(self):
        schedule = generate_schedule(Decimal('250000'), Decimal('9.75'), 360, START)
        balances = [entry.outstanding_balance for entry in schedule]
        assert balances == sorted(balances, reverse=True)

    def test_declining_schedule_has_fixed_principal(self):
        schedule = generate_schedule(Decimal('12000'), Decimal('12'), 12, START, InterestConvention.DECLINING)

        assert all(entry.principal_portion == Decimal('1000.00') for entry in schedule)
        assert schedule[0].interest_portion == Decimal('120.00')
        assert schedule[-1].interest_portion == Decimal('10.00')
        assert schedule.total_interest == Decimal('780.00')

    def test_flat_schedule_spreads_interest_evenly(self):
        schedule = generate_schedule(Decimal('12000'), Decimal('12'), 12, START, InterestConvention.FLAT)

        assert schedule.monthly_payment == Decimal('1120.00')
        assert all(entry.interest_portion == Decimal('120.00') for entry in schedule)
        assert schedule.total_interest == Decimal('1440.00')

    def test_due_dates_clamp_to_month_end(self):
        schedule = generate_schedule(Decimal('3000'), Decimal('12'), 3, date(2024, 1, 31))
        assert [entry.due_date for entry in schedule] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)
        ]

    def test_to_dict_uses_decimal_strings(self):
        data = generate_schedule(Decimal('12000'), Decimal('12'), 12, START).to_dict()
        assert data['monthly_payment'] == '1066.19'
        assert data['convention'] == 'reducing'
        assert data['entries'][0]['interest_portion'] == '120.00'
        assert data['entries'][0]['due_date'] == '2024-02-01'

    def test_start_date_required(self):
        with pytest.raises(InvalidArgumentError):
            generate_schedule(Decimal('1000'), Decimal('12'), 12, "2024-01-01")

    def test_invalid_terms_rejected(self):
        with pytest.raises(InvalidArgumentError):
            generate_schedule(Decimal('1000'), Decimal('-5'), 12, START)


class TestApr:
    """Test the Newton-Raphson APR solver"""

    def test_recovers_nominal_rate(self):
        estimate = calculate_apr(Decimal('1066.19'), Decimal('12000'), 12)
        assert estimate.converged
        assert abs(estimate.apr - Decimal('12')) < Decimal('0.01')

    def test_zero_interest_loan(self):
        estimate = calculate_apr(Decimal('100'), Decimal('1200'), 12)
        assert estimate.apr == Decimal('0')
        assert estimate.converged

    def test_payments_below_principal_rejected(self):
        with pytest.raises(InvalidArgumentError):
            calculate_apr(Decimal('90'), Decimal('1200'), 12)

    def test_iteration_budget_returns_last_approximation(self):
        """Non-convergence is reported, not looped on"""
        estimate = calculate_apr(Decimal('1066.19'), Decimal('12000'), 12, max_iterations=1)
        assert not estimate.converged
        assert estimate.iterations == 1
        assert estimate.apr > Decimal('0')

    def test_high_rate_short_term(self):
        estimate = calculate_apr(Decimal('600'), Decimal('1000'), 2)
        assert estimate.converged
        assert estimate.apr > Decimal('100')


class TestLoanCostHelpers:
    """Test early repayment and cost comparison helpers"""

    def test_add_months_rolls_year(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_effective_annual_rate(self):
        assert round_money(effective_annual_rate(Decimal('12'))) == Decimal('12.68')

    def test_interest_for_period_actual_365(self):
        assert interest_for_period(Decimal('36500'), Decimal('10'), 30) == Decimal('300')

    def test_early_repayment_includes_remaining_interest_and_penalty(self):
        base = early_repayment_amount(Decimal('10000'), 6, Decimal('12'))
        with_penalty = early_repayment_amount(Decimal('10000'), 6, Decimal('12'), Decimal('2'))
        assert base > Decimal('10000')
        assert with_penalty - base == Decimal('200.00')

    def test_early_repayment_with_nothing_remaining(self):
        assert early_repayment_amount(Decimal('500'), 0, Decimal('12')) == Decimal('500.00')

    def test_recalculated_schedule_amortizes_new_balance(self):
        schedule = recalculate_schedule_after_early_repayment(Decimal('6000'), 6, Decimal('12'), START)
        assert len(schedule) == 6
        assert sum(entry.principal_portion for entry in schedule) == Decimal('6000.00')

    def test_total_cost(self):
        assert total_cost(Decimal('12000'), Decimal('12'), 12, InterestConvention.FLAT) == Decimal('13440.00')

    def test_compare_loan_costs_covers_every_convention(self):
        costs = compare_loan_costs(Decimal('12000'), Decimal('12'), 12)
        assert set(costs) == set(InterestConvention)
        assert costs[InterestConvention.FLAT].total_interest == Decimal('1440.00')
        assert costs[InterestConvention.REDUCING].monthly_payment == Decimal('1066.19')
