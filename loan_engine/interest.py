"""
Interest Calculation Module

Interest and payment amounts under the simple, compound, flat, declining and
reducing-balance conventions, amortization schedule generation, and APR/EAR
disclosure figures. Every function is pure over its explicit inputs.

Rates are annual percentages (12 means 12% p.a.); the monthly rate is
annual_rate / 12 / 100. Intermediate values are never rounded; schedule rows
and final cost figures are rounded ROUND_HALF_UP to the cent on emission.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum
import calendar
import logging

from .currency import ZERO, round_money, to_decimal
from .exceptions import InvalidArgumentError


logger = logging.getLogger("loan_engine.interest")

MONTHS_PER_YEAR = Decimal('12')
DAYS_PER_YEAR = Decimal('365')
HUNDRED = Decimal('100')
ONE = Decimal('1')

DEFAULT_APR_MAX_ITERATIONS = 100
DEFAULT_APR_TOLERANCE = Decimal('0.0001')
DEFAULT_APR_GUESS = Decimal('10')  # percent


class InterestConvention(Enum):
    """Interest conventions supported for loan schedules"""
    SIMPLE = "simple"          # I = P x r x t, spread evenly
    COMPOUND = "compound"      # Monthly compounding, spread evenly
    FLAT = "flat"              # P x r x n / 12, spread evenly
    DECLINING = "declining"    # Fixed principal, interest on opening balance
    REDUCING = "reducing"      # Level annuity payment, interest on opening balance


ADD_ON_CONVENTIONS = (InterestConvention.SIMPLE, InterestConvention.COMPOUND, InterestConvention.FLAT)


@dataclass(frozen=True)
class AmortizationScheduleEntry:
    """Single row of an amortization schedule"""
    payment_number: int
    due_date: date
    principal_portion: Decimal
    interest_portion: Decimal
    total_payment: Decimal
    outstanding_balance: Decimal
    cumulative_interest: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payment_number': self.payment_number,
            'due_date': self.due_date.isoformat(),
            'principal_portion': str(self.principal_portion),
            'interest_portion': str(self.interest_portion),
            'total_payment': str(self.total_payment),
            'outstanding_balance': str(self.outstanding_balance),
            'cumulative_interest': str(self.cumulative_interest)
        }


@dataclass(frozen=True)
class AmortizationSchedule:
    """Generated schedule with its headline figures"""
    principal: Decimal
    annual_rate: Decimal
    term_months: int
    convention: InterestConvention
    monthly_payment: Decimal
    total_interest: Decimal
    total_payment: Decimal
    entries: Tuple[AmortizationScheduleEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __getitem__(self, index):
        return self.entries[index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'principal': str(self.principal),
            'annual_rate': str(self.annual_rate),
            'term_months': self.term_months,
            'convention': self.convention.value,
            'monthly_payment': str(self.monthly_payment),
            'total_interest': str(self.total_interest),
            'total_payment': str(self.total_payment),
            'entries': [entry.to_dict() for entry in self.entries]
        }


@dataclass(frozen=True)
class AprEstimate:
    """Result of the APR root finder"""
    apr: Decimal          # Annual percentage rate
    iterations: int
    converged: bool


@dataclass(frozen=True)
class LoanCostSummary:
    """Cost of a loan under one convention"""
    total_interest: Decimal
    total_cost: Decimal
    monthly_payment: Decimal


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_convention(value: Union[InterestConvention, str]) -> InterestConvention:
    """Accept a convention enum, its value or its name"""
    if isinstance(value, InterestConvention):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        for convention in InterestConvention:
            if key in (convention.value, convention.name.lower()):
                return convention
    raise InvalidArgumentError(f"Unknown interest convention: {value!r}")


def _validate_months(months: Any, field_name: str = "months", allow_zero: bool = False) -> int:
    if isinstance(months, bool) or not isinstance(months, int):
        raise InvalidArgumentError(f"{field_name} must be an integer")
    if months < 0 or (months == 0 and not allow_zero):
        raise InvalidArgumentError(f"{field_name} must be positive, got {months}")
    return months


def _validate_rate(annual_rate: Any) -> Decimal:
    rate = to_decimal(annual_rate, "annual_rate")
    if rate < ZERO:
        raise InvalidArgumentError(f"annual_rate cannot be negative, got {rate}")
    return rate


def _validate_terms(principal: Any, annual_rate: Any, months: Any) -> Tuple[Decimal, Decimal, int]:
    """Validate the (principal, rate, term) triple shared by every calculator"""
    amount = to_decimal(principal, "principal")
    if amount <= ZERO:
        raise InvalidArgumentError(f"principal must be positive, got {amount}")
    return amount, _validate_rate(annual_rate), _validate_months(months)


def _monthly_rate(annual_rate: Decimal) -> Decimal:
    return annual_rate / MONTHS_PER_YEAR / HUNDRED


def _annuity_payment(principal: Decimal, monthly_rate: Decimal, months: int) -> Decimal:
    if monthly_rate == ZERO:
        return principal / Decimal(months)
    factor = (ONE + monthly_rate) ** months
    return principal * monthly_rate * factor / (factor - ONE)


def _reducing_total_interest(principal: Decimal, monthly_rate: Decimal, months: int) -> Decimal:
    """Unrounded interest over a level-payment schedule"""
    payment = _annuity_payment(principal, monthly_rate, months)
    balance = principal
    total = ZERO
    for period in range(1, months + 1):
        interest = balance * monthly_rate
        principal_part = payment - interest
        if principal_part > balance or period == months:
            principal_part = balance
        balance -= principal_part
        total += interest
    return total


def monthly_payment(principal: Any, annual_rate: Any, months: int) -> Decimal:
    """
    Level monthly payment M = P * r(1+r)^n / ((1+r)^n - 1)

    Returns P / n exactly when the rate is zero. The result is unrounded.

    Raises:
        InvalidArgumentError: principal <= 0, rate < 0 or months <= 0
    """
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    return _annuity_payment(amount, _monthly_rate(rate), n)


def simple_interest(principal: Any, annual_rate: Any, months: int) -> Decimal:
    """Simple interest I = P x r x t over the whole term"""
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    return amount * (rate / HUNDRED) * (Decimal(n) / MONTHS_PER_YEAR)


def compound_interest(principal: Any, annual_rate: Any, months: int,
                      periods_per_year: int = 12) -> Decimal:
    """Interest from A = P(1 + r/m)^(m*t) - P"""
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    m = _validate_months(periods_per_year, "periods_per_year")
    exponent = Decimal(m) * Decimal(n) / MONTHS_PER_YEAR
    if exponent == exponent.to_integral_value():
        exponent = int(exponent)
    return amount * (ONE + rate / HUNDRED / Decimal(m)) ** exponent - amount


def reducing_balance_interest(outstanding_balance: Any, annual_rate: Any) -> Decimal:
    """One period's interest on the outstanding balance: balance x rate / 12 / 100"""
    balance = to_decimal(outstanding_balance, "outstanding_balance")
    if balance < ZERO:
        raise InvalidArgumentError(f"outstanding_balance cannot be negative, got {balance}")
    return balance * _monthly_rate(_validate_rate(annual_rate))


def flat_rate_interest(principal: Any, annual_rate: Any, months: int) -> Decimal:
    """Total flat interest P x rate x n / 12 / 100, spread evenly in schedules"""
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    return amount * rate * Decimal(n) / MONTHS_PER_YEAR / HUNDRED


def declining_balance_interest(principal: Any, annual_rate: Any, months: int) -> Decimal:
    """
    Total interest when the balance falls by a fixed P/n each period and each
    period's interest is charged on the balance before that reduction.
    """
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    # Opening balances P, P(n-1)/n, ..., P/n sum to P(n+1)/2
    return _monthly_rate(rate) * amount * Decimal(n + 1) / Decimal(2)


def total_interest(principal: Any, annual_rate: Any, months: int,
                   convention: Union[InterestConvention, str] = InterestConvention.REDUCING) -> Decimal:
    """Unrounded total interest over the term under a convention"""
    convention = parse_convention(convention)
    if convention == InterestConvention.SIMPLE:
        return simple_interest(principal, annual_rate, months)
    if convention == InterestConvention.COMPOUND:
        return compound_interest(principal, annual_rate, months)
    if convention == InterestConvention.FLAT:
        return flat_rate_interest(principal, annual_rate, months)
    if convention == InterestConvention.DECLINING:
        return declining_balance_interest(principal, annual_rate, months)
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    return _reducing_total_interest(amount, _monthly_rate(rate), n)


def generate_schedule(
    principal: Any,
    annual_rate: Any,
    months: int,
    start_date: date,
    convention: Union[InterestConvention, str] = InterestConvention.REDUCING
) -> AmortizationSchedule:
    """
    Generate the amortization schedule for a loan

    Period k falls due k months after start_date. Each period's principal is
    the payment less that period's interest, capped to the remaining balance
    (and forced to it on the final period) so the balance ends at exactly zero.
    Any shortfall shows up in the total-payment figure, never in the balance.

    Rows are emitted from the unrounded running balance and cumulative
    interest, rounded half-up to the cent, so the emitted principal portions
    sum to the principal and per-row drift never accumulates.

    Args:
        principal: Amount lent (> 0)
        annual_rate: Annual rate in percent (>= 0)
        months: Number of monthly periods (> 0)
        start_date: Disbursement date; period 1 falls due one month later
        convention: Interest convention (default reducing balance)

    Returns:
        AmortizationSchedule

    Raises:
        InvalidArgumentError: On invalid terms, date or convention
    """
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    if not isinstance(start_date, date):
        raise InvalidArgumentError("start_date must be a date")
    convention = parse_convention(convention)
    r = _monthly_rate(rate)

    level_payment: Optional[Decimal] = None
    fixed_interest = ZERO
    fixed_principal = amount / Decimal(n)
    if convention == InterestConvention.REDUCING:
        level_payment = _annuity_payment(amount, r, n)
    elif convention in ADD_ON_CONVENTIONS:
        term_interest = total_interest(amount, rate, n, convention)
        fixed_interest = term_interest / Decimal(n)
        level_payment = (amount + term_interest) / Decimal(n)

    balance = amount
    cumulative = ZERO
    emitted_balance = round_money(amount)
    emitted_cumulative = ZERO
    entries: List[AmortizationScheduleEntry] = []

    for period in range(1, n + 1):
        if convention == InterestConvention.REDUCING:
            interest = balance * r
            principal_part = level_payment - interest
        elif convention == InterestConvention.DECLINING:
            interest = balance * r
            principal_part = fixed_principal
        else:
            interest = fixed_interest
            principal_part = level_payment - interest

        if principal_part > balance or period == n:
            principal_part = balance

        balance -= principal_part
        cumulative += interest

        row_balance = round_money(balance)
        row_cumulative = round_money(cumulative)
        principal_out = emitted_balance - row_balance
        interest_out = row_cumulative - emitted_cumulative

        entries.append(AmortizationScheduleEntry(
            payment_number=period,
            due_date=add_months(start_date, period),
            principal_portion=principal_out,
            interest_portion=interest_out,
            total_payment=principal_out + interest_out,
            outstanding_balance=row_balance,
            cumulative_interest=row_cumulative
        ))
        emitted_balance = row_balance
        emitted_cumulative = row_cumulative

    headline_payment = round_money(level_payment) if level_payment is not None else entries[0].total_payment

    return AmortizationSchedule(
        principal=amount,
        annual_rate=rate,
        term_months=n,
        convention=convention,
        monthly_payment=headline_payment,
        total_interest=emitted_cumulative,
        total_payment=sum((entry.total_payment for entry in entries), ZERO),
        entries=tuple(entries)
    )


def calculate_apr(
    monthly_payment: Any,
    principal: Any,
    months: int,
    max_iterations: int = DEFAULT_APR_MAX_ITERATIONS,
    tolerance: Any = DEFAULT_APR_TOLERANCE,
    initial_guess: Any = DEFAULT_APR_GUESS
) -> AprEstimate:
    """
    Annual percentage rate that discounts the payment stream back to the principal

    Newton-Raphson on f(i) = M(1 - (1+i)^-n)/i - P over the monthly rate i.
    Stops when successive estimates differ by no more than `tolerance`
    relative to the newer one. The loop is bounded by `max_iterations`; when
    the budget runs out the last approximation is returned with
    converged=False.

    Raises:
        InvalidArgumentError: On non-positive inputs, or payments that do not
            cover the principal
    """
    payment = to_decimal(monthly_payment, "monthly_payment")
    amount = to_decimal(principal, "principal")
    n = _validate_months(months)
    budget = _validate_months(max_iterations, "max_iterations")
    tol = to_decimal(tolerance, "tolerance")
    if payment <= ZERO or amount <= ZERO:
        raise InvalidArgumentError("monthly_payment and principal must be positive")
    if tol <= ZERO:
        raise InvalidArgumentError("tolerance must be positive")

    paid = payment * Decimal(n)
    if paid < amount:
        raise InvalidArgumentError("payments do not repay the principal")
    if paid == amount:
        return AprEstimate(apr=ZERO, iterations=0, converged=True)

    rate = to_decimal(initial_guess, "initial_guess") / MONTHS_PER_YEAR / HUNDRED
    if rate <= ZERO:
        raise InvalidArgumentError("initial_guess must be positive")

    for iteration in range(1, budget + 1):
        growth = ONE + rate
        discount = growth ** -n
        gap = payment * (ONE - discount) / rate - amount
        slope = payment * (Decimal(n) * rate * discount / growth - (ONE - discount)) / (rate * rate)
        if slope == ZERO:
            break

        next_rate = rate - gap / slope
        if next_rate <= ZERO:
            # Overshot below zero; halve toward zero instead
            next_rate = rate / 2

        if abs(next_rate - rate) <= tol * abs(next_rate):
            return AprEstimate(apr=next_rate * MONTHS_PER_YEAR * HUNDRED,
                               iterations=iteration, converged=True)
        rate = next_rate

    logger.warning(
        f"APR did not converge within {budget} iterations; "
        f"returning last approximation {rate * MONTHS_PER_YEAR * HUNDRED}"
    )
    return AprEstimate(apr=rate * MONTHS_PER_YEAR * HUNDRED, iterations=iteration, converged=False)


def effective_annual_rate(nominal_rate: Any, periods_per_year: int = 12) -> Decimal:
    """EAR = (1 + r/m)^m - 1, as a percentage"""
    rate = _validate_rate(nominal_rate)
    m = _validate_months(periods_per_year, "periods_per_year")
    return ((ONE + rate / HUNDRED / Decimal(m)) ** m - ONE) * HUNDRED


def interest_for_period(outstanding_balance: Any, annual_rate: Any, days: int) -> Decimal:
    """Actual/365 interest for a partial period of `days` days"""
    balance = to_decimal(outstanding_balance, "outstanding_balance")
    if balance < ZERO:
        raise InvalidArgumentError(f"outstanding_balance cannot be negative, got {balance}")
    elapsed = _validate_months(days, "days", allow_zero=True)
    return balance * _validate_rate(annual_rate) / DAYS_PER_YEAR / HUNDRED * Decimal(elapsed)


def early_repayment_amount(
    outstanding_balance: Any,
    remaining_months: int,
    annual_rate: Any,
    penalty_percent: Any = ZERO
) -> Decimal:
    """
    Payoff figure for settling a loan before maturity: the outstanding
    balance plus the interest still scheduled on it, plus an optional early
    repayment penalty charged as a percentage of the balance.
    """
    balance = to_decimal(outstanding_balance, "outstanding_balance")
    remaining = _validate_months(remaining_months, "remaining_months", allow_zero=True)
    rate = _validate_rate(annual_rate)
    penalty_rate = to_decimal(penalty_percent, "penalty_percent")
    if balance < ZERO:
        raise InvalidArgumentError(f"outstanding_balance cannot be negative, got {balance}")
    if penalty_rate < ZERO:
        raise InvalidArgumentError("penalty_percent cannot be negative")
    if balance == ZERO or remaining == 0:
        return round_money(balance)

    remaining_interest = _reducing_total_interest(balance, _monthly_rate(rate), remaining)
    penalty = balance * penalty_rate / HUNDRED
    return round_money(balance + remaining_interest + penalty)


def recalculate_schedule_after_early_repayment(
    new_balance: Any,
    remaining_months: int,
    annual_rate: Any,
    start_date: date
) -> AmortizationSchedule:
    """Re-amortize the reduced balance over the remaining term"""
    return generate_schedule(new_balance, annual_rate, remaining_months, start_date,
                             InterestConvention.REDUCING)


def total_cost(principal: Any, annual_rate: Any, months: int,
               convention: Union[InterestConvention, str] = InterestConvention.REDUCING) -> Decimal:
    """Principal plus total interest, rounded to the cent"""
    amount = to_decimal(principal, "principal")
    return round_money(amount + total_interest(amount, annual_rate, months, convention))


def compare_loan_costs(principal: Any, annual_rate: Any, months: int) -> Dict[InterestConvention, LoanCostSummary]:
    """Side-by-side cost of the same terms under every convention"""
    amount, rate, n = _validate_terms(principal, annual_rate, months)
    comparison = {}
    for convention in InterestConvention:
        interest = total_interest(amount, rate, n, convention)
        if convention == InterestConvention.REDUCING:
            payment = _annuity_payment(amount, _monthly_rate(rate), n)
        else:
            payment = (amount + interest) / Decimal(n)
        comparison[convention] = LoanCostSummary(
            total_interest=round_money(interest),
            total_cost=round_money(amount + interest),
            monthly_payment=round_money(payment)
        )
    return comparison
