import logging
import math
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

import config

logger = logging.getLogger(__name__)


class LoanInputError(Exception):
    """Raised when loan parameters are rejected before a simulation starts.

    Not a ValueError, so pydantic re-raises it from model validation as-is.
    """


class InvalidFrequency(LoanInputError):
    pass


class NonPositiveTerm(LoanInputError):
    pass


class NegativeAmount(LoanInputError):
    pass


class AmountOutOfRange(LoanInputError):
    pass


class Frequency(str, Enum):
    WEEKLY = "Weekly"
    FORTNIGHTLY = "Fortnightly"
    MONTHLY = "Monthly"

    @classmethod
    def parse(cls, value) -> "Frequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidFrequency(f"Unsupported frequency: {value!r}") from None


PERIODS_PER_YEAR = {
    Frequency.WEEKLY: 52,
    Frequency.FORTNIGHTLY: 26,
    Frequency.MONTHLY: 12,
}

# Monthly is a flat 30 days, not a calendar month.
DAYS_PER_PERIOD = {
    Frequency.WEEKLY: 7,
    Frequency.FORTNIGHTLY: 14,
    Frequency.MONTHLY: 30,
}

# Largest balance or running total a simulation may reach; floats stay exact
# in whole units below 2**53.
MAX_SIMULATED_AMOUNT = 1e15


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class LoanParameters(_CamelModel):
    model_config = ConfigDict(allow_inf_nan=False)

    loan_amount: float
    interest_rate: float
    offset: float = 0.0
    repayment: float
    extra_repayment: float = 0.0
    frequency: Frequency
    extra_frequency: Frequency = Frequency.MONTHLY
    term_years: int
    start_date: date

    @field_validator("frequency", "extra_frequency", mode="before")
    @classmethod
    def _known_frequency(cls, value):
        return Frequency.parse(value)

    @field_validator("loan_amount", "offset", "repayment", "extra_repayment")
    @classmethod
    def _not_negative(cls, value, info):
        if value < 0:
            raise NegativeAmount(f"{info.field_name} must not be negative, got {value}")
        return value

    @field_validator("term_years")
    @classmethod
    def _positive_term(cls, value):
        if value <= 0:
            raise NonPositiveTerm(f"term_years must be positive, got {value}")
        return value

    @model_validator(mode="after")
    def _bounded_growth(self):
        """
        Reject loans whose balance or payments could outgrow MAX_SIMULATED_AMOUNT.
        Interest never exceeds balance * rate, so the balance is bounded by
        loan_amount * (1 + rate) ** periods however small the repayment.
        """
        rate = max(periodic_rate(self.interest_rate, self.frequency), 0.0)
        periods = self.term_years * PERIODS_PER_YEAR[self.frequency]
        limit = math.log(MAX_SIMULATED_AMOUNT)
        if self.loan_amount > 0 and math.log(self.loan_amount) + periods * math.log1p(rate) > limit:
            raise AmountOutOfRange(
                f"A {self.interest_rate}% rate over {self.term_years} years could grow the balance "
                f"past {MAX_SIMULATED_AMOUNT:.0e}"
            )
        if periods * (self.repayment + self.extra_repayment) > MAX_SIMULATED_AMOUNT:
            raise AmountOutOfRange(f"Total repayments over the term exceed {MAX_SIMULATED_AMOUNT:.0e}")
        return self


class PeriodRecord(_CamelModel):
    date: date
    balance: int
    interest: int
    total_paid: int


class ComparisonRow(_CamelModel):
    date: str
    balance: Optional[int] = None
    interest: Optional[int] = None
    total_paid: Optional[int] = None
    balance2: Optional[int] = None
    interest2: Optional[int] = None
    total_paid2: Optional[int] = None


class ScheduleSummary(_CamelModel):
    periods: int
    total_paid: int
    total_interest: int
    final_balance: int
    payoff_date: Optional[date] = None
    paid_off: bool


class ComparisonDifference(_CamelModel):
    total_paid_diff: int
    total_interest_diff: int
    periods_diff: int


class ComparisonResult(_CamelModel):
    loan1: ScheduleSummary
    loan2: ScheduleSummary
    difference: ComparisonDifference
    rows: List[ComparisonRow]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def periodic_rate(interest_rate: float, frequency) -> float:
    """Convert an annual nominal percentage into the rate applied once per period."""
    frequency = Frequency.parse(frequency)
    return interest_rate / 100 / PERIODS_PER_YEAR[frequency]


def step_date(current: date, frequency) -> date:
    return current + timedelta(days=DAYS_PER_PERIOD[Frequency.parse(frequency)])


def extra_cadence(frequency, extra_frequency) -> int:
    """
    Number of primary periods between extra repayments.
    The ratio of periods per year is rounded to the nearest whole period, so
    cadences that are not exact multiples are approximated, and a result of 0
    means the extra repayment is never applied.
    """
    ratio = PERIODS_PER_YEAR[Frequency.parse(frequency)] / PERIODS_PER_YEAR[Frequency.parse(extra_frequency)]
    return round_half_up(ratio)


def simulate_schedule(params: LoanParameters) -> List[PeriodRecord]:
    """
    Step through the loan one repayment period at a time.
    Interest is charged on the balance less the offset, never below zero, and
    the balance is clamped at zero on overpayment. Totals in each record are
    cumulative. The schedule ends early once the balance is paid off; a
    repayment below the period interest simply grows the balance until the
    term runs out.
    """
    rate = periodic_rate(params.interest_rate, params.frequency)
    total_periods = params.term_years * PERIODS_PER_YEAR[params.frequency]
    every = extra_cadence(params.frequency, params.extra_frequency)
    if every == 0 and params.extra_repayment > 0:
        logger.warning(
            "Extra repayment of %s every %s never lines up with %s repayments and will not be applied",
            params.extra_repayment, params.extra_frequency.value, params.frequency.value,
        )

    schedule = []
    balance = params.loan_amount
    current = params.start_date
    total_interest = 0.0
    total_paid = 0.0
    i = 0
    while i < total_periods and balance > 0:
        interest = max(0.0, (balance - params.offset) * rate)
        principal = params.repayment - interest
        is_extra_period = every >= 1 and i % every == 0
        if is_extra_period:
            principal += params.extra_repayment
        balance = max(0.0, balance - principal)
        total_interest += interest
        total_paid += params.repayment + (params.extra_repayment if is_extra_period else 0.0)
        schedule.append(PeriodRecord(
            date=current,
            balance=round_half_up(balance),
            interest=round_half_up(total_interest),
            total_paid=round_half_up(total_paid)
        ))
        current = step_date(current, params.frequency)
        i += 1
    logger.debug("Simulated %d of %d periods, closing balance %.2f", len(schedule), total_periods, balance)
    return schedule


def merge_schedules(first: List[PeriodRecord], second: List[PeriodRecord]) -> List[ComparisonRow]:
    """
    Align two schedules by period index.
    Once the shorter schedule runs out its fields are None rather than zero,
    so a paid-off loan is not shown as a zero balance for the remaining rows.
    """
    rows = []
    for i in range(max(len(first), len(second))):
        a = first[i] if i < len(first) else None
        b = second[i] if i < len(second) else None
        if a is not None:
            row_date = a.date.isoformat()
        elif b is not None:
            row_date = b.date.isoformat()
        else:
            row_date = ""
        rows.append(ComparisonRow(
            date=row_date,
            balance=a.balance if a else None,
            interest=a.interest if a else None,
            total_paid=a.total_paid if a else None,
            balance2=b.balance if b else None,
            interest2=b.interest if b else None,
            total_paid2=b.total_paid if b else None
        ))
    return rows


def summarize_schedule(schedule: List[PeriodRecord]) -> ScheduleSummary:
    """
    Totals are read from the last record. Payoff is judged on the recorded
    whole-unit balances, so a residual under half a unit left at the end of
    the term still counts as paid off.
    """
    last = schedule[-1] if schedule else None
    payoff_date = next((p.date for p in schedule if p.balance == 0), None)
    final_balance = last.balance if last else 0
    return ScheduleSummary(
        periods=len(schedule),
        total_paid=last.total_paid if last else 0,
        total_interest=last.interest if last else 0,
        final_balance=final_balance,
        payoff_date=payoff_date,
        paid_off=final_balance == 0
    )


def compare_loans(loan1: LoanParameters, loan2: LoanParameters) -> ComparisonResult:
    schedule1 = simulate_schedule(loan1)
    schedule2 = simulate_schedule(loan2)
    summary1 = summarize_schedule(schedule1)
    summary2 = summarize_schedule(schedule2)
    difference = ComparisonDifference(
        total_paid_diff=summary1.total_paid - summary2.total_paid,
        total_interest_diff=summary1.total_interest - summary2.total_interest,
        periods_diff=summary1.periods - summary2.periods
    )
    return ComparisonResult(
        loan1=summary1,
        loan2=summary2,
        difference=difference,
        rows=merge_schedules(schedule1, schedule2)
    )


def default_loan(today: date = None) -> LoanParameters:
    return LoanParameters(
        loan_amount=config.DEFAULT_LOAN_AMOUNT,
        interest_rate=config.DEFAULT_INTEREST_RATE,
        offset=config.DEFAULT_OFFSET,
        repayment=config.DEFAULT_REPAYMENT,
        extra_repayment=config.DEFAULT_EXTRA_REPAYMENT,
        frequency=config.DEFAULT_FREQUENCY,
        extra_frequency=config.DEFAULT_EXTRA_FREQUENCY,
        term_years=config.DEFAULT_TERM_YEARS,
        start_date=today or date.today()
    )
