"""Dividend safety scoring.

`score_dividend_safety` is a pure function of its input: no I/O, no clock,
and it never raises. Missing or non-computable inputs lower the score and
add warnings instead.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date

import numpy as np

from ..models import DividendEvent, DividendPeriod, DividendType, FactorScore, FinancialData, SafetyResult

WEIGHTS = {
    "payout_ratio": 0.25,
    "fcf_coverage": 0.25,
    "debt_to_equity": 0.20,
    "dividend_growth": 0.15,
    "earnings_stability": 0.15,
}

DESCRIPTIONS = {
    "payout_ratio": "Percentage of earnings paid as dividends",
    "fcf_coverage": "Free cash flow coverage of dividends",
    "debt_to_equity": "Company leverage impact on dividend sustainability",
    "dividend_growth": "Historical dividend growth stability",
    "earnings_stability": "Consistency of earnings over time",
}

WEAK_FACTOR_THRESHOLD = 40

GRADES = [(90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D")]


def grade_for(score: int) -> str:
    for threshold, grade in GRADES:
        if score >= threshold:
            return grade
    return "F"


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def _interpolate(x: float, points: list[tuple[float, float]]) -> float:
    """Piecewise-linear mapping through sorted (x, y) points, flat outside the ends."""
    if x <= points[0][0]:
        return points[0][1]
    if x >= points[-1][0]:
        return points[-1][1]
    for (x0, y0), (x1, y1) in zip(points, points[1:]):
        if x0 <= x <= x1:
            if x1 == x0:
                return y1
            return y0 + (y1 - y0) * (x - x0) / (x1 - x0)
    return points[-1][1]


def score_payout_ratio(ratio: float) -> int:
    return int(round(_clamp(_interpolate(ratio, [(0.40, 100.0), (1.00, 0.0)]))))


def score_fcf_coverage(coverage: float) -> int:
    return int(round(_clamp(_interpolate(coverage, [(0.0, 0.0), (1.0, 40.0), (2.0, 100.0)]))))


def score_debt_to_equity(ratio: float) -> int:
    return int(round(_clamp(_interpolate(ratio, [(0.30, 100.0), (1.00, 40.0), (2.00, 0.0)]))))


def score_dividend_growth(fraction: float) -> int:
    return int(round(_clamp(fraction * 100.0)))


def score_earnings_stability(cv: float) -> int:
    return int(round(_clamp(100.0 * (1.0 - cv / 2.0))))


# Raw factor values. Each returns (value, None) or (None, reason).

def payout_ratio(data: FinancialData):
    if not data.income_statements or not data.cash_flow_statements:
        return None, "missing income or cash-flow statement"
    net_income = data.income_statements[0].net_income
    paid = data.cash_flow_statements[0].dividends_paid
    if net_income is None or paid is None:
        return None, "missing net income or dividends paid"
    if net_income <= 0:
        return None, "net income is zero or negative"
    return abs(paid) / net_income, None


def fcf_coverage(data: FinancialData):
    if not data.cash_flow_statements:
        return None, "missing cash-flow statement"
    latest = data.cash_flow_statements[0]
    if latest.free_cash_flow is None or latest.dividends_paid is None:
        return None, "missing free cash flow or dividends paid"
    if latest.dividends_paid == 0:
        return None, "no dividends paid"
    return latest.free_cash_flow / abs(latest.dividends_paid), None


def debt_to_equity(data: FinancialData):
    if not data.balance_sheets:
        return None, "missing balance sheet"
    latest = data.balance_sheets[0]
    if latest.total_debt is None or latest.shareholder_equity is None:
        return None, "missing total debt or shareholder equity"
    if latest.shareholder_equity <= 0:
        return None, "shareholder equity is zero or negative"
    return latest.total_debt / latest.shareholder_equity, None


def dividend_growth(data: FinancialData):
    amounts = [p.per_share for p in data.dividend_history if p.per_share is not None]
    if len(amounts) < 2:
        return None, "fewer than two dividend periods"
    chronological = list(reversed(amounts))
    steps = list(zip(chronological, chronological[1:]))
    non_decreasing = sum(1 for prev, cur in steps if cur >= prev)
    return non_decreasing / len(steps), None


def earnings_stability(data: FinancialData):
    incomes = [s.net_income for s in data.income_statements if s.net_income is not None]
    if len(incomes) < 2:
        return None, "fewer than two years of net income"
    mean = float(np.mean(incomes))
    if mean <= 0:
        return None, "average net income is zero or negative"
    return float(np.std(incomes, ddof=0)) / mean, None


_FACTORS = [
    ("payout_ratio", payout_ratio, score_payout_ratio),
    ("fcf_coverage", fcf_coverage, score_fcf_coverage),
    ("debt_to_equity", debt_to_equity, score_debt_to_equity),
    ("dividend_growth", dividend_growth, score_dividend_growth),
    ("earnings_stability", earnings_stability, score_earnings_stability),
]


def score_dividend_safety(data: FinancialData | None) -> SafetyResult:
    if data is None or data.is_empty():
        return SafetyResult(score=0, grade="N/A", factors={}, warnings=("insufficient data",))

    factors = {}
    warnings = []
    total = 0.0
    for name, compute, to_score in _FACTORS:
        weight = WEIGHTS[name]
        try:
            value, reason = compute(data)
        except (TypeError, ValueError, ArithmeticError) as exc:
            value, reason = None, f"could not be computed ({exc})"
        if value is None:
            score = 0
            warnings.append(f"{name}: {reason}")
        else:
            score = to_score(value)
            if score < WEAK_FACTOR_THRESHOLD:
                warnings.append(f"Poor {DESCRIPTIONS[name].lower()} - {name} score: {score}")
        factors[name] = FactorScore(
            name=name,
            value=round(value, 4) if value is not None else None,
            score=score,
            weight=weight,
            description=DESCRIPTIONS[name],
        )
        total += weight * score

    overall = int(_clamp(round(total)))
    return SafetyResult(score=overall, grade=grade_for(overall), factors=factors, warnings=tuple(warnings))


def annual_dividend_history(events: list[DividendEvent], as_of: date, years: int = 5) -> tuple[DividendPeriod, ...]:
    """Per-share cash dividends summed per calendar year, most recent first.

    The year containing `as_of` is incomplete and left out.
    """
    totals = defaultdict(float)
    for ev in events:
        if ev.dividend_type == DividendType.STOCK or ev.ex_date is None:
            continue
        if ev.ex_date.year >= as_of.year:
            continue
        totals[ev.ex_date.year] += ev.amount
    ordered = sorted(totals.items(), reverse=True)[:years]
    return tuple(DividendPeriod(period=str(year), per_share=round(amount, 6)) for year, amount in ordered)
