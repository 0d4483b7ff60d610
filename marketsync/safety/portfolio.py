import sqlite3
from datetime import date

from ..models import Holding
from ..storage.market import trailing_dividends_per_share
from .cache import SafetyCache
from .scorer import grade_for


def risk_bucket(score: int) -> str:
    if score >= 70:
        return "safe"
    if score >= 50:
        return "moderate"
    if score >= 30:
        return "risky"
    return "dangerous"


def recommendations(analysis: dict) -> list[str]:
    out = []
    if analysis["overall_score"] < 60:
        out.append("Consider reducing exposure to high-risk dividend stocks")
    if analysis["at_risk_dividend_income"] > analysis["total_dividend_income"] * 0.3:
        out.append("More than 30% of dividend income is at risk - consider diversification")
    if analysis["top_risks"]:
        out.append("Review top risk holdings: " + ", ".join(r["symbol"] for r in analysis["top_risks"][:3]))
    return out


def merge_holdings(holdings: list[Holding]) -> list[Holding]:
    """Collapse repeated symbols into one position with a quantity-weighted cost basis."""
    merged: dict[str, Holding] = {}
    for h in holdings:
        symbol = h.symbol.strip().upper()
        if not symbol:
            continue
        prev = merged.get(symbol)
        if prev is None:
            merged[symbol] = Holding(symbol=symbol, quantity=h.quantity, avg_cost_basis=h.avg_cost_basis)
            continue
        quantity = prev.quantity + h.quantity
        cost = prev.cost_value + h.cost_value
        merged[symbol] = Holding(symbol=symbol, quantity=quantity, avg_cost_basis=cost / quantity if quantity else 0.0)
    return list(merged.values())


def get_portfolio_safety(
    conn: sqlite3.Connection,
    cache: SafetyCache,
    as_of: date,
    symbols: list[str] | None = None,
    holdings: list[Holding] | None = None,
) -> dict:
    """Aggregate per-symbol safety over a portfolio.

    With holdings, the overall score is weighted by cost value, or equally when
    no holding carries a cost basis, and income uses share counts. Bare symbols
    are weighted equally with one share each. Repeated symbols are merged.
    """
    if holdings is None:
        holdings = [Holding(symbol=s, quantity=1.0, avg_cost_basis=1.0) for s in symbols or [] if s]

    analysis = {
        "overall_score": 0,
        "overall_grade": "N/A",
        "total_dividend_income": 0.0,
        "safe_dividend_income": 0.0,
        "at_risk_dividend_income": 0.0,
        "holdings_analysis": {},
        "risk_distribution": {"safe": 0, "moderate": 0, "risky": 0, "dangerous": 0},
        "top_risks": [],
        "recommendations": [],
    }
    holdings = merge_holdings(holdings)
    if not holdings:
        return analysis

    # Without any cost basis every position counts equally.
    by_cost = sum(h.cost_value for h in holdings) > 0
    total_weight = 0.0
    weighted = 0.0
    for h in holdings:
        symbol = h.symbol
        result = cache.get_safety_score(symbol)
        value = h.cost_value
        weight = value if by_cost else 1.0
        annual_dividend = trailing_dividends_per_share(conn, symbol, as_of) * h.quantity
        analysis["holdings_analysis"][symbol] = {
            "safety_score": result.score,
            "safety_grade": result.grade,
            "holding_value": round(value, 2),
            "annual_dividend": round(annual_dividend, 2),
            "warnings": list(result.warnings),
        }
        weighted += result.score * weight
        total_weight += weight

        analysis["total_dividend_income"] += annual_dividend
        bucket = risk_bucket(result.score)
        analysis["risk_distribution"][bucket] += 1
        if bucket == "safe":
            analysis["safe_dividend_income"] += annual_dividend
        elif bucket in ("risky", "dangerous"):
            analysis["at_risk_dividend_income"] += annual_dividend
        if result.score < 50:
            analysis["top_risks"].append(
                {
                    "symbol": symbol,
                    "score": result.score,
                    "annual_dividend": round(annual_dividend, 2),
                    "warnings": list(result.warnings),
                }
            )

    analysis["overall_score"] = int(round(weighted / total_weight)) if total_weight > 0 else 0
    analysis["overall_grade"] = grade_for(analysis["overall_score"])
    analysis["top_risks"].sort(key=lambda r: r["annual_dividend"], reverse=True)
    for key in ("total_dividend_income", "safe_dividend_income", "at_risk_dividend_income"):
        analysis[key] = round(analysis[key], 2)
    analysis["recommendations"] = recommendations(analysis)
    return analysis
