import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DOMINANT_SHARE = 0.5
HIGH_AVERAGE = 10_000

# (ratio ceiling in percent, status, score); first ceiling >= ratio wins
HEALTH_LADDER: Tuple[Tuple[float, str, int], ...] = (
    (10, "Outstanding", 100),
    (20, "Excellent", 90),
    (30, "Very Healthy", 80),
    (40, "Healthy", 70),
    (50, "Good", 60),
    (60, "Fair", 50),
    (70, "Moderate", 40),
    (80, "Caution", 30),
    (90, "At Risk", 20),
    (100, "Overspending", 10),
)
OVERSPEND_STATUS = ("Critical Overspend", 0)

# (minimum savings percentage, status, score) for the monthly health report
SAVINGS_LADDER: Tuple[Tuple[float, str, int], ...] = (
    (20, "Excellent", 85),
    (10, "Good", 70),
    (0, "Fair", 55),
)
NEGATIVE_SAVINGS_STATUS = ("Poor", 30)


def category_totals(transactions: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Sum of absolute amounts per category, in first-seen order."""
    totals: Dict[str, float] = {}
    for t in transactions:
        category = t.get("category") or "Other"
        totals[category] = totals.get(category, 0.0) + abs(float(t["amount"]))
    return totals


def top_category(totals: Mapping[str, float]) -> Optional[str]:
    best, best_amount = None, None
    for category, amount in totals.items():
        if best_amount is None or amount > best_amount:
            best, best_amount = category, amount
    return best


def analyze(transactions: List[Mapping[str, Any]]) -> Dict[str, Any]:
    if not transactions:
        return {
            "totalSpent": 0,
            "averageTransaction": 0,
            "transactionCount": 0,
            "topCategory": "None",
            "categoryBreakdown": {},
            "insight": "No transactions to analyze",
            "riskLevel": "low",
            "recommendation": "Start tracking your expenses to get personalized insights",
        }

    try:
        breakdown = category_totals(transactions)
    except (KeyError, TypeError, ValueError) as e:
        logger.error("spending analysis failed: %s", e)
        return {
            "error": str(e),
            "insight": "Unable to analyze spending at this time",
            "riskLevel": "unknown",
        }

    total = sum(breakdown.values())
    average = total / len(transactions)
    top = top_category(breakdown) or "Other"
    top_amount = breakdown.get(top, 0.0)

    if top_amount > total * DOMINANT_SHARE:
        insight = f"{top} represents over 50% of your spending. Consider budgeting this category."
        risk = "medium"
        recommendation = "Try to reduce spending on the top category"
    elif average > HIGH_AVERAGE:
        insight = "Your average transaction is quite high. Consider budgeting more carefully."
        risk = "medium"
        recommendation = "Set daily spending limits"
    else:
        insight = "Your spending pattern looks healthy and balanced."
        risk = "low"
        recommendation = "Keep up with your current spending habits"

    return {
        "totalSpent": total,
        "averageTransaction": round(average, 2),
        "transactionCount": len(transactions),
        "topCategory": top,
        "categoryBreakdown": breakdown,
        "insight": insight,
        "riskLevel": risk,
        "recommendation": recommendation,
    }


def spending_ratio(total_spent: float, monthly_income: float) -> float:
    """Spending as a percentage of income; 0 when no income is known."""
    if not monthly_income or monthly_income <= 0:
        return 0.0
    return total_spent * 100 / monthly_income


def health_status(total_spent: float, monthly_income: float) -> Dict[str, Any]:
    ratio = spending_ratio(total_spent, monthly_income)
    status, score = OVERSPEND_STATUS
    for ceiling, name, points in HEALTH_LADDER:
        if ratio <= ceiling:
            status, score = name, points
            break
    return {"spendingRatio": round(ratio, 2), "status": status, "score": score}


def health_report(profile: Mapping[str, Any], transactions: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """Monthly savings view: what is left after spending and fixed bills."""
    monthly_income = float(profile.get("monthly_income") or 0)
    fixed_bills = float(profile.get("fixed_bills") or 0)
    savings_goal = float(profile.get("savings_goal") or 0)

    spent = sum(abs(float(t["amount"])) for t in transactions)
    remaining = monthly_income - spent - fixed_bills
    savings_pct = remaining * 100 / monthly_income if monthly_income > 0 else 0.0
    # without income only the sign of what is left decides the tier
    rank_pct = savings_pct if monthly_income > 0 else (0.0 if remaining >= 0 else -1.0)

    status, score = NEGATIVE_SAVINGS_STATUS
    for floor, name, points in SAVINGS_LADDER:
        if rank_pct >= floor:
            status, score = name, points
            break

    advice = "Great job maintaining a healthy balance!" if savings_pct >= 20 else "Consider adjusting your spending."
    return {
        "healthScore": score,
        "status": status,
        "monthlyIncome": monthly_income,
        "fixedBills": fixed_bills,
        "discretionarySpent": spent,
        "remaining": remaining,
        "savingsPercentage": round(savings_pct),
        "onTrackForGoal": remaining >= savings_goal,
        "message": f"Your financial health is {status}. {advice}",
    }
