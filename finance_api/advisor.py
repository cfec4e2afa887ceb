import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .ai import InferenceClient, InferenceError
from .analysis import category_totals as sum_by_category, health_status, spending_ratio, top_category

logger = logging.getLogger(__name__)

# (category, share of monthly income that counts as overspending, tip)
CATEGORY_LIMITS: Tuple[Tuple[str, float, str], ...] = (
    ("Food", 0.20, "Food is taking more than 20% of your income. Cooking at home a few more days a week adds up fast."),
    ("Entertainment", 0.15, "Entertainment is above 15% of your income. Pick one or two subscriptions or outings to pause this month."),
    ("Transport", 0.15, "Transport costs are above 15% of your income. Carpooling or public transit on some days could cut this."),
    ("Shopping", 0.10, "Shopping is above 10% of your income. Try a 48-hour wait before non-essential purchases."),
)

OVER_BUDGET_TIPS = (
    "You have spent more than your monthly income. Pause all non-essential spending until next month.",
    "Review your largest expenses this month and cancel anything you can do without.",
)
CAUTION_TIPS = (
    "You have used over 80% of your income. Slow down on discretionary spending for the rest of the month.",
    "Set a daily spending limit for the remaining days to stay within your income.",
)
CONGRATS_TIPS = (
    "Great job! You are spending less than 40% of your income.",
    "Consider moving part of what you are not spending into savings or an emergency fund.",
)
LOG_MORE_TIP = "Log more transactions to get more accurate insights about your spending."
GREAT_TRACKING_TIP = "Great tracking! Consistent logging makes your insights more reliable."
DEFAULT_TIPS = (
    "Track every expense, even the small ones. They add up quickly.",
    "Set a monthly budget for each spending category.",
    "Aim to save at least 20% of your income each month.",
)

FEW_TRANSACTIONS = 5
MANY_TRANSACTIONS = 20


def tips(transactions: Sequence[Any], category_totals: Mapping[str, float],
         total_spent: float, monthly_income: float) -> List[str]:
    """Accumulate every tip whose rule fires, in rule order."""
    out: List[str] = []
    has_income = bool(monthly_income) and monthly_income > 0

    if has_income:
        ratio = spending_ratio(total_spent, monthly_income)
        if ratio > 100:
            out.extend(OVER_BUDGET_TIPS)
        elif ratio > 80:
            out.extend(CAUTION_TIPS)
        elif ratio < 40:
            out.extend(CONGRATS_TIPS)

        for category, limit, tip in CATEGORY_LIMITS:
            if category_totals.get(category, 0.0) > monthly_income * limit:
                out.append(tip)

    count = len(transactions)
    if count < FEW_TRANSACTIONS:
        out.append(LOG_MORE_TIP)
    elif count > MANY_TRANSACTIONS:
        out.append(GREAT_TRACKING_TIP)

    if not out:
        out.extend(DEFAULT_TIPS)
    return out


def spending_patterns(category_totals: Mapping[str, float], monthly_income: float) -> List[str]:
    """The per-category overspend checks phrased as sentences for the model."""
    if not monthly_income or monthly_income <= 0:
        return []
    patterns = []
    for category, limit, _ in CATEGORY_LIMITS:
        amount = category_totals.get(category, 0.0)
        if amount > monthly_income * limit:
            share = amount / monthly_income * 100
            patterns.append(
                f"{category} spending is {share:.1f}% of income, above the recommended {limit * 100:.0f}%."
            )
    return patterns


def build_chat_prompt(question: str, monthly_income: float, total_spent: float, ratio: float,
                      health: Mapping[str, Any], category_totals: Mapping[str, float],
                      patterns: Sequence[str]) -> str:
    ordered = sorted(category_totals.items(), key=lambda kv: kv[1], reverse=True)
    breakdown = "\n".join(f"- {cat}: {amount:,.2f}" for cat, amount in ordered) or "- No spending recorded yet"
    detected = "\n".join(f"- {p}" for p in patterns) or "- No unusual patterns detected"
    return f"""You are a friendly, practical personal finance advisor.

User's financial snapshot for this month:
- Monthly income: {monthly_income:,.2f}
- Total spent: {total_spent:,.2f}
- Spending ratio: {ratio:.1f}% of income
- Financial health: {health['status']} (score {health['score']}/100)

Spending by category (highest first):
{breakdown}

Detected patterns:
{detected}

User question: {question}

Answer in 3-5 sentences. Be specific to the numbers above and give one concrete next step."""


def fallback_advice(category_totals: Mapping[str, float], ratio: float, monthly_income: float) -> str:
    """Deterministic advice built from the metrics when the model is unavailable."""
    top = top_category(category_totals)
    if top is None:
        return "Start logging your transactions so I can give you advice based on your actual spending."
    if not monthly_income or monthly_income <= 0:
        instruction = "Add your monthly income in settings so I can compare your spending against it."
    elif ratio > 100:
        instruction = "You are over budget; cut non-essential spending immediately."
    elif ratio > 80:
        instruction = "You are close to your limit; keep discretionary spending low for the rest of the month."
    elif ratio > 50:
        instruction = "You are on a moderate pace; set a weekly cap on your top category."
    else:
        instruction = "You are well within budget; consider moving the surplus into savings."
    return (
        f"Your biggest spending category is {top} at {category_totals[top]:,.2f}. "
        f"You have spent {ratio:.1f}% of your income this month. {instruction}"
    )


async def advise(question: str, transactions: Sequence[Mapping[str, Any]], monthly_income: float,
                 client: Optional[InferenceClient]) -> Dict[str, Any]:
    """Answer a free-text finance question; falls back to computed advice if generation fails."""
    totals = sum_by_category(transactions)
    total_spent = sum(totals.values())
    ratio = spending_ratio(total_spent, monthly_income)
    health = health_status(total_spent, monthly_income)
    patterns = spending_patterns(totals, monthly_income)

    analysis = {
        "monthlyIncome": monthly_income,
        "totalSpent": total_spent,
        "spendingRatio": round(ratio, 2),
        "healthStatus": health["status"],
        "healthScore": health["score"],
        "categoryBreakdown": totals,
        "patterns": patterns,
    }

    prompt = build_chat_prompt(question, monthly_income, total_spent, ratio, health, totals, patterns)
    messages = [
        {"role": "system", "content": "You are a concise, encouraging financial advisor."},
        {"role": "user", "content": prompt},
    ]
    if client is not None:
        try:
            advice = await client.generate(messages)
            return {"advice": advice, "analysis": analysis, "source": "model"}
        except InferenceError as e:
            logger.warning("advice generation failed, using computed fallback: %s", e)

    advice = fallback_advice(totals, ratio, monthly_income)
    return {"advice": advice, "analysis": analysis, "source": "fallback"}
