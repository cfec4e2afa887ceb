"""Expense categorization: keyword table first, hosted zero-shot model second.

The keyword table is evaluated in declaration order and the first category
with a matching keyword wins, so "shop" resolves to Food before Shopping and
"gas" to Transport before Utilities.
"""

import logging
from typing import Optional, Tuple

from .ai import InferenceClient, InferenceError

logger = logging.getLogger(__name__)

CATEGORIES: Tuple[str, ...] = (
    "Food", "Transport", "Entertainment", "Shopping", "Bills",
    "Utilities", "Health", "Education", "Other",
)

DEFAULT_CATEGORY = "Other"

CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Food", ("restaurant", "food", "cafe", "pizza", "burger", "chicken", "shop", "grocery", "market", "bakery")),
    ("Transport", ("uber", "taxi", "fuel", "gas", "transit", "train", "bus", "parking", "mechanic")),
    ("Entertainment", ("movie", "cinema", "game", "music", "concert", "theatre", "stream", "spotify", "netflix")),
    ("Shopping", ("mall", "store", "shop", "amazon", "retail", "clothes", "fashion", "shoes")),
    ("Bills", ("power", "electricity", "water", "internet", "phone", "cable", "rent", "subscription")),
    ("Utilities", ("electric", "water", "gas", "internet", "phone")),
    ("Health", ("pharmacy", "hospital", "doctor", "clinic", "medical", "health")),
    ("Education", ("school", "university", "course", "tuition", "book", "learning")),
)


def match_keywords(merchant: str, description: str = "") -> Optional[str]:
    text = f"{merchant or ''} {description or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return None


async def categorize(merchant: str, description: str = "",
                     classifier: Optional[InferenceClient] = None) -> str:
    """Return one of CATEGORIES. Never raises."""
    category = match_keywords(merchant, description)
    if category:
        return category

    if classifier is None:
        return DEFAULT_CATEGORY

    text = f"{merchant or ''} {description or ''}".strip()
    try:
        ranked = await classifier.classify(text, CATEGORIES)
    except InferenceError as e:
        logger.warning("zero-shot categorization failed for %r: %s", text, e)
        return DEFAULT_CATEGORY

    if ranked and ranked[0][0] in CATEGORIES:
        return ranked[0][0]
    return DEFAULT_CATEGORY
