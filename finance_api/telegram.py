"""Chat command parsing for the Telegram bot.

A message is ``"<amount> <merchant> [category]"``, e.g. ``"5000 Shell Transport"``.
"""

import math
from typing import NamedTuple, Optional

from .categorize import CATEGORIES

USAGE = 'Please use format: "amount merchant category" e.g., "5000 Shell Transport"'


class ParsedCommand(NamedTuple):
    amount: float
    merchant: str
    category: Optional[str]  # None when missing or not a known category


def parse_command(text: str) -> Optional[ParsedCommand]:
    parts = (text or "").split()
    if not parts:
        return None
    try:
        amount = abs(float(parts[0].replace(",", "")))
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    merchant = parts[1] if len(parts) > 1 else "Unknown"
    category = None
    if len(parts) > 2:
        wanted = parts[2].lower()
        category = next((c for c in CATEGORIES if c.lower() == wanted), None)
    return ParsedCommand(amount, merchant, category)


def telegram_owner_id(telegram_user_id) -> str:
    """Owner id for messages from a Telegram user with no linked profile."""
    return f"telegram_{telegram_user_id}"
