"""Receipt field extraction.

The hosted model is asked targeted questions first. Whatever it leaves
unanswered is recovered from a free-form caption of the same image with the
ordered pattern lists below; the first plausible match wins.
"""

import logging
import re
from datetime import date
from typing import Any, Dict, Optional, Tuple

from .ai import InferenceClient, InferenceError

logger = logging.getLogger(__name__)

QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("merchant", "What is the name of the store or merchant on this receipt?"),
    ("amount", "What is the total amount paid on this receipt?"),
    ("date", "What is the date on this receipt?"),
)

_CURRENCY = r"(?:[$₦€£]|ngn|usd|eur|gbp|n(?=\d))"
_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:[.,]\d{1,2})?)"
_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"

AMOUNT_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("labelled_total", re.compile(
        rf"(?:grand\s+total|total\s+due|amount\s+due|balance\s+due|total|amount|paid)\s*(?:of|is)?\s*[:\-]?\s*{_CURRENCY}?\s*{_NUMBER}",
        re.IGNORECASE)),
    ("currency_prefix", re.compile(rf"{_CURRENCY}\s*{_NUMBER}", re.IGNORECASE)),
    ("currency_suffix", re.compile(rf"{_NUMBER}\s*(?:naira|dollars?|euros?|pounds?|ngn|usd|eur|gbp)\b", re.IGNORECASE)),
    ("formatted_decimal", re.compile(r"\b(\d{1,3}(?:,\d{3})+(?:\.\d{2})?|\d+\.\d{2})\b")),
    ("bare_number", re.compile(r"\b(\d+(?:[.,]\d{2})?)\b")),
)

MERCHANT_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("receipt_from", re.compile(
        r"(?:receipt|invoice|bill)\s+(?:from|at)\s+([A-Za-z0-9&'.\- ]+?)(?=\s+(?:for|on|dated|with|showing|total)\b|[,.:;]|$)",
        re.IGNORECASE)),
    ("labelled", re.compile(
        r"(?:merchant|store|vendor|shop|seller)\s*(?:name)?\s*[:\-]\s*([A-Za-z0-9&'.\- ]+?)(?=[,.;\n]|$)",
        re.IGNORECASE)),
    ("at_capitalised", re.compile(r"\b(?:at|from)\s+([A-Z][A-Za-z0-9&'\-]*(?:\s+[A-Z][A-Za-z0-9&'\-]*)*)")),
)

DATE_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("iso", re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")),
    ("slash", re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\b")),
    ("dash", re.compile(r"\b(\d{1,2}-\d{1,2}-\d{2,4})\b")),
    ("day_month_year", re.compile(rf"\b(\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH},?\s+\d{{2,4}})\b", re.IGNORECASE)),
    ("month_day_year", re.compile(rf"\b({_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{2,4}})\b", re.IGNORECASE)),
)

BOILERPLATE_WORDS = {"receipt", "invoice", "limited", "ltd"}
LEADING_ARTICLES = {"a", "an", "the"}
GENERIC_LEAD_WORDS = {"data", "bundle", "plan", "transfer", "payment"}
FUNCTION_WORDS = {"for", "from", "of", "to", "at", "in", "on", "with", "by", "and", "is", "this", "that", "shows"}
MERCHANT_MIN_LEN, MERCHANT_MAX_LEN = 2, 60


def parse_amount(raw: str) -> float:
    """'1,250.50' -> 1250.5, '12,50' -> 12.5. Returns 0.0 when nothing numeric is found."""
    match = re.search(r"\d[\d,]*(?:\.\d+)?", raw or "")
    if not match:
        return 0.0
    token = match.group(0)
    if re.fullmatch(r"\d+,\d{1,2}", token):
        token = token.replace(",", ".")
    else:
        token = token.replace(",", "")
    try:
        return abs(float(token))
    except ValueError:
        return 0.0


def clean_merchant(raw: str) -> str:
    words = [w for w in re.split(r"\s+", raw or "") if w and w.lower().strip(".,") not in BOILERPLATE_WORDS]
    while words and words[0].lower() in LEADING_ARTICLES:
        words.pop(0)
    name = " ".join(words).strip(" .,:;-'")
    if MERCHANT_MIN_LEN <= len(name) <= MERCHANT_MAX_LEN:
        return name
    return ""


def find_date(text: str) -> str:
    for _, pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return ""


def find_amount(text: str) -> float:
    # dates would otherwise be read as amounts by the looser patterns
    for _, pattern in DATE_PATTERNS:
        text = pattern.sub(" ", text)
    for _, pattern in AMOUNT_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_amount(match.group(1))
            if value > 0:
                return value
    return 0.0


def find_merchant(text: str) -> str:
    for _, pattern in MERCHANT_PATTERNS:
        for match in pattern.finditer(text):
            name = clean_merchant(match.group(1))
            if name:
                return name
    return ""


def first_word_merchant(text: str) -> str:
    """First alphabetic token, skipping function words and generic lead words such as 'data'."""
    for token in re.findall(r"[A-Za-z][A-Za-z&'\-]*", text or ""):
        if token.lower() in GENERIC_LEAD_WORDS | BOILERPLATE_WORDS | LEADING_ARTICLES | FUNCTION_WORDS:
            continue
        if len(token) >= MERCHANT_MIN_LEN:
            return token[:MERCHANT_MAX_LEN]
    return ""


def confidence_for(merchant: str, amount: float) -> str:
    resolved = (amount > 0) + bool(merchant)
    return {2: "high", 1: "medium"}.get(resolved, "low")


async def _ask(client: InferenceClient, image: str, question: str) -> str:
    try:
        return (await client.ask_image(image, question)).strip()
    except InferenceError as e:
        logger.warning("receipt question failed (%s): %s", question, e)
        return ""


async def extract(image: str, client: InferenceClient) -> Dict[str, Any]:
    """Turn a receipt image (URL or base64) into merchant/amount/date fields.

    Never raises: any failure is reported as ``success: False``.
    """
    try:
        answers: Dict[str, str] = {}
        for field, question in QUESTIONS:
            answers[field] = await _ask(client, image, question)

        merchant = clean_merchant(answers["merchant"]) if answers["merchant"] else ""
        amount = parse_amount(answers["amount"]) if answers["amount"] else 0.0
        found_date: Optional[str] = answers["date"] or None

        caption = (await client.caption_image(image)).strip()

        if amount <= 0:
            amount = find_amount(caption)
        if not merchant:
            merchant = find_merchant(caption)
        if not found_date:
            found_date = find_date(caption)
        if not merchant:
            merchant = first_word_merchant(caption)

        return {
            "success": True,
            "merchant": merchant,
            "amount": amount,
            "date": found_date or date.today().isoformat(),
            "description": caption,
            "confidence": confidence_for(merchant, amount),
        }
    except Exception as e:
        logger.error("receipt extraction failed: %s", e)
        return {"success": False, "error": str(e), "merchant": "", "amount": 0}
