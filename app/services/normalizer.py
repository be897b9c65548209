"""Normalization of raw extracted records: ISO dates, signed amounts, malformed-row filtering."""

import re
from datetime import date, datetime
from typing import Any

import pandas as pd

from app.core.models import RawTransaction
from app.core.utils import get_logger

logger = get_logger("statement-pipeline.normalizer")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%m-%d-%y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%d %b %Y",
    "%d %B %Y",
)
YEARLESS_NUMERIC = re.compile(r"^(\d{1,2})[/-](\d{1,2})$")
YEARLESS_TEXT_FORMATS = ("%b %d", "%B %d", "%d %b")
BALANCE_LINE = re.compile(r"\b(beginning|ending|opening|closing|previous|new|starting)\s+balance\b", re.IGNORECASE)
PERIOD_SPLIT = re.compile(r"\s+(?:to|through|-|–)\s+", re.IGNORECASE)


def parse_amount(value: Any) -> float | None:
    """Parse a signed amount from a number or a bank-formatted string.

    Handles currency symbols, thousands separators, ``(12.00)``, ``12.00-`` and ``CR``/``DR``
    suffixes. Returns ``None`` when nothing numeric is found.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    text = str(value).strip().upper()
    if not text:
        return None
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative, text = True, text[1:-1]
    if text.endswith("-"):
        negative, text = True, text[:-1]
    if text.endswith("DR"):
        negative, text = True, text[:-2]
    elif text.endswith("CR"):
        text = text[:-2]
    text = re.sub(r"[^\d.\-]", "", text)
    if text.startswith("-"):
        negative, text = True, text[1:]
    try:
        amount = float(text)
    except ValueError:
        return None
    return -amount if negative else amount


def parse_period(period: str | None) -> tuple[date, date] | None:
    """Parse ``"YYYY-MM-DD to YYYY-MM-DD"`` (or any two parseable dates) into a date range."""
    if not period:
        return None
    parts = PERIOD_SPLIT.split(period.strip(), maxsplit=1)
    if len(parts) != 2:  # noqa: PLR2004
        return None
    start = normalize_date(parts[0])
    end = normalize_date(parts[1])
    if start is None or end is None:
        return None
    return (start, end) if start <= end else (end, start)


def _with_period_year(month: int, day: int, period_end: date | None) -> date | None:
    if period_end is None:
        return None
    year = period_end.year if month <= period_end.month else period_end.year - 1
    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalize_date(value: Any, period_end: date | None = None) -> date | None:
    """Normalize a date in any common statement format; year-less dates borrow the period's year."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    match = YEARLESS_NUMERIC.match(text)
    if match:
        return _with_period_year(int(match.group(1)), int(match.group(2)), period_end)
    for fmt in YEARLESS_TEXT_FORMATS:
        try:
            # leap-day safe: parse against a leap year, then move to the period's year
            parsed = datetime.strptime(f"2000 {text}", f"%Y {fmt}")
        except ValueError:
            continue
        return _with_period_year(parsed.month, parsed.day, period_end)
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def normalize_records(
    records: list[dict[str, Any]], period_end: date | None = None, label: str = "Extractor"
) -> tuple[list[RawTransaction], int]:
    """Turn raw extracted dicts into RawTransactions; malformed records are dropped and logged."""
    transactions: list[RawTransaction] = []
    dropped = 0
    for position, record in enumerate(records, start=1):
        description = str(record.get("description") or "").strip()
        if BALANCE_LINE.search(description):
            logger.info(f"[{label}] Skipping balance line #{position}: {description}")
            dropped += 1
            continue
        txn_date = normalize_date(record.get("date"), period_end)
        amount = parse_amount(record.get("amount"))
        if txn_date is None or not description or amount is None:
            logger.warning(f"[{label}] Dropping malformed record #{position}: {record}")
            dropped += 1
            continue
        type_hint = str(record.get("type") or "").strip().lower() or None
        if (type_hint == "debit" and amount > 0) or (type_hint == "credit" and amount < 0):
            logger.warning(f"[{label}] Type hint '{type_hint}' disagrees with amount {amount} for '{description}'")
        transactions.append(
            RawTransaction(
                date=txn_date,
                description=description,
                amount=amount,
                type=type_hint,
                category=record.get("category") or None,
                merchant=record.get("merchant") or None,
            )
        )
    return transactions, dropped
