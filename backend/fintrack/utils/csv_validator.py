"""Validate CSV headers against a column mapping and normalize individual rows."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from fintrack.api.schemas.job import ImportMapping
from fintrack.db.models.transaction import DESCRIPTION_MAX_LENGTH, TransactionType


class MappingError(ValueError):
    """The column mapping does not fit the CSV header."""

    pass


class RowError(ValueError):
    """A single row could not be turned into a transaction."""

    pass


INVALID_DATE = "Fecha inválida o vacía"
INVALID_AMOUNT = "Monto inválido"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
)

INCOME_KEYWORDS = ("ingreso", "income")
EXPENSE_KEYWORDS = ("gasto", "expense")

_AMOUNT_STRIP = re.compile(r"[^0-9.\-]")
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class NormalizedRow:
    date: date
    amount: Decimal
    type: TransactionType
    description: str


def validate_mapping(headers: list[str] | None, mapping: ImportMapping) -> None:
    """Ensure every mapped column exists in the CSV header before processing."""
    if not headers:
        raise MappingError("CSV requires a header row")
    present = {header.strip() for header in headers if header}
    missing = [
        f"{role}={column}"
        for role, column in mapping.columns().items()
        if column not in present
    ]
    if missing:
        raise MappingError(f"Mapped column(s) not found in CSV header: {', '.join(missing)}")


def parse_date(value: str | None) -> date | None:
    """Parse a calendar date from the common bank-export formats."""
    if not value or not value.strip():
        return None
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    # ISO datetimes as last resort
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_amount(value: str | None) -> Decimal | None:
    """Keep digits, '.' and '-' only and parse the rest as a decimal."""
    if not value:
        return None
    cleaned = _AMOUNT_STRIP.sub("", value)
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def infer_type(amount: Decimal, type_text: str) -> TransactionType:
    """An explicit income/expense keyword wins; otherwise the sign decides."""
    lowered = type_text.lower()
    is_income = any(word in lowered for word in INCOME_KEYWORDS)
    is_expense = any(word in lowered for word in EXPENSE_KEYWORDS)
    if is_income and not is_expense:
        return TransactionType.INCOME
    if is_expense and not is_income:
        return TransactionType.EXPENSE
    if amount > 0:
        return TransactionType.INCOME
    return TransactionType.EXPENSE


def cell(row: Mapping[str, Any], column: str | None) -> str:
    """Return the stripped cell for a mapped column, '' when unmapped or missing."""
    if not column:
        return ""
    value = row.get(column)
    return value.strip() if isinstance(value, str) else ""


def normalize_row(row: Mapping[str, Any], mapping: ImportMapping) -> NormalizedRow:
    """Turn one raw CSV row into a transaction candidate or raise RowError."""
    parsed_date = parse_date(cell(row, mapping.date))
    if parsed_date is None:
        raise RowError(INVALID_DATE)

    amount = parse_amount(cell(row, mapping.amount))
    if amount is None or amount == 0:
        raise RowError(INVALID_AMOUNT)
    try:
        magnitude = abs(amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise RowError(INVALID_AMOUNT) from None
    if magnitude == 0:
        raise RowError(INVALID_AMOUNT)

    return NormalizedRow(
        date=parsed_date,
        amount=magnitude,
        type=infer_type(amount, cell(row, mapping.type)),
        description=cell(row, mapping.description)[:DESCRIPTION_MAX_LENGTH],
    )
