"""Normalisation of the CEA "MON-YYYY" transaction date format."""

from __future__ import annotations

from typing import NamedTuple, Optional

MONTHS = {
    "JAN": "01",
    "FEB": "02",
    "MAR": "03",
    "APR": "04",
    "MAY": "05",
    "JUN": "06",
    "JUL": "07",
    "AUG": "08",
    "SEP": "09",
    "OCT": "10",
    "NOV": "11",
    "DEC": "12",
}


class TransactionPeriod(NamedTuple):
    year: str  # "2024"
    month_year: str  # "2024-01"


def parse_transaction_date(value: Optional[str]) -> Optional[TransactionPeriod]:
    """
    Convert "JAN-2024" into TransactionPeriod("2024", "2024-01").

    Returns None for empty values, "-", unknown month abbreviations or any
    year that is not four digits. Callers treat None as "no date" and leave
    the record out of every date-keyed aggregate.
    """
    if not value:
        return None
    value = value.strip()
    if not value or value == "-":
        return None

    parts = value.split("-")
    if len(parts) != 2:
        return None

    month = MONTHS.get(parts[0].strip().upper())
    year = parts[1].strip()
    if month is None or len(year) != 4 or not (year.isascii() and year.isdigit()):
        return None

    return TransactionPeriod(year=year, month_year=f"{year}-{month}")
