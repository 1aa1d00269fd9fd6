"""
Salesperson registration directory.

Loads the CEA salesperson information CSV into a registration-number keyed
directory and converts entries to and from the salesperson_info table shape.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from config.settings import SALESPERSON_INFO_MIN_FIELDS
from src.csv_stream import CsvRowStream, CsvSource

logger = logging.getLogger(__name__)

MISSING = "-"
UNKNOWN_NAME = "Unknown"

OPTIONAL_FIELDS = (
    "registration_start_date",
    "registration_end_date",
    "estate_agent_name",
    "estate_agent_license_no",
)


@dataclass
class SalespersonInfo:
    """Registration and current agency of one salesperson."""

    reg_num: str
    name: str
    registration_start_date: Optional[str] = MISSING
    registration_end_date: Optional[str] = MISSING
    estate_agent_name: Optional[str] = MISSING
    estate_agent_license_no: Optional[str] = MISSING

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    def to_row(self) -> Dict[str, Optional[str]]:
        """Store shape: "-" and empty strings in the optional fields become NULL."""
        row = asdict(self)
        for key in OPTIONAL_FIELDS:
            row[key] = _dash_to_none(row[key])
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SalespersonInfo":
        return cls(
            reg_num=row["reg_num"],
            name=row.get("name"),
            registration_start_date=row.get("registration_start_date"),
            registration_end_date=row.get("registration_end_date"),
            estate_agent_name=row.get("estate_agent_name"),
            estate_agent_license_no=row.get("estate_agent_license_no"),
        )


def _dash_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or value == "" or value == MISSING:
        return None
    return value


def load_salesperson_info(source: CsvSource) -> Dict[str, SalespersonInfo]:
    """
    Parse the salesperson information CSV.

    Column order: name, registration number, registration start date,
    registration end date, estate agent name, estate agent license number.
    When a registration number repeats, the last row wins.
    """
    logger.info("Reading Salesperson Information CSV...")

    directory: Dict[str, SalespersonInfo] = {}
    stream = CsvRowStream(source, min_fields=SALESPERSON_INFO_MIN_FIELDS)
    missing_reg_num = 0

    for fields in stream:
        name, reg_num, start_date, end_date, agent_name, agent_license_no = fields[:SALESPERSON_INFO_MIN_FIELDS]
        if _dash_to_none(reg_num) is None:
            missing_reg_num += 1
            continue

        directory[reg_num] = SalespersonInfo(
            reg_num=reg_num,
            name=_dash_to_none(name) or UNKNOWN_NAME,
            registration_start_date=start_date or MISSING,
            registration_end_date=end_date or MISSING,
            estate_agent_name=agent_name or MISSING,
            estate_agent_license_no=agent_license_no or MISSING,
        )

    logger.info(f"  Loaded {len(directory):,} salesperson records")
    if stream.skipped_rows or missing_reg_num:
        logger.info(
            f"  Skipped {stream.skipped_rows:,} short rows and "
            f"{missing_reg_num:,} rows without a registration number"
        )

    return directory
