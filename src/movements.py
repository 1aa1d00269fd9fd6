"""
Agency movement detection.

Compares freshly fetched registry records against the stored salesperson
directory and reports every salesperson whose estate agent changed.
Registration numbers that only appear in the registry are new signups and
are not movements.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from src.connectors import RegistryRecord
from src.salesperson_info import SalespersonInfo


@dataclass(frozen=True)
class Movement:
    reg_num: str
    salesperson_name: str
    old_estate_agent_name: Optional[str]
    new_estate_agent_name: Optional[str]
    old_estate_agent_license_no: Optional[str]
    new_estate_agent_license_no: Optional[str]

    def to_row(self) -> Dict[str, Optional[str]]:
        return asdict(self)


def normalize_agency_name(value: Optional[str]) -> Optional[str]:
    """Trim whitespace; blank names count as no agency."""
    if value is None:
        return None
    return value.strip() or None


def build_directory_lookup(rows: Iterable[Mapping[str, Any]]) -> Dict[str, SalespersonInfo]:
    """Index stored salesperson_info rows by registration number."""
    return {row["reg_num"]: SalespersonInfo.from_row(row) for row in rows}


def detect_movements(
    records: Iterable[RegistryRecord],
    directory: Mapping[str, SalespersonInfo],
) -> List[Movement]:
    """
    Emit one Movement per known salesperson whose agency name changed.

    Output follows the order of `records`.
    """
    movements: List[Movement] = []

    for record in records:
        if not record.registration_no:
            raise ValueError(f"Registry record without registration number: {record!r}")

        existing = directory.get(record.registration_no)
        if existing is None:
            continue

        old_agent = normalize_agency_name(existing.estate_agent_name)
        new_agent = normalize_agency_name(record.estate_agent_name)
        if old_agent == new_agent:
            continue

        movements.append(
            Movement(
                reg_num=record.registration_no,
                salesperson_name=record.salesperson_name,
                old_estate_agent_name=old_agent,
                new_estate_agent_name=new_agent,
                old_estate_agent_license_no=existing.estate_agent_license_no or None,
                new_estate_agent_license_no=record.estate_agent_license_no or None,
            )
        )

    return movements
