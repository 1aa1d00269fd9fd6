"""
data.gov.sg Registry Connector

Downloads the CEA salesperson registry from the data.gov.sg datastore API.
Pages through the dataset with limit/offset until the reported total is
reached. Any failed page aborts the whole download: the movement sync must
never diff against a partial registry, so there is no retry and no partial
result.

Usage:
    python -m src.connectors

Dataset:
    - CEA Salesperson Information: d_07c63be0f37e6e59c07a4ddc2fd87fcb
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests

from config.settings import REGISTRY_API_URL, SYNC_CONFIG

logger = logging.getLogger(__name__)


class RegistryFetchError(RuntimeError):
    """Raised when the registry API returns an error or an unsuccessful payload."""


@dataclass(frozen=True)
class RegistryRecord:
    """One salesperson as published in the registry feed."""

    registration_no: str
    salesperson_name: str
    registration_start_date: Optional[str] = None
    registration_end_date: Optional[str] = None
    estate_agent_name: Optional[str] = None
    estate_agent_license_no: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RegistryRecord":
        if not isinstance(payload, Mapping):
            raise RegistryFetchError(f"API returned malformed record: {payload!r}")
        return cls(
            registration_no=payload.get("registration_no") or "",
            salesperson_name=payload.get("salesperson_name") or "",
            registration_start_date=payload.get("registration_start_date"),
            registration_end_date=payload.get("registration_end_date"),
            estate_agent_name=payload.get("estate_agent_name"),
            estate_agent_license_no=payload.get("estate_agent_license_no"),
        )

    def to_directory_row(self) -> Dict[str, Optional[str]]:
        """salesperson_info row carrying every field from the registry."""
        return {
            "reg_num": self.registration_no,
            "name": self.salesperson_name,
            "registration_start_date": self.registration_start_date or None,
            "registration_end_date": self.registration_end_date or None,
            "estate_agent_name": self.estate_agent_name or None,
            "estate_agent_license_no": self.estate_agent_license_no or None,
        }


# =============================================================================
# HTTP Client
# =============================================================================

def create_session() -> requests.Session:
    """Create a requests session with identifying headers."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": "CEA-Salesperson-Analytics/1.0",
        "Accept": "application/json",
    })
    return session


def _fetch_page(
    session: requests.Session,
    base_url: str,
    limit: int,
    offset: int,
    timeout: int,
) -> Dict[str, Any]:
    url = f"{base_url}&limit={limit}&offset={offset}"
    logger.debug(f"Requesting: {url[:100]}...")

    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise RegistryFetchError(f"API request failed: {e}") from e

    if not 200 <= response.status_code < 300:
        raise RegistryFetchError(f"API request failed: {response.status_code}")

    try:
        payload = response.json()
    except ValueError as e:
        raise RegistryFetchError(f"API returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise RegistryFetchError("API returned malformed payload")
    if not payload.get("success"):
        raise RegistryFetchError("API returned unsuccessful response")

    return payload


# =============================================================================
# Registry Download
# =============================================================================

def fetch_all_salespersons(
    session: Optional[requests.Session] = None,
    *,
    base_url: str = REGISTRY_API_URL,
    page_size: int = SYNC_CONFIG.page_size,
    timeout: int = SYNC_CONFIG.request_timeout_seconds,
) -> List[RegistryRecord]:
    """
    Fetch every salesperson record from the registry.

    Args:
        session: Optional requests session (one is created if omitted)
        base_url: Datastore search URL including the resource_id
        page_size: Records requested per page
        timeout: Per-request timeout in seconds

    Returns:
        All registry records in feed order

    Raises:
        RegistryFetchError: on a non-2xx status, unreadable body or
            `success: false`
    """
    session = session or create_session()
    records: List[RegistryRecord] = []
    offset = 0
    total: Optional[int] = None

    logger.info("Fetching salesperson data from data.gov.sg...")

    while total is None or len(records) < total:
        payload = _fetch_page(session, base_url, page_size, offset, timeout)
        result = payload.get("result")
        if not isinstance(result, dict):
            raise RegistryFetchError("API returned malformed payload: result is not an object")
        page = result.get("records") or []
        if not isinstance(page, list):
            raise RegistryFetchError("API returned malformed payload: records is not a list")

        try:
            total = int(result.get("total", 0))
        except (TypeError, ValueError) as e:
            raise RegistryFetchError(f"API returned invalid total: {result.get('total')!r}") from e

        records.extend(RegistryRecord.from_api(item) for item in page)
        offset += page_size
        logger.info(f"  Fetched {len(records):,}/{total:,} records...")

        if not page and len(records) < total:
            raise RegistryFetchError(
                f"Registry returned an empty page at offset {offset - page_size:,} "
                f"with {len(records):,}/{total:,} records fetched"
            )

    logger.info(f"Total records fetched: {len(records):,}")
    return records


# =============================================================================
# CLI Interface
# =============================================================================

if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Download the CEA salesperson registry from data.gov.sg"
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=SYNC_CONFIG.page_size,
        help=f"Records per request (default: {SYNC_CONFIG.page_size})"
    )
    args = parser.parse_args()

    try:
        start_time = time.time()
        records = fetch_all_salespersons(page_size=args.page_size)
        elapsed = time.time() - start_time

        print("\n" + "=" * 60)
        print("REGISTRY SUMMARY")
        print("=" * 60)
        print(f"Total records: {len(records):,}")
        print(f"Elapsed: {elapsed:.1f} seconds")
        agencies = {r.estate_agent_name for r in records if r.estate_agent_name}
        print(f"Distinct estate agents: {len(agencies):,}")

    except KeyboardInterrupt:
        logger.info("\nDownload cancelled by user")
    except Exception as e:
        logger.error(f"Download failed: {e}")
        raise
