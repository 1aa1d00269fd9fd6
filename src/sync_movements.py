"""
CEA Salesperson Movement Sync

Batch job that refreshes the salesperson directory from data.gov.sg and
records every salesperson whose estate agent changed since the last run.

Stages (linear; any failure ends in FAILED):
    FETCH_REMOTE -> LOAD_STORED_DIRECTORY -> DETECT_MOVEMENTS
    -> PERSIST_MOVEMENTS -> UPSERT_DIRECTORY -> DONE

Committed stages are not rolled back when a later stage fails. Re-running is
safe: the directory upsert is keyed by reg_num and movements that repeat the
latest stored movement for a salesperson are not inserted twice.

Runs are expected to be triggered serially by a scheduler; there is no
guard against two overlapping runs.

Usage:
    python -m src.sync_movements --api-key $SYNC_API_KEY
"""

import argparse
import enum
import hmac
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import settings
from src.connectors import RegistryFetchError, RegistryRecord, fetch_all_salespersons
from src.database import ConfigurationError, MovementRow, SalespersonInfoRow, get_engine
from src.movements import Movement, build_directory_lookup, detect_movements
from src.store import RowStore, StoreError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DIRECTORY_COLUMNS = ["reg_num", "name", "estate_agent_name", "estate_agent_license_no"]

# Registration numbers per IN (...) query when checking for replayed movements
REPLAY_LOOKUP_CHUNK = 1000


class SyncStage(enum.Enum):
    FETCH_REMOTE = "fetch_remote"
    LOAD_STORED_DIRECTORY = "load_stored_directory"
    DETECT_MOVEMENTS = "detect_movements"
    PERSIST_MOVEMENTS = "persist_movements"
    UPSERT_DIRECTORY = "upsert_directory"
    DONE = "done"
    FAILED = "failed"


class UnauthorizedError(PermissionError):
    """Raised when the caller's key does not match the configured sync key."""


class SyncError(RuntimeError):
    """A sync run aborted; `stage` is the step that failed."""

    def __init__(self, stage: SyncStage, message: str):
        super().__init__(message)
        self.stage = stage


@dataclass
class SyncStats:
    total_records_fetched: int = 0
    existing_salespersons: int = 0
    movements_detected: int = 0
    movements_recorded: int = 0
    salespersons_updated: int = 0
    duration_seconds: float = 0.0


@dataclass
class SyncResult:
    stats: SyncStats
    movements: List[Movement] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Sync completed successfully",
            "stats": asdict(self.stats),
            "movements": [m.to_row() for m in self.movements],
        }


# =============================================================================
# Orchestrator
# =============================================================================

class MovementSync:
    """
    One run of the movement sync.

    Args:
        store: RowStore holding salesperson_info and salesperson_movements
        fetch_records: Callable returning the full registry feed
        batch_size: salesperson_info rows per upsert call
        sample_size: movements echoed back in the result
    """

    def __init__(
        self,
        store: RowStore,
        fetch_records: Callable[[], Sequence[RegistryRecord]] = fetch_all_salespersons,
        *,
        batch_size: int = settings.SYNC_CONFIG.upsert_batch_size,
        sample_size: int = settings.SYNC_CONFIG.movement_sample_size,
    ):
        self.store = store
        self.fetch_records = fetch_records
        self.batch_size = batch_size
        self.sample_size = sample_size
        self.stage: Optional[SyncStage] = None

    def run(self) -> SyncResult:
        start_time = time.time()
        stats = SyncStats()

        # 1. Fetch the registry
        self._enter(SyncStage.FETCH_REMOTE)
        records = self._guard(self.fetch_records)
        stats.total_records_fetched = len(records)

        # 2. Load the stored directory
        self._enter(SyncStage.LOAD_STORED_DIRECTORY)
        directory = self._guard(self._load_directory)
        stats.existing_salespersons = len(directory)
        logger.info(f"Existing salespersons in database: {len(directory):,}")

        # 3. Diff
        self._enter(SyncStage.DETECT_MOVEMENTS)
        movements = self._guard(detect_movements, records, directory)
        stats.movements_detected = len(movements)
        logger.info(f"Detected {len(movements):,} movements")

        # 4. Record movements
        self._enter(SyncStage.PERSIST_MOVEMENTS)
        if movements:
            stats.movements_recorded = self._guard(self._persist_movements, movements)
            logger.info(f"Inserted {stats.movements_recorded:,} movement records")
        else:
            logger.info("No movements to record")

        # 5. Refresh the directory
        self._enter(SyncStage.UPSERT_DIRECTORY)
        rows = [record.to_directory_row() for record in records]
        stats.salespersons_updated = self._guard(
            self.store.upsert, SalespersonInfoRow, rows, ["reg_num"], batch_size=self.batch_size
        )
        logger.info(f"Updated {stats.salespersons_updated:,} salesperson records")

        self._enter(SyncStage.DONE)
        stats.duration_seconds = round(time.time() - start_time, 2)
        return SyncResult(stats=stats, movements=movements[:self.sample_size])

    # ------------------------------------------------------------------

    def _enter(self, stage: SyncStage) -> None:
        self.stage = stage
        logger.info(f"[{stage.name}]")

    def _guard(self, fn, *args, **kwargs):
        """Run one stage step, turning its failure into SyncError."""
        stage = self.stage
        try:
            return fn(*args, **kwargs)
        except (RegistryFetchError, StoreError, ValueError) as e:
            self.stage = SyncStage.FAILED
            logger.error(f"Sync failed during {stage.name}: {e}")
            raise SyncError(stage, f"{stage.value} failed: {e}") from e

    def _load_directory(self):
        logger.info("Fetching existing salesperson data from the store...")
        rows = self.store.select_all(SalespersonInfoRow, columns=DIRECTORY_COLUMNS)
        return build_directory_lookup(rows)

    def _persist_movements(self, movements: List[Movement]) -> int:
        fresh = self._drop_replayed(movements)
        if len(fresh) < len(movements):
            logger.info(f"Skipped {len(movements) - len(fresh):,} movements already recorded by a previous run")
        if not fresh:
            return 0
        return self.store.insert(MovementRow, [m.to_row() for m in fresh])

    def _drop_replayed(self, movements: List[Movement]) -> List[Movement]:
        """
        Drop movements identical to the latest stored movement for the same
        salesperson (left behind by a run that failed after PERSIST_MOVEMENTS).
        """
        reg_nums = sorted({m.reg_num for m in movements})
        latest: Dict[str, Tuple[Optional[str], Optional[str]]] = {}

        for i in range(0, len(reg_nums), REPLAY_LOOKUP_CHUNK):
            chunk = reg_nums[i:i + REPLAY_LOOKUP_CHUNK]
            rows = self.store.select_all(
                MovementRow,
                columns=["reg_num", "old_estate_agent_name", "new_estate_agent_name"],
                where=[MovementRow.reg_num.in_(chunk)],
                order_by=[MovementRow.detected_at, MovementRow.id],
            )
            for row in rows:
                latest[row["reg_num"]] = (row["old_estate_agent_name"], row["new_estate_agent_name"])

        return [
            m for m in movements
            if latest.get(m.reg_num) != (m.old_estate_agent_name, m.new_estate_agent_name)
        ]


# =============================================================================
# Batch Entry Point
# =============================================================================

def run_sync_job(
    provided_key: Optional[str],
    *,
    expected_key: Optional[str] = None,
    database_url: Optional[str] = None,
    store: Optional[RowStore] = None,
    fetch_records: Callable[[], Sequence[RegistryRecord]] = fetch_all_salespersons,
) -> SyncResult:
    """
    Authenticate the caller, then run one movement sync.

    Raises:
        ConfigurationError: sync key or database credentials not configured
        UnauthorizedError: provided key does not match
        SyncError: a stage failed
    """
    expected_key = settings.SYNC_API_KEY if expected_key is None else expected_key
    database_url = settings.DATABASE_URL if database_url is None else database_url

    if not expected_key:
        raise ConfigurationError("Missing sync API key: set SYNC_API_KEY")
    if not provided_key or not hmac.compare_digest(provided_key.encode(), expected_key.encode()):
        raise UnauthorizedError("Unauthorized")

    if store is None:
        if not database_url:
            raise ConfigurationError("Missing database credentials: set DATABASE_URL")
        store = RowStore(get_engine(database_url))

    logger.info("=" * 60)
    logger.info("CEA Salesperson Movement Sync")
    logger.info("=" * 60)

    result = MovementSync(store, fetch_records).run()

    logger.info("=" * 60)
    logger.info(f"Sync completed in {result.stats.duration_seconds:.2f} seconds")
    logger.info("=" * 60)
    return result


def build_sync_response(provided_key: Optional[str], **kwargs) -> Tuple[int, Dict[str, Any]]:
    """Run the job and map the outcome to an HTTP-style (status, body) pair."""
    try:
        result = run_sync_job(provided_key, **kwargs)
    except UnauthorizedError:
        return 401, {"error": "Unauthorized"}
    except ConfigurationError as e:
        return 500, {"error": f"Server configuration error: {e}"}
    except SyncError as e:
        return 500, {"error": "Sync failed", "stage": e.stage.value, "details": str(e)}
    return 200, result.to_dict()


# =============================================================================
# CLI
# =============================================================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the CEA salesperson movement sync")
    parser.add_argument(
        "--api-key",
        default=None,
        help="Sync key; must match SYNC_API_KEY",
    )
    args = parser.parse_args()

    status, body = build_sync_response(args.api_key)
    print(json.dumps(body, indent=2, default=str))
    raise SystemExit(0 if status == 200 else 1)
