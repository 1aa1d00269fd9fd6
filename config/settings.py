"""
CEA Salesperson Analytics Configuration Settings
"""
from pathlib import Path
from dataclasses import dataclass

# ============================================================================
# PATHS
# ============================================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_RAW = PROJECT_ROOT / "data" / "raw"
DATA_PROCESSED = PROJECT_ROOT / "data" / "processed"
REPORTS_DATA_DIR = PROJECT_ROOT / "reports" / "data"
SQL_DIR = PROJECT_ROOT / "sql"

TRANSACTIONS_CSV = DATA_RAW / "CEASalespersonsPropertyTransactionRecordsresidential.csv"
SALESPERSON_INFO_CSV = DATA_RAW / "CEASalespersonInformation.csv"

# ============================================================================
# CSV LAYOUT
# ============================================================================
# name, transaction_date, reg_num, property_type, transaction_type,
# represented, town, district, general_location
TRANSACTION_MIN_FIELDS = 9

# name, reg_num, start, end, estate_agent_name, estate_agent_license_no
SALESPERSON_INFO_MIN_FIELDS = 6

PROGRESS_LOG_EVERY = 100_000

# ============================================================================
# REMOTE REGISTRY (data.gov.sg)
# ============================================================================
REGISTRY_RESOURCE_ID = "d_07c63be0f37e6e59c07a4ddc2fd87fcb"
DEFAULT_REGISTRY_API_URL = (
    "https://data.gov.sg/api/action/datastore_search"
    f"?resource_id={REGISTRY_RESOURCE_ID}"
)


@dataclass
class SyncConfig:
    """Movement sync batch configuration"""
    page_size: int = 5000  # registry records per request
    upsert_batch_size: int = 1000  # salesperson_info rows per upsert
    insert_batch_size: int = 1000  # rows per bulk insert
    movement_sample_size: int = 10  # movements echoed back to the caller
    request_timeout_seconds: int = 60


SYNC_CONFIG = SyncConfig()

# Page size for paginated reads against the store
STORE_PAGE_SIZE = 1000

# Leaderboard defaults
LEADERBOARD_LIMIT = 100
LEADERBOARD_PROCEDURE = "get_leaderboard_by_date_range"

# ============================================================================
# API KEYS (loaded from environment)
# ============================================================================
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "")
SYNC_API_KEY = os.getenv("SYNC_API_KEY", "")
REGISTRY_API_URL = os.getenv("REGISTRY_API_URL", DEFAULT_REGISTRY_API_URL)
