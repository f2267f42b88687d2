import os
from dotenv import load_dotenv

load_dotenv()


def _get_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Owner
# ---------------------------------------------------------------------------
# Records are owned by a user id. CLI runs act on behalf of this user.
DEFAULT_USER_ID = os.getenv("SOURCING_USER_ID", "default")

# ---------------------------------------------------------------------------
# Companies House API
# ---------------------------------------------------------------------------
COMPANIES_HOUSE_API_KEY = os.getenv("COMPANIES_HOUSE_API_KEY", "")
COMPANIES_HOUSE_BASE_URL = "https://api.company-information.service.gov.uk"

# SIC codes searched during discovery.
#   62xxx – software / IT
#   63xxx – data processing, web portals
#   72xxx – research & experimental development
#   64xxx / 66xxx – fintech
TECH_SIC_CODES = [
    "62011", "62012", "62020", "62030", "62090",
    "63110", "63120",
    "72110", "72190", "72200",
]
FINTECH_SIC_CODES = [
    "64209", "64303", "64921", "64999", "66190", "66300",
]

DISCOVERY_DAYS_BACK = _get_int("DISCOVERY_DAYS_BACK", 90)
DISCOVERY_BATCH_SIZE = _get_int("DISCOVERY_BATCH_SIZE", 5)

# Request budget (Companies House allows 600 requests per 5 minutes)
COMPANIES_HOUSE_RATE_LIMIT = _get_int("COMPANIES_HOUSE_RATE_LIMIT", 600)
COMPANIES_HOUSE_RATE_WINDOW = _get_int("COMPANIES_HOUSE_RATE_WINDOW", 300)  # seconds

# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------
PEOPLE_DATA_API_URL = os.getenv("PEOPLE_DATA_API_URL", "")
PEOPLE_DATA_API_KEY = os.getenv("PEOPLE_DATA_API_KEY", "")
GITHUB_API_URL = "https://api.github.com"
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")

ENRICHMENT_BATCH_SIZE = _get_int("ENRICHMENT_BATCH_SIZE", 5)
QUALIFICATION_BATCH_SIZE = _get_int("QUALIFICATION_BATCH_SIZE", 50)

# Per-minute request budgets
PEOPLE_DATA_RATE_LIMIT = _get_int("PEOPLE_DATA_RATE_LIMIT", 50)
GITHUB_RATE_LIMIT = _get_int("GITHUB_RATE_LIMIT", 30)

# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------
PIPELINE_INTERVAL_HOURS = _get_int("PIPELINE_INTERVAL_HOURS", 6)

# A run still marked running after this long is treated as crashed
JOB_STALE_MINUTES = _get_int("JOB_STALE_MINUTES", 120)

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
DB_PATH = os.getenv(
    "SOURCING_DB_PATH",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data", "sourcing.db"),
)

# ---------------------------------------------------------------------------
# Request settings
# ---------------------------------------------------------------------------
REQUEST_TIMEOUT = _get_int("REQUEST_TIMEOUT", 30)  # seconds
REQUEST_HEADERS = {
    "User-Agent": "StartupSourcing/1.0",
    "Accept": "application/json",
}
