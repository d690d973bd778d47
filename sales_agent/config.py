import os
from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(env_path)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


AWS_REGION = os.getenv("AWS_REGION", "us-west-2")
BEDROCK_MODEL_ID = os.getenv("BEDROCK_MODEL_ID", "")
BEDROCK_CONNECT_TIMEOUT = _env_int("BEDROCK_CONNECT_TIMEOUT", 10)
BEDROCK_READ_TIMEOUT = _env_int("BEDROCK_READ_TIMEOUT", 60)
REASONING_MAX_TOKENS = max(64, _env_int("REASONING_MAX_TOKENS", 800))
REASONING_TEMPERATURE = _env_float("REASONING_TEMPERATURE", 0.1)
PROMPT_VERSION = os.getenv("PROMPT_VERSION", "sales_tools_v3")

BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/Toronto").strip() or "America/Toronto"

# ============================================================================
# RETRY / RATE LIMIT
# ============================================================================
RETRY_MAX_RETRIES = max(0, _env_int("RETRY_MAX_RETRIES", 3))
RETRY_INITIAL_DELAY_SECONDS = _env_float("RETRY_INITIAL_DELAY_SECONDS", 1.0)
RETRY_MAX_DELAY_SECONDS = _env_float("RETRY_MAX_DELAY_SECONDS", 15.0)

# ============================================================================
# TURN EXECUTION
# ============================================================================
PARALLEL_QUERY_LIMIT = max(1, _env_int("PARALLEL_QUERY_LIMIT", 5))
MAX_PROPOSED_OPERATIONS = max(1, _env_int("MAX_PROPOSED_OPERATIONS", 5))
TURN_TIMEOUT_SECONDS = _env_float("TURN_TIMEOUT_SECONDS", 10.0)
TOKEN_COST_USD = _env_float("TOKEN_COST_USD", 0.00003)

# Data store
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_TIMEOUT_SECONDS = _env_int("SUPABASE_TIMEOUT_SECONDS", 20)
SUPABASE_PAGE_SIZE = max(1, _env_int("SUPABASE_PAGE_SIZE", 1000))
SUPABASE_MAX_ROWS = max(1, _env_int("SUPABASE_MAX_ROWS", 250_000))
COMPLETED_ORDER_STATE = os.getenv("COMPLETED_ORDER_STATE", "COMPLETED")

# ============================================================================
# VALIDATION RULES
# ============================================================================
MAX_LOCATIONS = _env_int("MAX_LOCATIONS", 10)
MAX_ITEMS = _env_int("MAX_ITEMS", 20)
MAX_METRICS = _env_int("MAX_METRICS", 5)
MAX_GROUP_DIMENSIONS = _env_int("MAX_GROUP_DIMENSIONS", 3)
MIN_QUERY_LENGTH = _env_int("MIN_QUERY_LENGTH", 3)
MAX_QUERY_LENGTH = _env_int("MAX_QUERY_LENGTH", 500)
MAX_YEARS_BACK = _env_int("MAX_YEARS_BACK", 10)
MAX_YEARS_FORWARD = _env_int("MAX_YEARS_FORWARD", 1)
MAX_ROW_LIMIT = _env_int("MAX_ROW_LIMIT", 1000)
DEFAULT_FALLBACK_DAYS = max(1, _env_int("DEFAULT_FALLBACK_DAYS", 30))

# ============================================================================
# COMPLEXITY THRESHOLDS (estimated rows)
# ============================================================================
COMPLEXITY_BASE_ROWS = _env_int("COMPLEXITY_BASE_ROWS", 1_000_000)
SIMPLE_QUERY_THRESHOLD = _env_int("SIMPLE_QUERY_THRESHOLD", 1_000)
MODERATE_QUERY_THRESHOLD = _env_int("MODERATE_QUERY_THRESHOLD", 10_000)
COMPLEX_QUERY_THRESHOLD = _env_int("COMPLEX_QUERY_THRESHOLD", 100_000)
RAW_QUERY_THRESHOLD = _env_int("RAW_QUERY_THRESHOLD", 50_000)
INDEX_HINT_THRESHOLD = _env_int("INDEX_HINT_THRESHOLD", 10_000)
BATCH_THRESHOLD = _env_int("BATCH_THRESHOLD", 5_000)
CACHE_THRESHOLD = _env_int("CACHE_THRESHOLD", 1_000)
MAX_GROUPED_RESULTS = _env_int("MAX_GROUPED_RESULTS", 1000)
DEFAULT_RESULT_LIMIT = _env_int("DEFAULT_RESULT_LIMIT", 100)

# Cache TTLs in seconds (advisory only)
CACHE_TTL_STATIC = _env_int("CACHE_TTL_STATIC", 3600)
CACHE_TTL_DAILY = _env_int("CACHE_TTL_DAILY", 300)
CACHE_TTL_HOURLY = _env_int("CACHE_TTL_HOURLY", 60)
CACHE_TTL_REALTIME = _env_int("CACHE_TTL_REALTIME", 10)
