import os

SERVICE_NAME = "scheduling-service"

DATABASE_URL = os.getenv("SCHEDULING_DATABASE_URL")
REDIS_URL = os.getenv("REDIS_URL")  # optional; memory cache when unset
RABBIT_URL = os.getenv("RABBIT_URL")  # optional; usage events disabled when unset

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"

# ---- Mapping provider ----
MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN")
MAPBOX_BASE_URL = os.getenv("MAPBOX_BASE_URL") or "https://api.mapbox.com"
MAPBOX_HTTP_TIMEOUT = float(os.getenv("MAPBOX_HTTP_TIMEOUT") or "10.0")
MAPBOX_MAX_CALLS_PER_MINUTE = int(os.getenv("MAPBOX_MAX_CALLS_PER_MINUTE") or "100")
MAPBOX_MAX_RETRIES = 3

# ---- Cache TTLs ----
GEOCODE_CACHE_TTL_SECONDS = int(os.getenv("GEOCODE_CACHE_TTL_SECONDS") or str(24 * 60 * 60))
DISTANCE_CACHE_TTL_SECONDS = int(os.getenv("DISTANCE_CACHE_TTL_SECONDS") or "3600")
USAGE_SESSION_TTL_SECONDS = int(os.getenv("USAGE_SESSION_TTL_SECONDS") or "3600")
CACHE_KEY_PREFIX = "scheduling"

# ---- Scheduling constants ----
DEFAULT_TRAVEL_MINUTES = 30
DEFAULT_JOB_DURATION_HOURS = 3
DEFAULT_LENIENCY_MINUTES = 15
SOFT_MATCH_TRAVEL_CEILING_MINUTES = 80
EXTENDED_SEARCH_DAYS = 365
FAST_MODE_SEARCH_DAYS = 30
MATRIX_BASE_TRAVEL_BUDGET_MINUTES = 120
