"""Application constants."""

USER_AGENT = "building-compliance/0.4 (+portfolio compliance; contact: configured-email)"
APP_TOKEN_ENV = "NYC_OPENDATA_APP_TOKEN"
COMMANDS = (
    "resolve",
    "check",
    "portfolio",
    "invalidate",
    "force-refresh",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_RECORDS = 1000
DEFAULT_PAGE_SIZE = 200
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "building_id",
    "source",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
