"""Application constants."""

USER_AGENT = "territory-sync/0.3 (+wso geography maintenance; contact: configured-email)"
STAGES = (
    "geocode",
    "validate",
    "repair",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "entity",
    "record_id",
    "territory",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "error_code",
    "message",
)

GEOCODE_SUCCESS = "success"
GEOCODE_FAILURE = "failure"
GEOCODE_UNRESOLVED = "unresolved"

DEFAULT_PRECISION_THRESHOLD = 6
