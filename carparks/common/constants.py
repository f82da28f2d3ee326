"""Application constants."""

USER_AGENT = "carparks-locator/1.0 (+availability-sync)"
API_KEY_HEADER = "X-Api-Key"
JOBS = ("bulk-import", "availability-sync")
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
BULK_COLUMNS = (
    "code",
    "address",
    "x_coord",
    "y_coord",
    "car_park_type",
    "parking_system",
    "short_term_parking",
    "free_parking",
    "night_parking",
    "decks",
    "gantry_height",
    "basement",
)
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "job",
    "event",
    "status",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "code",
    "message",
)
