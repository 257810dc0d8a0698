"""Project-wide named constants."""

# Hard ceiling on a single external conversion.
CONVERSION_TIMEOUT_SECONDS: int = 30 * 60

# Hard ceiling on waiting for a new file's size to settle.
MAX_STABILITY_WAIT_SECONDS: float = 5 * 60

STABILITY_POLL_INTERVAL_SECONDS: float = 1.0

# Shared work queue capacity; a full queue drops new offers.
QUEUE_CAPACITY: int = 100

BYTES_PER_MB: int = 1024 * 1024

RATE_LIMIT_WINDOW_SECONDS: float = 60 * 60

HTTP_TIMEOUT_SECONDS: float = 30.0

HARDCOVER_GRAPHQL_URL: str = "https://api.hardcover.app/v1/graphql"

# Time the metadata provider needs to load a primed work in the background.
METADATA_SETTLE_SECONDS: float = 2.0

# Pause after each synced book to stay under the remote APIs' implicit limits.
SYNC_ITEM_DELAY_SECONDS: float = 1.0

# Ledger sentinel for "output already existed, nothing was converted".
SKIPPED_DURATION_MS: int = -1

KEYRING_SERVICE: str = "bookbots"
