"""Transfer coordinator settings."""

from server.settings.components import config

_DAY_SECONDS = 24 * 60 * 60

# Part limits (S3 wants at least 5 MiB for every part but the last,
# caps a part at 5 GiB and a session at 10,000 parts)
TRANSFER_MIN_PART_SIZE = config(
    'TRANSFER_MIN_PART_SIZE',
    cast=int,
    default=5 * 1024 * 1024,
)
TRANSFER_MAX_PART_SIZE = config(
    'TRANSFER_MAX_PART_SIZE',
    cast=int,
    default=5 * 1024 * 1024 * 1024,
)
TRANSFER_MAX_PART_COUNT = config(
    'TRANSFER_MAX_PART_COUNT',
    cast=int,
    default=10000,
)

# Signed URL lifetime upper bound in seconds
TRANSFER_MAX_URL_EXPIRY = config(
    'TRANSFER_MAX_URL_EXPIRY',
    cast=int,
    default=7 * _DAY_SECONDS,
)

# Open transfers untouched for longer than this are aborted by the sweep
TRANSFER_STALE_TTL = config(
    'TRANSFER_STALE_TTL',
    cast=int,
    default=7 * _DAY_SECONDS,
)

# Backoff for transient object store failures
TRANSFER_RETRY_ATTEMPTS = config(
    'TRANSFER_RETRY_ATTEMPTS',
    cast=int,
    default=4,
)
TRANSFER_RETRY_BASE_DELAY = config(
    'TRANSFER_RETRY_BASE_DELAY',
    cast=float,
    default=0.2,
)
TRANSFER_RETRY_MAX_DELAY = config(
    'TRANSFER_RETRY_MAX_DELAY',
    cast=float,
    default=5.0,
)

TRANSFER_DEFAULT_QUOTA_BYTES = config(
    'TRANSFER_DEFAULT_QUOTA_BYTES',
    cast=int,
    default=10 * 1024 * 1024 * 1024,
)
