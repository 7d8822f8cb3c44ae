"""
System Constants and Enumerations

Fixed policy values for the caching and job core. These are intentionally
not environment-tunable: cache lifetimes, limit classes and queue names are
part of the system's contract, not deployment knobs.
"""

from enum import Enum, IntEnum

# ============================================================================
# Cache TTL classes (seconds)
# ============================================================================


class CacheTTL(IntEnum):
    """
    TTL classes chosen by data volatility.

    Callers select a class; raw second counts are rejected by CacheService.
    """

    DEFAULT = 3600  # 1 hour
    SESSION = 604800  # 7 days
    SEARCH = 3600  # 1 hour
    GEO = 1800  # 30 minutes
    POPULAR = 86400  # 24 hours
    STATS = 3600  # 1 hour
    ONLINE_USERS = 300  # 5 minutes


# ============================================================================
# Redis key namespaces
# ============================================================================

KEY_POPULAR_BOOKS = "books:popular"
KEY_SEARCH_RESULTS = "books:search"
KEY_NEARBY_BOOKS = "books:nearby"
KEY_USER_SESSION = "user:session"
KEY_ONLINE_USERS = "users:online"
KEY_COMMUNITY_STATS = "stats:community"
KEY_GEO_BOOKS = "geo:books"
KEY_GEO_USERS = "geo:users"
KEY_RATE_LIMIT = "ratelimit"
KEY_JOBS = "jobs"
KEY_HTTP_RESPONSE = "http"
KEY_SOCKET_CHANNEL = "socket:user"

# Patterns swept by CacheService.invalidate_book_caches()
BOOK_CACHE_PATTERNS = (
    f"{KEY_POPULAR_BOOKS}:*",
    f"{KEY_SEARCH_RESULTS}:*",
    f"{KEY_NEARBY_BOOKS}:*",
)

# Self-test key written during ConnectionManager.connect()
CONNECTION_TEST_KEY = "test:connection"
CONNECTION_TEST_VALUE = "success"
CONNECTION_TEST_TTL = 10

# Coordinates are rounded to this many decimals (~110 m) for nearby keys
GEO_KEY_PRECISION = 3
DEFAULT_NEARBY_RADIUS_KM = 10

# Hex digits kept from the search digest
SEARCH_HASH_LENGTH = 8

# ============================================================================
# Cache warming
# ============================================================================

POPULAR_CATEGORIES = ("fiction", "non-fiction", "science", "technology", "history")
DEFAULT_POPULAR_CATEGORY = "all"

# ============================================================================
# Rate limit classes: name -> (max_requests, window_seconds)
# ============================================================================


class LimitClass(str, Enum):
    """Named rate limit classes."""

    SEARCH = "search"
    AUTH = "auth"
    UPLOAD = "upload"
    MESSAGE = "message"
    GENERAL = "general"


RATE_LIMITS: dict[str, tuple[int, int]] = {
    LimitClass.SEARCH.value: (100, 3600),
    LimitClass.AUTH.value: (5, 900),
    LimitClass.UPLOAD.value: (10, 3600),
    LimitClass.MESSAGE.value: (50, 3600),
    LimitClass.GENERAL.value: (1000, 3600),
}

# Reported for limit classes that have no rule
UNKNOWN_LIMIT_REMAINING = 999
UNKNOWN_LIMIT_WINDOW = 3600

# ============================================================================
# Queues and job types
# ============================================================================


class QueueName(str, Enum):
    """Job queues. Each has its own consumer and retry policy."""

    EMAIL = "email"
    NOTIFICATION = "notification"
    IMAGE_PROCESSING = "image-processing"
    CLEANUP = "cleanup"


class JobType(str, Enum):
    """Job types, grouped by the queue that owns them."""

    # email
    SEND_EMAIL = "send-email"
    SEND_WELCOME_EMAIL = "send-welcome-email"
    SEND_BORROW_REQUEST_EMAIL = "send-borrow-request-email"
    SEND_REMINDER_EMAIL = "send-reminder-email"
    SEND_OVERDUE_EMAIL = "send-overdue-email"

    # notification
    SEND_PUSH_NOTIFICATION = "send-push-notification"
    SEND_SOCKET_NOTIFICATION = "send-socket-notification"

    # image-processing
    OPTIMIZE_IMAGE = "optimize-image"
    GENERATE_THUMBNAILS = "generate-thumbnails"
    UPLOAD_OPTIMIZED_IMAGE = "upload-optimized-image"
    BATCH_PROCESS_IMAGES = "batch-process-images"

    # cleanup
    CLEANUP_EXPIRED_TOKENS = "cleanup-expired-tokens"
    CLEANUP_OLD_NOTIFICATIONS = "cleanup-old-notifications"
    CLEANUP_TEMP_FILES = "cleanup-temp-files"
    CLEANUP_INACTIVE_SESSIONS = "cleanup-inactive-sessions"
    CLEANUP_OLD_BORROW_REQUESTS = "cleanup-old-borrow-requests"
    COMPREHENSIVE_CLEANUP = "comprehensive-cleanup"


QUEUE_JOB_TYPES: dict[str, frozenset[str]] = {
    QueueName.EMAIL.value: frozenset({
        JobType.SEND_EMAIL.value,
        JobType.SEND_WELCOME_EMAIL.value,
        JobType.SEND_BORROW_REQUEST_EMAIL.value,
        JobType.SEND_REMINDER_EMAIL.value,
        JobType.SEND_OVERDUE_EMAIL.value,
    }),
    QueueName.NOTIFICATION.value: frozenset({
        JobType.SEND_PUSH_NOTIFICATION.value,
        JobType.SEND_SOCKET_NOTIFICATION.value,
    }),
    QueueName.IMAGE_PROCESSING.value: frozenset({
        JobType.OPTIMIZE_IMAGE.value,
        JobType.GENERATE_THUMBNAILS.value,
        JobType.UPLOAD_OPTIMIZED_IMAGE.value,
        JobType.BATCH_PROCESS_IMAGES.value,
    }),
    QueueName.CLEANUP.value: frozenset({
        JobType.CLEANUP_EXPIRED_TOKENS.value,
        JobType.CLEANUP_OLD_NOTIFICATIONS.value,
        JobType.CLEANUP_TEMP_FILES.value,
        JobType.CLEANUP_INACTIVE_SESSIONS.value,
        JobType.CLEANUP_OLD_BORROW_REQUESTS.value,
        JobType.COMPREHENSIVE_CLEANUP.value,
    }),
}


class JobState(str, Enum):
    """
    Job lifecycle states.

    waiting -> active -> completed | failed
    failed (attempts left) -> delayed -> waiting
    """

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


# Lease on a claimed job. A job whose lease lapses while active has stalled
JOB_LOCK_DURATION_MS = 30_000
JOB_STALLED_REASON = "job stalled more than allowable limit"

# States clear_queue may purge; active jobs belong to a running worker
CLEARABLE_JOB_STATES = ("completed", "failed", "waiting", "delayed")


# ============================================================================
# HTTP headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_RATE_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
