"""
System Constants and Enumerations

This module defines constants and enumerations shared by the Canvas client
layer: request priorities, breaker/connection states, error kinds, backoff
parameters, per-resource cache lifetimes, Canvas header names and endpoint
builders.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management
- Easy to update and track changes
"""

from enum import Enum, IntEnum

# ============================================================================
# Request Priority
# ============================================================================


class RequestPriority(IntEnum):
    """
    Priority tiers for queued Canvas requests (higher value is served first).

    BACKGROUND: Background syncs
    NORMAL: Regular dashboard requests
    USER_INITIATED: Actions the user is actively waiting on
    CRITICAL: Authentication / profile lookups
    """

    BACKGROUND = 0
    NORMAL = 1
    USER_INITIATED = 2
    CRITICAL = 3


# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, queued work is executed
    OPEN: Failing fast, queued work is rejected until the cooldown elapses
    """

    CLOSED = "closed"
    OPEN = "open"


# ============================================================================
# Credential Lifecycle
# ============================================================================


class ConnectionState(str, Enum):
    """
    Lifecycle of the Canvas credential held by the token manager.

    UNCONNECTED: No authorization was ever completed
    CONNECTED: A usable access token is on file
    EXPIRED: The access token passed its expiry and has not been refreshed yet
    INVALID: Refresh failed; the user must re-authorize
    """

    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    EXPIRED = "expired"
    INVALID = "invalid"


# ============================================================================
# Error Kinds
# ============================================================================


class ErrorKind(str, Enum):
    """Machine-discriminable error categories surfaced to callers."""

    AUTHENTICATION = "authentication"
    TOKEN_EXPIRED = "token_expired"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    VALIDATION = "validation"
    CIRCUIT_OPEN = "circuit_open"
    QUEUE_CLEARED = "queue_cleared"
    NOT_CONNECTED = "not_connected"
    UNKNOWN = "unknown"


# ============================================================================
# Rate Limiting / Retry
# ============================================================================

RATE_LIMIT_PER_HOUR = 600  # Canvas allows 600 requests per hour per token
RATE_LIMIT_WINDOW_SECONDS = 3600
MAX_RETRIES = 3  # Re-queues allowed for a retryable failure
RETRY_BASE_DELAY = 1.0  # Base delay for exponential backoff (seconds)
RETRY_MAX_DELAY = 16.0  # Maximum delay for exponential backoff (seconds)
RETRY_JITTER_RATIO = 0.2  # +/- 20% jitter

CB_FAILURE_THRESHOLD = 5
CB_RECOVERY_TIMEOUT = 60.0  # seconds

# Refresh-token exchange retries (transient failures only)
TOKEN_REFRESH_ATTEMPTS = 3
TOKEN_REFRESH_BASE_DELAY = 0.5

# ============================================================================
# Caching
# ============================================================================

CACHE_MAX_ENTRIES = 100
CACHE_DEFAULT_TTL = 15 * 60  # seconds

# Per-resource lifetimes (seconds)
RESOURCE_TTLS: dict[str, int] = {
    "courses": 30 * 60,
    "course": 30 * 60,
    "assignments": 15 * 60,
    "assignment": 15 * 60,
    "submissions": 10 * 60,
    "calendar": 60 * 60,
    "modules": 30 * 60,
    "module_items": 30 * 60,
    "analytics": 60 * 60,
    "user": 24 * 60 * 60,
}

CACHE_WILDCARD = "*"

# ============================================================================
# Pagination
# ============================================================================

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100  # Canvas allows up to 100 per page
MAX_PAGES = 10  # Safety ceiling for Link-header pagination

# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_CACHE_RESPONSE = "canvas:cache"
REDIS_KEY_CREDENTIAL = "canvas:credential"

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_AUTHORIZATION = "Authorization"
HEADER_RATE_LIMIT = "X-Rate-Limit-Limit"
HEADER_RATE_REMAINING = "X-Rate-Limit-Remaining"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_LINK = "Link"

# ============================================================================
# Canvas Endpoints
# ============================================================================


class CanvasEndpoints:
    """Relative Canvas REST paths (joined onto the API base URL)."""

    COURSES = "/courses"
    CALENDAR_EVENTS = "/calendar_events"
    CURRENT_USER = "/users/self"

    @staticmethod
    def course_detail(course_id: str) -> str:
        return f"/courses/{course_id}"

    @staticmethod
    def assignments(course_id: str) -> str:
        return f"/courses/{course_id}/assignments"

    @staticmethod
    def assignment_detail(course_id: str, assignment_id: str) -> str:
        return f"/courses/{course_id}/assignments/{assignment_id}"

    @staticmethod
    def assignment_submissions(course_id: str, assignment_id: str) -> str:
        return f"/courses/{course_id}/assignments/{assignment_id}/submissions"

    @staticmethod
    def course_modules(course_id: str) -> str:
        return f"/courses/{course_id}/modules"

    @staticmethod
    def module_items(course_id: str, module_id: str) -> str:
        return f"/courses/{course_id}/modules/{module_id}/items"

    @staticmethod
    def course_analytics(course_id: str) -> str:
        return f"/courses/{course_id}/analytics/student_summaries"


class CanvasOAuthEndpoints:
    """Absolute OAuth2 endpoints on a Canvas instance."""

    @staticmethod
    def token(instance_url: str) -> str:
        return f"{instance_url}/login/oauth2/token"

    @staticmethod
    def revoke(instance_url: str) -> str:
        return f"{instance_url}/login/oauth2/token"
