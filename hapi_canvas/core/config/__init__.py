"""
Configuration Module

Centralized, type-safe configuration for the Canvas client layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, retry/backoff parameters, resource TTLs, endpoints

Usage:
------
```python
from hapi_canvas.core.config import get_settings
from hapi_canvas.core.config.constants import RequestPriority

settings = get_settings()
capacity = settings.rate_limit.RATE_LIMIT_PER_HOUR
```

Environment Variables:
---------------------
```bash
CANVAS_INSTANCE_URL=https://canvas.university.edu
CANVAS_CLIENT_ID=10000000000001
RATE_LIMIT_PER_HOUR=600
CB_FAILURE_THRESHOLD=5
CB_RECOVERY_TIMEOUT=60
CACHE_MAX_ENTRIES=100
CACHE_PERSISTENT_ENABLED=false
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from hapi_canvas.core.config.constants import (
    CACHE_DEFAULT_TTL,
    CACHE_MAX_ENTRIES,
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT,
    MAX_PAGES,
    MAX_RETRIES,
    RATE_LIMIT_PER_HOUR,
    RESOURCE_TTLS,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
    CanvasEndpoints,
    CircuitState,
    ConnectionState,
    ErrorKind,
    RequestPriority,
)
from hapi_canvas.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "reload_settings",
    # Enums
    "RequestPriority",
    "CircuitState",
    "ConnectionState",
    "ErrorKind",
    "CanvasEndpoints",
    # Defaults
    "RATE_LIMIT_PER_HOUR",
    "MAX_RETRIES",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "CB_FAILURE_THRESHOLD",
    "CB_RECOVERY_TIMEOUT",
    "CACHE_DEFAULT_TTL",
    "CACHE_MAX_ENTRIES",
    "RESOURCE_TTLS",
    "MAX_PAGES",
]
