"""
HapiAI Canvas client.

Resilient async client for the Canvas LMS REST API: priority-queued token
bucket rate limiting, circuit breaking, response caching and transparent
OAuth token refresh.

Usage:
------
```python
from hapi_canvas import build_client

async with build_client() as client:
    courses = await client.get_courses(enrollment_state="active")
```
"""

from hapi_canvas.client import CanvasResponse, ResilientApiClient, build_client
from hapi_canvas.core.config.constants import RequestPriority

__version__ = "0.1.0"

__all__ = [
    "CanvasResponse",
    "RequestPriority",
    "ResilientApiClient",
    "build_client",
]
