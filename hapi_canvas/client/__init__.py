"""
Client Module

The caller-facing Canvas API surface.
"""

from .resilient_client import CanvasResponse, ResilientApiClient, build_client

__all__ = [
    "CanvasResponse",
    "ResilientApiClient",
    "build_client",
]
