"""ASGI middleware utilities for the checklist relay."""

from .request_context import (
    RequestIdMiddleware,
    bind_request_id,
    get_request_id,
    reset_request_id,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_request_id",
    "get_request_id",
    "reset_request_id",
]
