"""Shared enums for the link shortener.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "WatchBackend", "WatchState"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    NO_OP = "no_op"
    ERROR = "error"


class WatchBackend(StrEnum):
    """Mechanism a live view uses to learn about mutations."""

    PUBSUB = "pubsub"
    POLL = "poll"


class WatchState(StrEnum):
    """Lifecycle of a single link watch."""

    OPEN = "open"
    DELIVERING = "delivering"
    CLOSED = "closed"
