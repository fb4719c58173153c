"""Common utilities for VisionClaw."""

from visionclaw.common.logging import get_logger, setup_logging
from visionclaw.common.health import HealthChecker, HealthStatus
from visionclaw.common.events import EventBus, Event

__all__ = [
    "get_logger",
    "setup_logging",
    "HealthChecker",
    "HealthStatus",
    "EventBus",
    "Event",
]
