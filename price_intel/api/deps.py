"""API dependencies"""

from price_intel.core.clock import Clock, SystemClock
from price_intel.core.db import get_db


def get_clock() -> Clock:
    """Clock dependency (overridden in tests)."""
    return SystemClock()


__all__ = ["get_db", "get_clock"]
