"""
Utility functions for the presence tracker.
"""

from .time import datetime_to_ms, format_duration, ms_to_datetime, now_ms

__all__ = ["datetime_to_ms", "format_duration", "ms_to_datetime", "now_ms"]
