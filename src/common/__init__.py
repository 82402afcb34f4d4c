"""Common utilities for the audio archive services."""

__all__ = [
    "settings",
    "setup_otel",
    "setup_logging",
    "setup_metrics",
    "get_session",
]
