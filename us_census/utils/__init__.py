"""
Utilities package for the US Census metadata loader.

Exports shared helpers for logging, profiling and batching. Keep this package
lightweight and free of domain-specific logic.
"""

from us_census.utils.batching import chunked, safe_batch_size
from us_census.utils.logging import configure_logging, get_logger
from us_census.utils.profiler import ProfileStats, profile_block

__all__ = [
    "chunked",
    "safe_batch_size",
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
