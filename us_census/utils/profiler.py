"""
Profiling utilities for the US Census metadata loader.

Measures wall-clock time (perf_counter), peak RSS (psutil, sampled by a
background thread) and a CPU percent snapshot for a block of code. The
ingestion coordinator wraps each endpoint in `profile_block` so the run
summary can show where time and memory went: a large `variables.json` is
parsed fully in memory before it is written.

Usage:
    from us_census.utils.profiler import profile_block

    with profile_block("acs/acs5 2020") as stats:
        ingest()

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Measurements of one profiled block.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)


class _RssSampler:
    """Track the peak resident set size of a process from a daemon thread."""

    def __init__(self, process: psutil.Process, interval_seconds: float) -> None:
        self._process = process
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="rss-sampler", daemon=True)
        self.peak = process.memory_info().rss

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                rss = self._process.memory_info().rss
            except psutil.Error:
                return
            if rss > self.peak:
                self.peak = rss
            self._stop.wait(timeout=self._interval)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> Optional[int]:
        self._stop.set()
        self._thread.join(timeout=1.0)
        return self.peak if self.peak > 0 else None


@contextlib.contextmanager
def profile_block(label: str, sample_interval_ms: int = 50) -> Generator[ProfileStats, None, None]:
    """
    Context manager to profile a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    sample_interval_ms : int
        Interval in milliseconds for RSS sampling. Lower = more accurate but higher overhead.

    Notes
    -----
    Stats are filled in even when the block raises.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    sampler = _RssSampler(process, sample_interval_ms / 1000.0)

    # First cpu_percent call only primes the counter
    process.cpu_percent(interval=None)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        stats.peak_rss_bytes = sampler.stop()
        stats.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
