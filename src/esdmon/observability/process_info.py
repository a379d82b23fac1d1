"""Process uptime and memory collection."""

import os
import time
from typing import Optional

import psutil

from .models import MemoryUsage, ProcessInfo

# Cached so PID lookup happens once per process
_process: Optional[psutil.Process] = None


def _get_process() -> psutil.Process:
    """Return a cached psutil.Process handle for this process."""
    global _process
    if _process is None:
        _process = psutil.Process(os.getpid())
    return _process


def _get_version() -> str:
    try:
        import importlib.metadata  # noqa: PLC0415

        return importlib.metadata.version("esdmon")
    except Exception:  # noqa: BLE001
        return "unknown"


def collect_process_info() -> ProcessInfo:
    """Collect pid, uptime and memory usage (synchronous, fast).

    Returns:
        ProcessInfo for the running server process.
    """
    proc = _get_process()
    mem = proc.memory_info()
    return ProcessInfo(
        pid=proc.pid,
        uptime_seconds=round(time.time() - proc.create_time(), 3),
        version=_get_version(),
        memory=MemoryUsage(
            rss_mb=round(mem.rss / (1024 * 1024), 2),
            vms_mb=round(mem.vms / (1024 * 1024), 2),
        ),
    )
