"""Snapshot capture: concurrent, timeout-bounded reads of configuration PVs."""

from saverestore.capture.engine import capture, read_pv, shutdown_executor
from saverestore.capture.sources import (
    InMemoryPvSource,
    PvValueSource,
    load_pv_source,
    pv_address,
)

__all__ = [
    "capture",
    "read_pv",
    "shutdown_executor",
    "InMemoryPvSource",
    "PvValueSource",
    "load_pv_source",
    "pv_address",
]
