"""Concurrent snapshot capture.

Every PV of a configuration is read as one task on a shared, bounded
``ThreadPoolExecutor``.  Each read has its own timeout, counted from the
moment a worker picks the read up; time spent waiting in the queue behind
other captures does not count against it.  A slow or failing PV only fails
its own item, and a capture always returns exactly one item per PV.
"""

from __future__ import annotations

import dataclasses
import json
import threading
from concurrent.futures import FIRST_COMPLETED, Executor, ThreadPoolExecutor, wait
from time import monotonic
from typing import Any, Iterable, Optional, Union

from loguru import logger

from saverestore.capture.sources import PvValueSource, pv_address
from saverestore.config import settings
from saverestore.db.models import ConfigPv, Node, PvValue, SnapshotItem

# How often capture() checks running reads against their timeout.
_POLL_INTERVAL = 0.05

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    """Return the process-wide read pool, creating it on first use."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=settings.pv_read_workers, thread_name_prefix="pv-read"
            )
        return _executor


def shutdown_executor() -> None:
    """Shut the shared pool down; a later capture starts a fresh one."""
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=False, cancel_futures=True)
            _executor = None


def _plain(value: Any) -> Any:
    """Turn array-like and binary values into lists of plain Python values."""
    if hasattr(value, "tolist"):
        return value.tolist()
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _storable(value: Any) -> PvValue:
    """Wrap ``value`` as a :class:`PvValue` whose value can be stored as JSON.

    Raises:
        TypeError: The value has no JSON representation.
    """
    if not isinstance(value, PvValue):
        value = PvValue(value=value)
    plain = _plain(value.value)
    json.dumps(plain)
    if plain is value.value:
        return value
    return dataclasses.replace(
        value,
        value=plain,
        data_type=None if value.data_type == "UNKNOWN" else value.data_type,
    )


def read_pv(source: PvValueSource, config_pv: ConfigPv, timeout: float) -> SnapshotItem:
    """Read one PV and wrap the outcome in a :class:`SnapshotItem`.

    Never raises.  Exceptions from the source, a ``None`` result, a value
    that cannot be stored and a result that arrives after ``timeout``
    seconds all give ``fetch_status=False``.
    """
    address = pv_address(config_pv.pv_name, config_pv.provider)
    start = monotonic()
    try:
        value = source.read(config_pv.pv_name, config_pv.provider, timeout)
    except Exception as exc:
        logger.warning("Failed to read {}: {}", address, exc)
        return SnapshotItem(config_pv=config_pv, fetch_status=False)

    elapsed = monotonic() - start
    if elapsed > timeout:
        logger.warning("Read of {} took {:.3f}s (timeout {}s), discarding", address, elapsed, timeout)
        return SnapshotItem(config_pv=config_pv, fetch_status=False)
    if value is None:
        logger.warning("No value for {}", address)
        return SnapshotItem(config_pv=config_pv, fetch_status=False)
    try:
        value = _storable(value)
    except (TypeError, ValueError) as exc:
        logger.warning("Value of {} cannot be stored: {}", address, exc)
        return SnapshotItem(config_pv=config_pv, fetch_status=False)
    return SnapshotItem(config_pv=config_pv, fetch_status=True, value=value)


class _Read:
    """One queued PV read that remembers when a worker started it."""

    def __init__(self, source: PvValueSource, config_pv: ConfigPv, timeout: float) -> None:
        self.source = source
        self.config_pv = config_pv
        self.timeout = timeout
        self.started: Optional[float] = None

    def __call__(self) -> SnapshotItem:
        self.started = monotonic()
        return read_pv(self.source, self.config_pv, self.timeout)

    def overdue(self, now: float) -> bool:
        return self.started is not None and now - self.started > self.timeout + _POLL_INTERVAL


def capture(
    pvs: Union[Node, Iterable[ConfigPv]],
    source: PvValueSource,
    *,
    timeout: Optional[float] = None,
    executor: Optional[Executor] = None,
) -> list[SnapshotItem]:
    """Read every PV concurrently and return one item per PV, in PV order.

    Args:
        pvs: A configuration node or an iterable of :class:`ConfigPv`.
        source: Where values come from.
        timeout: Per-PV timeout in seconds.  Defaults to
            ``settings.pv_read_timeout``.
        executor: Pool to run the reads on.  Defaults to the shared pool.

    Returns:
        Items in the order of ``pvs``.  Reads still running ``timeout``
        seconds after they started are abandoned and reported with
        ``fetch_status=False``; reads waiting for a free worker are waited
        for.
    """
    pv_list = list(pvs.pvs if isinstance(pvs, Node) else pvs)
    if not pv_list:
        return []

    timeout = settings.pv_read_timeout if timeout is None else timeout
    pool = executor or get_executor()

    start = monotonic()
    future_to_read = {}
    for index, pv in enumerate(pv_list):
        read = _Read(source, pv, timeout)
        future_to_read[pool.submit(read)] = (index, read)

    results: dict[int, SnapshotItem] = {}
    pending = set(future_to_read)
    while pending:
        done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
        for future in done:
            index, read = future_to_read[future]
            if not future.cancelled():
                results[index] = future.result()
        now = monotonic()
        for future in list(pending):
            index, read = future_to_read[future]
            if read.overdue(now):
                pending.discard(future)
                logger.warning(
                    "Read of {} still running after {}s, abandoning",
                    pv_address(read.config_pv.pv_name, read.config_pv.provider),
                    timeout,
                )

    items = [
        results.get(index) or SnapshotItem(config_pv=pv, fetch_status=False)
        for index, pv in enumerate(pv_list)
    ]
    failed = sum(1 for item in items if not item.fetch_status)
    logger.info(
        "Captured {} PV(s) in {:.0f} ms, {} failed",
        len(items),
        (monotonic() - start) * 1000,
        failed,
    )
    return items
