"""PV value sources.

A source is anything with a ``read(pv_name, provider, timeout)`` method that
returns a :class:`~saverestore.db.models.PvValue`, or ``None`` when the PV
could not be read.  The control-system protocol itself lives outside this
package; deployments point ``PV_SOURCE`` at their own implementation.
"""

from __future__ import annotations

import importlib
import threading
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from loguru import logger

from saverestore.db.models import PvValue
from saverestore.exceptions import InvalidArgumentError


@runtime_checkable
class PvValueSource(Protocol):
    def read(self, pv_name: str, provider: str, timeout: float) -> Optional[PvValue]:
        ...


def pv_address(pv_name: str, provider: str) -> str:
    """Return the ``provider://name`` address of a PV."""
    return f"{provider}://{pv_name}"


class InMemoryPvSource:
    """Dictionary backed source, keyed by :func:`pv_address`.

    Stored entries may be a :class:`PvValue`, a plain Python value (wrapped
    on read), an exception instance (raised on read) or a zero-argument
    callable returning one of those.  Unknown PVs read as ``None``.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self._lock = threading.Lock()

    def set(self, pv_name: str, value: Any, provider: str = "ca") -> None:
        with self._lock:
            self._values[pv_address(pv_name, provider)] = value

    def remove(self, pv_name: str, provider: str = "ca") -> None:
        with self._lock:
            self._values.pop(pv_address(pv_name, provider), None)

    def read(self, pv_name: str, provider: str, timeout: float) -> Optional[PvValue]:
        with self._lock:
            entry = self._values.get(pv_address(pv_name, provider))
        if callable(entry):
            entry = entry()
        if isinstance(entry, BaseException):
            raise entry
        if entry is None or isinstance(entry, PvValue):
            return entry
        return PvValue(value=entry)


def load_pv_source(path: str) -> PvValueSource:
    """Resolve a ``"package.module:attribute"`` path into a source.

    The attribute may be a source instance, a class or a factory function;
    the latter two are called without arguments.  An empty path gives an
    empty :class:`InMemoryPvSource`.

    Raises:
        InvalidArgumentError: Malformed path or the result has no ``read``.
    """
    if not path:
        logger.info("No PV source configured, using an empty in-memory source")
        return InMemoryPvSource()

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise InvalidArgumentError(f"PV source must look like 'module:attribute', got {path!r}")

    target = getattr(importlib.import_module(module_name), attr)
    if not isinstance(target, PvValueSource) or isinstance(target, type):
        target = target()
    if not isinstance(target, PvValueSource):
        raise InvalidArgumentError(f"{path!r} does not provide a read(pv_name, provider, timeout) method")

    logger.info("Using PV source {}", path)
    return target
