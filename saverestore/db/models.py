"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.

A :class:`Node` is a tagged variant keyed by :class:`NodeType`: a folder
carries ``children``, a configuration carries ``configuration`` and a
snapshot carries ``snapshot``.  The other payloads stay empty.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Well-known id of the root folder, present in every initialised store.
ROOT_NODE_ID = "44bef5de-e8e6-4014-af37-b8f6c8a939a2"
ROOT_NODE_NAME = "Root folder"


class NodeType(str, Enum):
    FOLDER = "FOLDER"
    CONFIGURATION = "CONFIGURATION"
    SNAPSHOT = "SNAPSHOT"


@dataclass(frozen=True)
class ConfigPv:
    """A PV referenced by a configuration.

    Two ``ConfigPv`` objects are equal when name and provider match; the
    database ``id`` is ignored so that client supplied lists can be diffed
    against stored ones.
    """

    pv_name: str
    provider: str = "ca"
    id: Optional[int] = field(default=None, compare=False)


@dataclass
class PvValue:
    """A value read from the control system, with its alarm and time metadata."""

    value: Any
    alarm_severity: str = "NONE"
    alarm_status: str = "NONE"
    time: int = 0
    timens: int = 0
    sizes: tuple[int, ...] = ()
    data_type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.data_type is None:
            self.data_type = infer_data_type(self.value)
        if not self.sizes and isinstance(self.value, (list, tuple)):
            self.sizes = (len(self.value),)
        self.sizes = tuple(self.sizes)

    def value_json(self) -> str:
        """Serialise the value to a JSON string for storage."""
        if isinstance(self.value, tuple):
            return json.dumps(list(self.value))
        return json.dumps(self.value)


@dataclass
class SnapshotItem:
    config_pv: ConfigPv
    fetch_status: bool
    value: Optional[PvValue] = None


@dataclass
class ConfigurationData:
    description: str = ""
    pvs: list[ConfigPv] = field(default_factory=list)


@dataclass
class SnapshotData:
    config_id: str
    committed: bool = False
    comment: Optional[str] = None
    golden: bool = False
    items: list[SnapshotItem] = field(default_factory=list)


@dataclass
class Node:
    id: str
    name: str
    node_type: NodeType
    created_at: int
    updated_at: int
    username: Optional[str] = None
    parent_id: Optional[str] = None

    children: list[Node] = field(default_factory=list)
    configuration: Optional[ConfigurationData] = None
    snapshot: Optional[SnapshotData] = None

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    @property
    def is_root(self) -> bool:
        return self.id == ROOT_NODE_ID

    @property
    def pvs(self) -> list[ConfigPv]:
        """PV list of a configuration node (empty for other node types)."""
        return self.configuration.pvs if self.configuration else []

    @property
    def items(self) -> list[SnapshotItem]:
        """Item list of a snapshot node (empty for other node types)."""
        return self.snapshot.items if self.snapshot else []


def infer_data_type(value: Any) -> str:
    """Name the stored type of a PV value, e.g. ``DOUBLE`` or ``INTEGER_ARRAY``."""
    if isinstance(value, (list, tuple)):
        element = infer_data_type(value[0]) if value else "DOUBLE"
        return f"{element}_ARRAY"
    if isinstance(value, bool):
        return "BOOLEAN"
    if isinstance(value, int):
        return "INTEGER"
    if isinstance(value, float):
        return "DOUBLE"
    if isinstance(value, str):
        return "STRING"
    return "UNKNOWN"
