"""Error taxonomy shared by the node store, the snapshot layer and the services.

Per-PV read failures are *not* represented here: they are recorded on the
snapshot item (``fetch_status=False``) and never raised.
"""

from __future__ import annotations


class SaveRestoreError(Exception):
    """Base class for every error raised by the service."""


class NodeNotFoundError(SaveRestoreError, LookupError):
    """A node, configuration or snapshot id does not resolve."""


class SnapshotNotFoundError(NodeNotFoundError):
    """No snapshot (or no committed snapshot, where required) with that id."""


class InvalidArgumentError(SaveRestoreError, ValueError):
    """Structurally illegal request: root mutation, wrong node type, bad input."""


class InvalidParentError(InvalidArgumentError):
    """The requested parent does not exist or cannot hold the new node."""


class NameClashError(InvalidArgumentError):
    """A sibling with the same name and node type already exists."""
