"""Utilities for rendering the node tree in the CLI."""

from __future__ import annotations

from typing import Callable

from saverestore.db.models import Node, NodeType

_ICONS = {
    NodeType.FOLDER: "📁",
    NodeType.CONFIGURATION: "⚙️ ",
    NodeType.SNAPSHOT: "📷",
}


def format_node(node: Node) -> str:
    label = f"{_ICONS[node.node_type]} {node.name}  [{node.id}]"
    if node.snapshot is not None and node.snapshot.golden:
        label += "  ★ golden"
    return label


def render_tree(root: Node, children_of: Callable[[str], list[Node]]) -> str:
    """Render the subtree below ``root`` as an ASCII tree.

    Args:
        root: Node to start from.
        children_of: Returns the direct children of a node id.

    Returns:
        String representation of the tree.
    """
    lines = [format_node(root)]

    def _visit(node: Node, prefix: str, is_last: bool) -> None:
        connector = "└── " if is_last else "├── "
        lines.append(prefix + connector + format_node(node))
        child_prefix = prefix + ("    " if is_last else "│   ")
        kids = children_of(node.id)
        for i, child in enumerate(kids):
            _visit(child, child_prefix, i == len(kids) - 1)

    top = children_of(root.id)
    for i, child in enumerate(top):
        _visit(child, "", i == len(top) - 1)

    return "\n".join(lines)
