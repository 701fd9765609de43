"""Edits applied back to annotated document content.

Both the text helpers and the tree visitor return new values; inputs are never
mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Optional

from docket.core.parser import FENCES, extract_markers, scan_task_line

TASK_NODE_TYPES = ("taskItem", "task_item")
TASK_ID_ATTRS = ("taskId", "task_id")


def _line_task_id(line: str) -> Optional[str]:
    task_line = scan_task_line(line.rstrip("\r"))
    if task_line is None:
        return None
    _, ids = extract_markers(task_line.body)
    return ids[0] if ids else None


def _task_lines(lines: list[str]) -> Iterable[tuple[int, str]]:
    """Yield (index, task id) for every annotated task line outside code fences."""
    in_fence = False
    for idx, line in enumerate(lines):
        if line.lstrip().startswith(FENCES):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        task_id = _line_task_id(line)
        if task_id is not None:
            yield idx, task_id


def set_task_completion(text: str, inline_id: str, completed: bool) -> str:
    """Flip the checkbox of the line carrying inline_id. Other lines are untouched."""
    lines = text.split("\n")
    for idx, task_id in _task_lines(lines):
        if task_id != inline_id:
            continue
        line = lines[idx]
        box = line.index("[")
        mark = "x" if completed else " "
        lines[idx] = f"{line[: box + 1]}{mark}{line[box + 2 :]}"
    return "\n".join(lines)


def remove_task_lines(text: str, inline_ids: Iterable[str]) -> str:
    """Drop every task line whose marker is in inline_ids."""
    targets = set(inline_ids)
    if not targets:
        return text
    lines = text.split("\n")
    doomed = {idx for idx, task_id in _task_lines(lines) if task_id in targets}
    return "\n".join(line for idx, line in enumerate(lines) if idx not in doomed)


def _node_task_id(node: dict[str, Any]) -> Optional[str]:
    if node.get("type") not in TASK_NODE_TYPES:
        return None
    attrs = node.get("attrs") or {}
    for key in TASK_ID_ATTRS:
        if attrs.get(key):
            return str(attrs[key])
    return None


def prune_task_nodes(tree: dict[str, Any], task_ids: Iterable[str]) -> dict[str, Any]:
    """Return a copy of a block-content tree without the given task nodes.

    Nodes are dicts with ``type``, optional ``attrs`` and optional ``content``
    (list of child nodes). A list container emptied by the pruning is removed
    as well. The root is always kept.
    """
    targets = set(task_ids)

    def visit(node: dict[str, Any]) -> Optional[dict[str, Any]]:
        if _node_task_id(node) in targets:
            return None
        children = node.get("content")
        if not isinstance(children, list):
            return dict(node)
        kept = []
        for child in children:
            if not isinstance(child, dict):
                kept.append(child)
                continue
            result = visit(child)
            if result is not None:
                kept.append(result)
        if children and not kept and any(_node_task_id(c) for c in children if isinstance(c, dict)):
            return None
        copy = dict(node)
        copy["content"] = kept
        return copy

    pruned = visit(tree)
    if pruned is None:
        # Root itself was a task container that emptied out
        return {**tree, "content": []}
    return pruned
