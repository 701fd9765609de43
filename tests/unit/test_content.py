"""Unit tests for document content edits."""

from docket.core.content import prune_task_nodes, remove_task_lines, set_task_completion

TEXT = "\n".join(
    [
        "# Plan",
        "- [ ] Alpha <!-- task-id:a -->",
        "  - [x] Beta <!-- task-id:b -->",
        "```",
        "- [ ] Code <!-- task-id:a -->",
        "```",
        "notes",
    ]
)


def test_set_task_completion_flips_only_target() -> None:
    """Only the line with the given id changes; fenced copies stay."""
    lines = set_task_completion(TEXT, "a", True).split("\n")
    assert lines[1] == "- [x] Alpha <!-- task-id:a -->"
    assert lines[2] == "  - [x] Beta <!-- task-id:b -->"
    assert lines[4] == "- [ ] Code <!-- task-id:a -->"
    assert set_task_completion(TEXT, "b", False).split("\n")[2] == "  - [ ] Beta <!-- task-id:b -->"


def test_set_task_completion_unknown_id_is_identity() -> None:
    """Unknown ids leave the text unchanged."""
    assert set_task_completion(TEXT, "zzz", True) == TEXT


def test_remove_task_lines() -> None:
    """Lines of removed tasks disappear; everything else is kept."""
    result = remove_task_lines(TEXT, ["b"]).split("\n")
    assert "  - [x] Beta <!-- task-id:b -->" not in result
    assert len(result) == len(TEXT.split("\n")) - 1
    assert remove_task_lines(TEXT, []) == TEXT


def test_prune_task_nodes_returns_new_tree() -> None:
    """Matching task nodes are dropped, emptied task lists too; input untouched."""
    tree = {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": "hi"}]},
            {
                "type": "taskList",
                "content": [
                    {"type": "taskItem", "attrs": {"taskId": "a", "checked": False}},
                ],
            },
            {
                "type": "taskList",
                "content": [
                    {"type": "taskItem", "attrs": {"taskId": "b"}},
                    {"type": "taskItem", "attrs": {"taskId": "c"}},
                ],
            },
        ],
    }
    pruned = prune_task_nodes(tree, ["a", "b"])

    assert [n["type"] for n in pruned["content"]] == ["paragraph", "taskList"]
    assert pruned["content"][1]["content"] == [{"type": "taskItem", "attrs": {"taskId": "c"}}]
    assert len(tree["content"]) == 3
    assert len(tree["content"][2]["content"]) == 2


def test_prune_task_nodes_without_ids_still_copies() -> None:
    """An empty id list yields an equal tree that is not the input object."""
    tree = {"type": "doc", "content": [{"type": "taskItem", "attrs": {"taskId": "a"}}]}
    pruned = prune_task_nodes(tree, [])

    assert pruned == tree
    assert pruned is not tree
    assert pruned["content"] is not tree["content"]
