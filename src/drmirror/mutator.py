from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from pathlib import PurePosixPath

from .models import Node, NodeKind, NodeStatus


def _join(root: str, relpath: str) -> str:
    sep = "\\" if "\\" in root and "/" not in root else "/"
    base = root.rstrip("/\\")
    return base + sep + relpath.replace("/", sep)


def _parts(relpath: str) -> tuple[str, ...]:
    return PurePosixPath(relpath).parts


def find_node(tree: Iterable[Node], relative_path: str) -> Node | None:
    for node in tree:
        if node.relative_path == relative_path:
            return node
        if node.children and relative_path.startswith(f"{node.relative_path}/"):
            found = find_node(node.children, relative_path)
            if found is not None:
                return found
    return None


def _rebased(node: Node, root_base_path: str) -> Node:
    return replace(
        node,
        id=_join(root_base_path, node.relative_path),
        path=_join(root_base_path, node.relative_path),
        status=NodeStatus.SYNCED,
        children=tuple(_rebased(child, root_base_path) for child in node.children),
    )


def _sorted(nodes: Iterable[Node]) -> tuple[Node, ...]:
    return tuple(sorted(nodes, key=lambda node: (not node.is_dir, node.name.lower())))


def _insert(
    nodes: tuple[Node, ...],
    parts: tuple[str, ...],
    depth: int,
    root_base_path: str,
    inserted: Node,
) -> tuple[Node, ...]:
    relpath = "/".join(parts[: depth + 1])
    if depth == len(parts) - 1:
        kept = [node for node in nodes if node.relative_path != relpath]
        return _sorted([*kept, inserted])

    for index, node in enumerate(nodes):
        if node.relative_path == relpath and node.is_dir:
            updated = replace(
                node,
                children=_insert(
                    node.children, parts, depth + 1, root_base_path, inserted
                ),
            )
            return nodes[:index] + (updated,) + nodes[index + 1 :]

    intermediate = Node(
        id=_join(root_base_path, relpath),
        name=parts[depth],
        kind=NodeKind.DIRECTORY,
        path=_join(root_base_path, relpath),
        relative_path=relpath,
        modified=inserted.modified,
        size=0,
        status=NodeStatus.SYNCED,
        children=_insert((), parts, depth + 1, root_base_path, inserted),
    )
    kept = [node for node in nodes if node.relative_path != relpath]
    return _sorted([*kept, intermediate])


def add_node(
    tree: Iterable[Node], root_base_path: str, source: Node
) -> tuple[Node, ...]:
    """Insert `source` (and its subtree) under `root_base_path`.

    Missing parent directories are synthesized with the source's timestamp.
    The inserted subtree is re-rooted onto `root_base_path` and marked synced;
    an existing node at the same relative path is replaced.
    """
    parts = _parts(source.relative_path)
    if not parts:
        return tuple(tree)
    return _insert(
        tuple(tree), parts, 0, root_base_path, _rebased(source, root_base_path)
    )


def remove_node(tree: Iterable[Node], relative_path: str) -> tuple[Node, ...]:
    kept: list[Node] = []
    for node in tree:
        if node.relative_path == relative_path:
            continue
        if node.children and relative_path.startswith(f"{node.relative_path}/"):
            node = replace(node, children=remove_node(node.children, relative_path))
        kept.append(node)
    return tuple(kept)


def _map_node(
    tree: Iterable[Node], relative_path: str, change: dict[str, object]
) -> tuple[Node, ...]:
    updated: list[Node] = []
    for node in tree:
        if node.relative_path == relative_path:
            node = replace(node, **change)
        elif node.children and relative_path.startswith(f"{node.relative_path}/"):
            node = replace(
                node, children=_map_node(node.children, relative_path, change)
            )
        updated.append(node)
    return tuple(updated)


def update_node(
    tree: Iterable[Node], relative_path: str, source: Node
) -> tuple[Node, ...]:
    return _map_node(
        tree,
        relative_path,
        {
            "modified": source.modified,
            "size": source.size,
            "link_target": source.link_target,
            "status": NodeStatus.SYNCED,
        },
    )


def splice_children(
    tree: Iterable[Node], relative_path: str, children: Iterable[Node]
) -> tuple[Node, ...]:
    """Attach a freshly listed directory level below `relative_path`."""
    return _map_node(tree, relative_path, {"children": _sorted(children)})
