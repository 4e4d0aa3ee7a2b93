from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from .config import CompareSettings
from .indexer import index_tree
from .models import Difference, Node, NodeKind, NodeStatus

SUMMARY_ONLY_PRIMARY = "Exists only on primary"
SUMMARY_ONLY_DR = "Exists only on DR"
SUMMARY_PRIMARY_NEWER = "Primary is newer"
SUMMARY_DR_NEWER = "DR is newer (primary is source of truth); sync will overwrite"
SUMMARY_IN_SYNC = "Files are in sync"
SUMMARY_LINK_TARGET = "Link target differs"


@dataclass(frozen=True)
class TreeComparison:
    primary: tuple[Node, ...]
    dr: tuple[Node, ...]
    differences: tuple[Difference, ...]

    def actionable(self) -> list[Difference]:
        return [diff for diff in self.differences if diff.is_actionable]

    def by_path(self) -> dict[str, Difference]:
        return {diff.path: diff for diff in self.differences}


def _seconds_newer(left: datetime, right: datetime) -> float:
    """Return how many seconds `left` is ahead of `right`."""
    if left.tzinfo is None:
        left = left.replace(tzinfo=UTC)
    if right.tzinfo is None:
        right = right.replace(tzinfo=UTC)
    return (left - right).total_seconds()


def compare_files(
    primary: Node, dr: Node, settings: CompareSettings
) -> tuple[NodeStatus, str]:
    tolerance = settings.mtime_tolerance_seconds
    delta = _seconds_newer(primary.modified, dr.modified)
    primary_newer = delta > tolerance
    dr_newer = -delta > tolerance
    size_differs = primary.size_bytes != dr.size_bytes

    if primary.link_target != dr.link_target:
        return NodeStatus.DIFFERENT, SUMMARY_LINK_TARGET
    if primary_newer and not size_differs:
        return NodeStatus.DIFFERENT, SUMMARY_PRIMARY_NEWER
    if size_differs:
        return (
            NodeStatus.DIFFERENT,
            f"Size differs: primary={primary.size}, DR={dr.size}",
        )
    if dr_newer and settings.dr_newer_forces_sync:
        return NodeStatus.DIFFERENT, SUMMARY_DR_NEWER
    return NodeStatus.SYNCED, SUMMARY_IN_SYNC


def _annotate(
    nodes: Iterable[Node], statuses: dict[str, NodeStatus]
) -> tuple[Node, ...]:
    annotated: list[Node] = []
    for node in nodes:
        status = statuses.get(node.relative_path, node.status)
        children = _annotate(node.children, statuses) if node.children else ()
        annotated.append(replace(node, status=status, children=children))
    return tuple(annotated)


def compare_trees(
    primary_tree: Iterable[Node],
    dr_tree: Iterable[Node],
    settings: CompareSettings | None = None,
) -> TreeComparison:
    resolved = settings or CompareSettings()
    primary_tree = tuple(primary_tree)
    dr_tree = tuple(dr_tree)
    primary_index = index_tree(primary_tree)
    dr_index = index_tree(dr_tree)

    primary_status: dict[str, NodeStatus] = {}
    dr_status: dict[str, NodeStatus] = {}
    differences: list[Difference] = []

    for relpath in sorted(set(primary_index) | set(dr_index)):
        p = primary_index.get(relpath)
        d = dr_index.get(relpath)

        if p and not d:
            primary_status[relpath] = NodeStatus.PRIMARY_ONLY
            differences.append(
                Difference(
                    path=relpath,
                    name=p.name,
                    kind=p.kind,
                    status=NodeStatus.PRIMARY_ONLY,
                    primary=p,
                    summary=SUMMARY_ONLY_PRIMARY,
                )
            )
            continue

        if d and not p:
            dr_status[relpath] = NodeStatus.DR_ONLY
            differences.append(
                Difference(
                    path=relpath,
                    name=d.name,
                    kind=d.kind,
                    status=NodeStatus.DR_ONLY,
                    dr=d,
                    summary=SUMMARY_ONLY_DR,
                )
            )
            continue

        assert p is not None and d is not None

        if p.kind != d.kind:
            primary_status[relpath] = dr_status[relpath] = NodeStatus.DIFFERENT
            differences.append(
                Difference(
                    path=relpath,
                    name=p.name,
                    kind=p.kind,
                    status=NodeStatus.DIFFERENT,
                    primary=p,
                    dr=d,
                    summary=(
                        f"Type mismatch: primary is {p.kind.value}, DR is {d.kind.value}"
                    ),
                )
            )
            continue

        if p.kind == NodeKind.DIRECTORY:
            # divergence below a directory shows up on its descendants only
            primary_status[relpath] = dr_status[relpath] = NodeStatus.SYNCED
            continue

        status, summary = compare_files(p, d, resolved)
        primary_status[relpath] = dr_status[relpath] = status
        if status == NodeStatus.DIFFERENT:
            differences.append(
                Difference(
                    path=relpath,
                    name=p.name,
                    kind=NodeKind.FILE,
                    status=status,
                    primary=p,
                    dr=d,
                    summary=summary,
                )
            )

    return TreeComparison(
        primary=_annotate(primary_tree, primary_status),
        dr=_annotate(dr_tree, dr_status),
        differences=tuple(differences),
    )


@dataclass
class FolderCounts:
    synced: int = 0
    different: int = 0
    primary_only: int = 0
    dr_only: int = 0
    unknown: int = 0

    @property
    def changed(self) -> int:
        return self.different + self.primary_only + self.dr_only


def _count_into(counts: FolderCounts, node: Node) -> None:
    if node.status == NodeStatus.SYNCED:
        counts.synced += 1
    elif node.status == NodeStatus.DIFFERENT:
        counts.different += 1
    elif node.status == NodeStatus.PRIMARY_ONLY:
        counts.primary_only += 1
    elif node.status == NodeStatus.DR_ONLY:
        counts.dr_only += 1
    else:
        counts.unknown += 1


def folder_counts(nodes: Iterable[Node]) -> dict[str, FolderCounts]:
    """Aggregate descendant statuses for every directory of an annotated tree."""
    result: dict[str, FolderCounts] = {}

    def visit(node: Node) -> FolderCounts:
        counts = FolderCounts()
        for child in node.children:
            _count_into(counts, child)
            if child.is_dir:
                nested = visit(child)
                counts.synced += nested.synced
                counts.different += nested.different
                counts.primary_only += nested.primary_only
                counts.dr_only += nested.dr_only
                counts.unknown += nested.unknown
        result[node.relative_path] = counts
        return counts

    for node in nodes:
        if node.is_dir:
            visit(node)
    return result


def has_changes_beneath(node: Node) -> bool:
    return any(
        child.status not in {NodeStatus.SYNCED, NodeStatus.UNKNOWN}
        or has_changes_beneath(child)
        for child in node.children
    )
