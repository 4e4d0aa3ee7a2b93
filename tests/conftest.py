from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

from drmirror.executor import ExecutorError, SyncRequest, SyncResponse
from drmirror.indexer import iter_nodes
from drmirror.models import (
    Difference,
    Node,
    NodeKind,
    NodeStatus,
    SyncOutcome,
    SyncResult,
)

T0 = datetime(2026, 2, 19, 0, 0, tzinfo=UTC)


def ts(seconds: int = 0) -> datetime:
    return T0 + timedelta(seconds=seconds)


def mk_file(
    relpath: str,
    *,
    root: str = "/primary",
    size: int | str = 0,
    modified: datetime = T0,
    status: NodeStatus = NodeStatus.UNKNOWN,
) -> Node:
    return Node(
        id=f"{root}/{relpath}",
        name=relpath.rsplit("/", 1)[-1],
        kind=NodeKind.FILE,
        path=f"{root}/{relpath}",
        relative_path=relpath,
        modified=modified,
        size=size,
        status=status,
    )


def mk_dir(
    relpath: str,
    *children: Node,
    root: str = "/primary",
    modified: datetime = T0,
    status: NodeStatus = NodeStatus.UNKNOWN,
) -> Node:
    return Node(
        id=f"{root}/{relpath}",
        name=relpath.rsplit("/", 1)[-1],
        kind=NodeKind.DIRECTORY,
        path=f"{root}/{relpath}",
        relative_path=relpath,
        modified=modified,
        size=0,
        status=status,
        children=tuple(children),
    )


def mk_diff(
    relpath: str,
    status: NodeStatus,
    *,
    kind: NodeKind = NodeKind.FILE,
) -> Difference:
    node = mk_file(relpath) if kind == NodeKind.FILE else mk_dir(relpath)
    return Difference(
        path=relpath,
        name=node.name,
        kind=kind,
        status=status,
        primary=None if status == NodeStatus.DR_ONLY else node,
        dr=node if status != NodeStatus.PRIMARY_ONLY else None,
        summary="",
    )


class FakeProvider:
    """Serves shallow listings from full in-memory trees keyed by root."""

    def __init__(self, trees: dict[str, tuple[Node, ...]]) -> None:
        self.trees = trees
        self.calls: list[tuple[str, str | None]] = []

    async def list_nodes(self, root: str, path: str | None = None) -> list[Node]:
        self.calls.append((root, path))
        nodes: tuple[Node, ...] = self.trees[root]
        if path:
            nodes = next(
                (node.children for node in iter_nodes(nodes) if node.path == path), ()
            )
        return [replace(node, children=()) for node in nodes]


class FakeExecutor:
    def __init__(
        self,
        *,
        failures: dict[str, str] | None = None,
        error: str | None = None,
        on_submit=None,
    ) -> None:
        self.failures = failures or {}
        self.error = error
        self.on_submit = on_submit
        self.requests: list[SyncRequest] = []

    async def submit(self, request: SyncRequest) -> SyncResponse:
        self.requests.append(request)
        if self.error is not None:
            raise ExecutorError(self.error)
        results = []
        for op in request.operations:
            if op.path in self.failures:
                results.append(SyncResult(op.path, SyncOutcome.FAILED, self.failures[op.path]))
            else:
                results.append(SyncResult(op.path, SyncOutcome.SUCCESS, "ok"))
        if self.on_submit is not None:
            self.on_submit(request, results)
        return SyncResponse(tuple(results))
