from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from .config import DEFAULT_COMMAND_TIMEOUT, MAX_PATH_LENGTH
from .indexer import iter_nodes
from .links import map_link_target
from .models import (
    ACTIONABLE_STATUSES,
    Node,
    NodeKind,
    NodeStatus,
    SyncOperation,
    SyncOutcome,
    SyncResult,
)
from .mutator import add_node, find_node, remove_node, update_node
from .payloads import PayloadError, parse_results
from .process import ParseError, ProcessError, run_json_command
from .provider import has_parent_segment, validate_root_path

logger = logging.getLogger(__name__)


class ExecutorError(RuntimeError):
    """The executor could not run the batch; no partial application is known."""


class InvalidOperationError(ValueError):
    pass


@dataclass(frozen=True)
class SyncRequest:
    primary_root: str
    dr_root: str
    operations: tuple[SyncOperation, ...]

    def to_payload(self) -> dict[str, object]:
        return {
            "primaryRoot": self.primary_root,
            "drRoot": self.dr_root,
            "operations": [op.to_payload() for op in self.operations],
        }


@dataclass(frozen=True)
class SyncResponse:
    results: tuple[SyncResult, ...]


def validate_operations(operations: Iterable[object]) -> tuple[SyncOperation, ...]:
    """Reject structurally broken operations before anything is dispatched."""
    validated: list[SyncOperation] = []
    for index, op in enumerate(operations):
        if not isinstance(op, SyncOperation):
            raise InvalidOperationError(f"operation #{index} is not a SyncOperation: {op!r}")
        if not isinstance(op.path, str) or not op.path:
            raise InvalidOperationError(f"operation #{index} has no path")
        if op.status not in ACTIONABLE_STATUSES:
            raise InvalidOperationError(
                f"operation #{index} ({op.path}) has a non-actionable status: {op.status!r}"
            )
        if not isinstance(op.kind, NodeKind):
            raise InvalidOperationError(f"operation #{index} ({op.path}) has no kind")
        validated.append(op)
    return tuple(validated)


def operation_path_error(path: str) -> str | None:
    if path.startswith(("/", "\\")) or path[1:3] in {":/", ":\\"}:
        return "absolute paths are not allowed"
    if has_parent_segment(path):
        return "path escapes the tree root"
    if len(path) > MAX_PATH_LENGTH:
        return "path is too long"
    return None


def partition_operations(
    operations: Iterable[SyncOperation],
) -> tuple[tuple[SyncOperation, ...], tuple[SyncResult, ...]]:
    """Split a batch into dispatchable operations and per-item rejections."""
    accepted: list[SyncOperation] = []
    rejected: list[SyncResult] = []
    for op in operations:
        reason = operation_path_error(op.path)
        if reason is None:
            accepted.append(op)
        else:
            logger.warning("rejecting %s: %s", op.path, reason)
            rejected.append(SyncResult(op.path, SyncOutcome.FAILED, f"rejected: {reason}"))
    return tuple(accepted), tuple(rejected)


class SyncExecutor(Protocol):
    async def submit(self, request: SyncRequest) -> SyncResponse: ...


class CommandSyncExecutor:
    """Hands the whole batch to an external command in one invocation."""

    def __init__(
        self, command: Sequence[str], timeout: float = DEFAULT_COMMAND_TIMEOUT
    ) -> None:
        if not command:
            raise ExecutorError("sync command is empty")
        self.command = tuple(command)
        self.timeout = timeout

    async def submit(self, request: SyncRequest) -> SyncResponse:
        operations, rejected = partition_operations(
            validate_operations(request.operations)
        )
        if not operations:
            return SyncResponse(rejected)
        validate_root_path(request.primary_root)
        validate_root_path(request.dr_root)
        argv = [
            *self.command,
            "--primary-root",
            request.primary_root,
            "--dr-root",
            request.dr_root,
            "--operations-json",
            json.dumps([op.to_payload() for op in operations]),
        ]
        result = await run_json_command(argv, timeout=self.timeout)
        if isinstance(result, ProcessError):
            raise ExecutorError(result.message)
        if isinstance(result, ParseError):
            raise ExecutorError(
                f"failed to parse sync output: {result.message}; raw: {result.raw_output!r}"
            )
        try:
            return SyncResponse(tuple(parse_results(result.body)) + rejected)
        except PayloadError as exc:
            raise ExecutorError(str(exc)) from exc


def _remove_local(path: Path) -> bool:
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def _link_local(source: Path, destination: Path, target: str) -> None:
    _remove_local(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, destination)
    if os.utime in os.supports_follow_symlinks:
        st = source.lstat()
        os.utime(
            destination,
            ns=(st.st_atime_ns, st.st_mtime_ns),
            follow_symlinks=False,
        )


def _copy_local(source: Path, destination: Path) -> None:
    if destination.is_symlink() or (
        destination.exists() and source.is_dir() != destination.is_dir()
    ):
        _remove_local(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
        shutil.copystat(source, destination)
        return
    shutil.copyfile(source, destination)
    st = source.stat()
    os.chmod(destination, st.st_mode & 0o7777)
    os.utime(destination, ns=(st.st_atime_ns, st.st_mtime_ns))


class LocalSyncExecutor:
    """Applies operations between two roots on the local filesystem."""

    def _apply(self, primary_root: Path, dr_root: Path, op: SyncOperation) -> SyncResult:
        source = primary_root / op.path
        destination = dr_root / op.path
        try:
            if op.status == NodeStatus.DR_ONLY:
                if _remove_local(destination):
                    return SyncResult(op.path, SyncOutcome.SUCCESS, "deleted from DR")
                return SyncResult(op.path, SyncOutcome.SUCCESS, "already absent on DR")
            if source.is_symlink():
                target = map_link_target(
                    primary_root, dr_root, op.path, os.readlink(source)
                )
                _link_local(source, destination, target)
            elif source.exists():
                _copy_local(source, destination)
            else:
                return SyncResult(op.path, SyncOutcome.FAILED, "missing on primary")
            verb = "created on DR" if op.status == NodeStatus.PRIMARY_ONLY else "overwritten on DR"
            return SyncResult(op.path, SyncOutcome.SUCCESS, verb)
        except OSError as exc:
            return SyncResult(op.path, SyncOutcome.FAILED, str(exc))

    def _run(
        self, request: SyncRequest, operations: Sequence[SyncOperation]
    ) -> list[SyncResult]:
        primary_root = Path(request.primary_root).expanduser()
        dr_root = Path(request.dr_root).expanduser()
        if not primary_root.is_dir():
            raise ExecutorError(f"primary root not found: {primary_root}")
        if not dr_root.is_dir():
            raise ExecutorError(f"DR root not found: {dr_root}")
        results = []
        for op in operations:
            result = self._apply(primary_root, dr_root, op)
            if not result.ok:
                logger.warning("%s %s failed: %s", op.action, op.path, result.message)
            results.append(result)
        return results

    async def submit(self, request: SyncRequest) -> SyncResponse:
        operations, rejected = partition_operations(
            validate_operations(request.operations)
        )
        results = await asyncio.to_thread(self._run, request, operations)
        return SyncResponse(tuple(results) + rejected)


def _shallow(nodes: Iterable[Node]) -> list[Node]:
    return [replace(node, children=()) for node in nodes]


class SimulatedSyncExecutor:
    """Fully in-memory mirror: applies operations with the tree mutator.

    The same object serves as the tree provider, so a reload after a sync sees
    the mutated DR tree.
    """

    def __init__(
        self,
        primary_root: str,
        dr_root: str,
        primary: Iterable[Node],
        dr: Iterable[Node],
        failures: dict[str, str] | None = None,
    ) -> None:
        self.primary_root = primary_root
        self.dr_root = dr_root
        self.primary = tuple(primary)
        self.dr = tuple(dr)
        # relative path -> message; those operations fail without touching DR
        self.failures = dict(failures or {})

    def _tree(self, root: str) -> tuple[Node, ...]:
        if root == self.primary_root:
            return self.primary
        if root == self.dr_root:
            return self.dr
        raise ExecutorError(f"unknown root: {root}")

    async def list_nodes(self, root: str, path: str | None = None) -> list[Node]:
        tree = self._tree(root)
        if not path or path == root:
            return _shallow(tree)
        for node in iter_nodes(tree):
            if node.path == path:
                return _shallow(node.children)
        return []

    def _apply(self, op: SyncOperation) -> SyncResult:
        if op.path in self.failures:
            return SyncResult(op.path, SyncOutcome.FAILED, self.failures[op.path])
        if op.status == NodeStatus.DR_ONLY:
            self.dr = remove_node(self.dr, op.path)
            return SyncResult(op.path, SyncOutcome.SUCCESS, "deleted from DR")

        source = find_node(self.primary, op.path)
        if source is None:
            return SyncResult(op.path, SyncOutcome.FAILED, "missing on primary")

        target = find_node(self.dr, op.path)
        if target is None or target.kind != source.kind or source.is_dir:
            self.dr = add_node(self.dr, self.dr_root, source)
        else:
            self.dr = update_node(self.dr, op.path, source)
        verb = "created on DR" if op.status == NodeStatus.PRIMARY_ONLY else "overwritten on DR"
        return SyncResult(op.path, SyncOutcome.SUCCESS, verb)

    async def submit(self, request: SyncRequest) -> SyncResponse:
        operations, rejected = partition_operations(
            validate_operations(request.operations)
        )
        return SyncResponse(tuple(self._apply(op) for op in operations) + rejected)
