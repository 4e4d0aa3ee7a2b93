from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Protocol

from .config import (
    DEFAULT_COMMAND_TIMEOUT,
    EXCLUDED_FILE_NAMES,
    EXCLUDED_FOLDERS,
    MAX_PATH_LENGTH,
    UNSAFE_PATH_CHARS,
)
from .indexer import iter_nodes, normalize_text, relative_path
from .links import link_target_key
from .models import Node, NodeKind
from .mutator import splice_children
from .payloads import NodesError, parse_nodes
from .process import ParseError, ProcessError, run_json_command

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    pass


def has_parent_segment(path: str) -> bool:
    return ".." in PurePosixPath(path.replace("\\", "/")).parts


def is_safe_path(path: str) -> bool:
    if len(path) > MAX_PATH_LENGTH:
        return False
    if has_parent_segment(path):
        return False
    return not any(char in UNSAFE_PATH_CHARS for char in path)


def validate_root_path(path: str) -> str:
    if not path or not isinstance(path, str):
        raise ProviderError("root path is required")
    if not is_safe_path(path):
        raise ProviderError(f"invalid or potentially unsafe root path: {path!r}")
    return path


class TreeProvider(Protocol):
    async def list_nodes(self, root: str, path: str | None = None) -> list[Node]:
        """Return one level of nodes below `path` (default: `root`)."""
        ...


def _node_from_entry(entry: os.DirEntry[str], root: str) -> Node:
    st = entry.stat(follow_symlinks=False)
    is_dir = entry.is_dir(follow_symlinks=False)
    relpath = relative_path(root, entry.path)
    link_target = None
    if entry.is_symlink():
        link_target = link_target_key(
            root, relpath, normalize_text(os.readlink(entry.path))
        )
    return Node(
        id=entry.path,
        name=normalize_text(entry.name),
        kind=NodeKind.DIRECTORY if is_dir else NodeKind.FILE,
        path=entry.path,
        relative_path=relpath,
        modified=datetime.fromtimestamp(st.st_mtime_ns / 1_000_000_000, tz=UTC),
        size=0 if is_dir or link_target is not None else st.st_size,
        link_target=link_target,
    )


class LocalTreeProvider:
    """Lists directories on the local filesystem, one level per call."""

    def _list(self, root: str, path: str | None) -> list[Node]:
        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            raise ProviderError(f"root not found: {root_path}")
        target = Path(path).expanduser() if path else root_path
        if not target.is_dir():
            raise ProviderError(f"not a directory: {target}")

        nodes: list[Node] = []
        with os.scandir(target) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in EXCLUDED_FOLDERS:
                        continue
                elif entry.name in EXCLUDED_FILE_NAMES:
                    continue
                try:
                    nodes.append(_node_from_entry(entry, str(root_path)))
                except OSError as exc:
                    logger.warning("cannot stat %s: %s", entry.path, exc)
        nodes.sort(key=lambda node: (not node.is_dir, node.name.lower()))
        return nodes

    async def list_nodes(self, root: str, path: str | None = None) -> list[Node]:
        return await asyncio.to_thread(self._list, root, path)


class CommandTreeProvider:
    """Lists nodes by running an external command that prints a JSON array."""

    def __init__(
        self, command: Sequence[str], timeout: float = DEFAULT_COMMAND_TIMEOUT
    ) -> None:
        if not command:
            raise ProviderError("provider command is empty")
        self.command = tuple(command)
        self.timeout = timeout

    async def list_nodes(self, root: str, path: str | None = None) -> list[Node]:
        validate_root_path(root)
        argv = [*self.command, "--root-path", root]
        if path:
            if has_parent_segment(path):
                raise ProviderError(f"listing path escapes the root: {path!r}")
            argv += ["--target-path", path]

        result = await run_json_command(argv, timeout=self.timeout)
        if isinstance(result, ProcessError):
            raise ProviderError(f"listing {path or root} failed: {result.message}")
        if isinstance(result, ParseError):
            raise ProviderError(
                f"listing {path or root} returned unparseable output: {result.raw_output!r}"
            )
        parsed = parse_nodes(result.body, root)
        if isinstance(parsed, NodesError):
            raise ProviderError(f"listing {path or root} is malformed: {parsed.reason}")
        return list(parsed.nodes)


async def expand_directory(
    provider: TreeProvider, tree: Sequence[Node], root: str, node: Node
) -> tuple[Node, ...]:
    children = await provider.list_nodes(root, node.path)
    return splice_children(tree, node.relative_path, children)


async def load_tree(
    provider: TreeProvider, root: str, max_depth: int | None = None
) -> tuple[Node, ...]:
    """Load the root listing and expand directories level by level.

    `max_depth` counts directory levels below the root; `None` loads the whole
    tree, `0` keeps only the root listing.
    """
    tree = tuple(await provider.list_nodes(root))
    expanded: set[str] = set()
    while True:
        pending = [
            node
            for node in iter_nodes(tree)
            if node.is_dir
            and not node.children
            and node.relative_path not in expanded
            and (max_depth is None or node.relative_path.count("/") < max_depth)
        ]
        if not pending:
            break
        for node in pending:
            expanded.add(node.relative_path)
            tree = await expand_directory(provider, tree, root, node)
    return tree
