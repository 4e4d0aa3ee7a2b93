from __future__ import annotations

import logging
import unicodedata
from collections.abc import Iterable, Iterator
from pathlib import PurePosixPath, PureWindowsPath

from .models import Node

logger = logging.getLogger(__name__)


def normalize_text(value: str) -> str:
    """Collapse surrogate-escaped bytes and canonicalize to NFC."""
    safe = value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return unicodedata.normalize("NFC", safe)


def relative_path(root: str, absolute_path: str) -> str:
    """Strip the tree root prefix from a server-specific absolute path."""
    pure = PureWindowsPath if "\\" in root or "\\" in absolute_path else PurePosixPath
    try:
        rel = pure(absolute_path).relative_to(pure(root))
    except ValueError:
        rel = pure(absolute_path)
    text = PurePosixPath(*rel.parts).as_posix() if rel.parts else ""
    return normalize_text("" if text == "." else text)


def iter_nodes(nodes: Iterable[Node]) -> Iterator[Node]:
    for node in nodes:
        yield node
        if node.children:
            yield from iter_nodes(node.children)


def index_tree(nodes: Iterable[Node]) -> dict[str, Node]:
    index: dict[str, Node] = {}
    for node in iter_nodes(nodes):
        if not node.relative_path:
            logger.debug("skipping node without relative path: %r", node.name)
            continue
        index[node.relative_path] = node
    return index
