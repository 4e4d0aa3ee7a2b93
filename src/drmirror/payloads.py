from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeAlias

from .indexer import normalize_text, relative_path
from .models import Node, NodeKind, NodeStatus, SyncOutcome, SyncResult

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_KIND_ALIASES = {
    "file": NodeKind.FILE,
    "directory": NodeKind.DIRECTORY,
    "dir": NodeKind.DIRECTORY,
}


class PayloadError(ValueError):
    pass


@dataclass(frozen=True)
class NodesOk:
    nodes: tuple[Node, ...]


@dataclass(frozen=True)
class NodesError:
    reason: str


NodesResult: TypeAlias = NodesOk | NodesError


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise PayloadError(f"invalid timestamp: {value!r}")


def _field(raw: dict[str, object], *names: str) -> object | None:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _parse_node(raw: object, root: str | None) -> Node | None:
    if not isinstance(raw, dict):
        logger.debug("skipping non-object node entry: %r", raw)
        return None

    kind = _KIND_ALIASES.get(str(_field(raw, "type", "kind") or "").lower())
    if kind is None:
        logger.debug("skipping node with unknown type: %r", raw.get("type"))
        return None

    path = str(_field(raw, "path") or "")
    relpath = _field(raw, "relativePath", "relative_path")
    if relpath is None and root is not None and path:
        relpath = relative_path(root, path)
    relpath_text = normalize_text(str(relpath or "")).strip("/")
    if not relpath_text:
        logger.debug("skipping node without relative path: %r", path)
        return None

    raw_children = _field(raw, "children")
    if raw_children is not None and not isinstance(raw_children, list):
        logger.debug("skipping node with malformed children: %s", relpath_text)
        return None

    try:
        modified = parse_timestamp(_field(raw, "lastModified", "last_modified", "modified"))
    except (PayloadError, ValueError, OverflowError, OSError):
        modified = EPOCH

    raw_size = _field(raw, "size")
    size: int | str = 0
    if isinstance(raw_size, float):
        size = int(raw_size)
    elif isinstance(raw_size, (int, str)) and not isinstance(raw_size, bool):
        size = raw_size
    link_target = _field(raw, "linkTarget", "link_target")
    try:
        status = NodeStatus(str(_field(raw, "status") or NodeStatus.UNKNOWN.value))
    except ValueError:
        status = NodeStatus.UNKNOWN

    children: tuple[Node, ...] = ()
    if kind == NodeKind.DIRECTORY and raw_children:
        children = tuple(
            child
            for child in (_parse_node(item, root) for item in raw_children)
            if child is not None
        )

    name = str(_field(raw, "name") or relpath_text.rsplit("/", 1)[-1])
    return Node(
        id=str(_field(raw, "id") or path or relpath_text),
        name=normalize_text(name),
        kind=kind,
        path=path,
        relative_path=relpath_text,
        modified=modified,
        size=size,
        status=status,
        children=children,
        link_target=None if link_target is None else str(link_target),
    )


def parse_nodes(raw: object, root: str | None = None) -> NodesResult:
    """Validate a provider listing into nodes; malformed entries are skipped."""
    if not isinstance(raw, list):
        return NodesError(f"expected a JSON array of nodes, got {type(raw).__name__}")
    nodes = tuple(
        node for node in (_parse_node(item, root) for item in raw) if node is not None
    )
    return NodesOk(nodes)


def parse_results(raw: object) -> list[SyncResult]:
    items = raw.get("results") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise PayloadError("sync response must be a list or an object with 'results'")

    results: list[SyncResult] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("path"):
            raise PayloadError(f"malformed sync result: {item!r}")
        try:
            outcome = SyncOutcome(str(item.get("status", "")).lower())
        except ValueError as exc:
            raise PayloadError(f"unknown sync result status: {item.get('status')!r}") from exc
        results.append(
            SyncResult(
                path=str(item["path"]),
                outcome=outcome,
                message=str(item.get("message") or ""),
            )
        )
    return results
