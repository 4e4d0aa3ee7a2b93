from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class NodeStatus(str, Enum):
    UNKNOWN = "unknown"
    SYNCED = "synced"
    DIFFERENT = "different"
    PRIMARY_ONLY = "primary_only"
    DR_ONLY = "dr_only"


ACTIONABLE_STATUSES = frozenset(
    {NodeStatus.DIFFERENT, NodeStatus.PRIMARY_ONLY, NodeStatus.DR_ONLY}
)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?i?B?)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 0, "B": 0, "K": 1, "M": 2, "G": 3, "T": 4}


def size_value(size: int | str | None) -> int:
    """Return a comparable byte count for raw or human-readable sizes."""
    if size is None:
        return 0
    if isinstance(size, bool):
        return int(size)
    if isinstance(size, (int, float)):
        return int(size)
    match = _SIZE_RE.match(str(size))
    if match is None:
        return 0
    number = float(match.group(1))
    unit = (match.group(2) or "").upper().replace("I", "")
    exponent = _SIZE_UNITS.get(unit[:1], 0)
    return int(number * (1024**exponent))


@dataclass(frozen=True)
class Node:
    id: str
    name: str
    kind: NodeKind
    path: str
    relative_path: str
    modified: datetime
    size: int | str = 0
    status: NodeStatus = NodeStatus.UNKNOWN
    children: tuple[Node, ...] = ()
    # comparison key of a symbolic link target; None for regular entries
    link_target: str | None = None

    @property
    def is_link(self) -> bool:
        return self.link_target is not None

    @property
    def is_dir(self) -> bool:
        return self.kind == NodeKind.DIRECTORY

    @property
    def size_bytes(self) -> int:
        return size_value(self.size)


@dataclass(frozen=True)
class Difference:
    path: str
    name: str
    kind: NodeKind
    status: NodeStatus
    primary: Node | None = None
    dr: Node | None = None
    summary: str = ""

    def __post_init__(self) -> None:
        if self.primary is None and self.dr is None:
            raise ValueError(f"difference for {self.path!r} has no node on either side")

    @property
    def is_actionable(self) -> bool:
        return self.status in ACTIONABLE_STATUSES


SYNC_ACTIONS = {
    NodeStatus.PRIMARY_ONLY: "create",
    NodeStatus.DR_ONLY: "delete",
    NodeStatus.DIFFERENT: "overwrite",
}


@dataclass(frozen=True)
class SyncOperation:
    path: str
    status: NodeStatus
    kind: NodeKind

    @classmethod
    def from_difference(cls, diff: Difference) -> SyncOperation:
        return cls(path=diff.path, status=diff.status, kind=diff.kind)

    @property
    def action(self) -> str:
        return SYNC_ACTIONS.get(self.status, "none")

    def to_payload(self) -> dict[str, str]:
        return {"path": self.path, "status": self.status.value, "type": self.kind.value}


@dataclass(frozen=True)
class SyncResult:
    path: str
    outcome: SyncOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == SyncOutcome.SUCCESS


@dataclass(frozen=True)
class Application:
    name: str
    primary_path: str
    dr_path: str
