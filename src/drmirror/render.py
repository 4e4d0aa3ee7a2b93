from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .compare import FolderCounts, folder_counts
from .models import Difference, Node, NodeStatus, Severity
from .orchestrator import BulkSyncPlan
from .reporter import LogEntry

_BADGES = {
    NodeStatus.SYNCED: ("Synced", "green"),
    NodeStatus.DIFFERENT: ("Different", "yellow"),
    NodeStatus.PRIMARY_ONLY: ("Primary only", "cyan"),
    NodeStatus.DR_ONLY: ("DR only", "magenta"),
    NodeStatus.UNKNOWN: ("Unknown", "dim"),
}

_SEVERITY_STYLES = {
    Severity.INFO: "blue",
    Severity.SUCCESS: "green",
    Severity.ERROR: "red",
}


def format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def _folder_label(node: Node, counts: FolderCounts) -> Text:
    parts: list[str] = []
    if counts.primary_only:
        parts.append(f"Primary {counts.primary_only}")
    if counts.dr_only:
        parts.append(f"DR {counts.dr_only}")
    if counts.different:
        parts.append(f"Different {counts.different}")
    summary = " | ".join(parts) if parts else "No changes"
    badge, style = _BADGES[node.status]
    return Text.assemble(
        (f"{node.name}/", "bold"), "  ", (f"[{badge}]", style), "  ", (summary, "cyan")
    )


def _file_label(node: Node) -> Text:
    badge, style = _BADGES[node.status]
    return Text.assemble(
        (node.name, "white"),
        "  ",
        (f"[{badge}]", style),
        " ",
        (f"{node.size} {format_time(node.modified)}", "dim"),
    )


def tree_view(title: str, nodes: Iterable[Node], expanded: set[str] | None = None) -> Tree:
    """Render an annotated tree; `expanded` limits which directories open."""
    nodes = tuple(nodes)
    counts = folder_counts(nodes)
    root = Tree(Text(title, style="bold underline"))

    def add(branch: Tree, items: Iterable[Node]) -> None:
        for node in items:
            if node.is_dir:
                child = branch.add(
                    _folder_label(node, counts.get(node.relative_path, FolderCounts()))
                )
                if expanded is None or node.relative_path in expanded:
                    add(child, node.children)
            else:
                branch.add(_file_label(node))

    add(root, nodes)
    return root


def differences_table(differences: Iterable[Difference]) -> Table:
    table = Table(title="Differences", show_lines=False)
    table.add_column("Status")
    table.add_column("Kind")
    table.add_column("Path", overflow="fold")
    table.add_column("Summary", overflow="fold")
    for diff in differences:
        badge, style = _BADGES[diff.status]
        table.add_row(Text(badge, style=style), diff.kind.value, diff.path, diff.summary)
    return table


def plan_text(plan: BulkSyncPlan) -> Text:
    return Text.assemble(
        ("Sync all: ", "bold"),
        (f"{plan.to_add} to add", "cyan"),
        ", ",
        (f"{plan.to_update} to update", "yellow"),
        ", ",
        (f"{plan.to_remove} to remove", "magenta"),
    )


def log_table(entries: Iterable[LogEntry]) -> Table:
    table = Table(title="Sync log")
    table.add_column("Time")
    table.add_column("Status")
    table.add_column("Message", overflow="fold")
    for entry in entries:
        style = _SEVERITY_STYLES[entry.severity]
        table.add_row(
            format_time(entry.timestamp),
            Text(entry.severity.value, style=style),
            entry.message,
        )
    return table
