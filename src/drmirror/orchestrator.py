from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .compare import SUMMARY_IN_SYNC, TreeComparison, compare_trees
from .config import CompareSettings
from .executor import (
    ExecutorError,
    InvalidOperationError,
    SyncExecutor,
    SyncRequest,
    partition_operations,
    validate_operations,
)
from .indexer import index_tree
from .models import (
    Application,
    Difference,
    Node,
    NodeStatus,
    SyncOperation,
    SyncOutcome,
    SyncResult,
)
from .mutator import find_node
from .provider import TreeProvider, expand_directory, load_tree
from .reporter import StatusReporter

logger = logging.getLogger(__name__)

PRIMARY = "primary"
DR = "dr"


class SyncInProgressError(RuntimeError):
    pass


@dataclass(frozen=True)
class BulkSyncPlan:
    differences: tuple[Difference, ...]
    to_add: int
    to_update: int
    to_remove: int

    @property
    def total(self) -> int:
        return self.to_add + self.to_update + self.to_remove

    def counts(self) -> dict[str, int]:
        return {
            "toAdd": self.to_add,
            "toUpdate": self.to_update,
            "toRemove": self.to_remove,
        }


@dataclass(frozen=True)
class BatchOutcome:
    results: tuple[SyncResult, ...] = ()
    fatal_error: str | None = None
    cancelled: bool = False

    @property
    def succeeded(self) -> list[SyncResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> list[SyncResult]:
        return [result for result in self.results if not result.ok]

    @property
    def ok(self) -> bool:
        return self.fatal_error is None and not self.cancelled and not self.failed


def plan_sync_all(differences: Sequence[Difference]) -> BulkSyncPlan:
    actionable = tuple(diff for diff in differences if diff.is_actionable)
    return BulkSyncPlan(
        differences=actionable,
        to_add=sum(1 for d in actionable if d.status == NodeStatus.PRIMARY_ONLY),
        to_update=sum(1 for d in actionable if d.status == NodeStatus.DIFFERENT),
        to_remove=sum(1 for d in actionable if d.status == NodeStatus.DR_ONLY),
    )


class SyncSession:
    """Owns both trees and their comparison for one application.

    Every sync submits one batch, waits for the executor, then reloads both
    trees and recomputes the differences.
    """

    def __init__(
        self,
        application: Application,
        provider: TreeProvider,
        executor: SyncExecutor,
        reporter: StatusReporter | None = None,
        settings: CompareSettings | None = None,
        max_depth: int | None = None,
    ) -> None:
        self.application = application
        self.provider = provider
        self.executor = executor
        self.reporter = reporter or StatusReporter()
        self.settings = settings or CompareSettings()
        self.max_depth = max_depth
        self.comparison = TreeComparison(primary=(), dr=(), differences=())
        self.selected: Difference | None = None
        # presentation-only state, keyed by relative path
        self.expanded: set[str] = set()
        self._syncing = False

    @property
    def primary_tree(self) -> tuple[Node, ...]:
        return self.comparison.primary

    @property
    def dr_tree(self) -> tuple[Node, ...]:
        return self.comparison.dr

    @property
    def differences(self) -> tuple[Difference, ...]:
        return self.comparison.differences

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def _recompare(self, primary: Sequence[Node], dr: Sequence[Node]) -> None:
        self.comparison = compare_trees(primary, dr, self.settings)

    async def load(self) -> TreeComparison:
        app = self.application
        self.reporter.info(
            f"Loading files from primary: {app.primary_path} and DR: {app.dr_path} "
            f"for app: {app.name}"
        )
        try:
            primary = await load_tree(self.provider, app.primary_path, self.max_depth)
            dr = await load_tree(self.provider, app.dr_path, self.max_depth)
        except Exception as exc:
            self.reporter.error(f"Failed to load files for {app.name}: {exc}")
            raise
        self._recompare(primary, dr)
        self.reporter.info(
            f"Comparison complete for {app.name}. "
            f"Found {len(self.comparison.actionable())} differences."
        )
        return self.comparison

    def select(self, relative_path: str) -> Difference | None:
        diff = self.comparison.by_path().get(relative_path)
        if diff is None:
            primary = index_tree(self.primary_tree).get(relative_path)
            dr = index_tree(self.dr_tree).get(relative_path)
            in_sync = any(
                node is not None and node.status == NodeStatus.SYNCED
                for node in (primary, dr)
            )
            if in_sync:
                node = primary or dr
                assert node is not None
                diff = Difference(
                    path=relative_path,
                    name=node.name,
                    kind=node.kind,
                    status=NodeStatus.SYNCED,
                    primary=primary,
                    dr=dr,
                    summary=SUMMARY_IN_SYNC,
                )
        self.selected = diff
        return diff

    def toggle_expanded(self, relative_path: str) -> bool:
        if relative_path in self.expanded:
            self.expanded.discard(relative_path)
            return False
        self.expanded.add(relative_path)
        return True

    async def expand(self, side: str, relative_path: str) -> None:
        """Fetch one more level below a directory and re-diff."""
        if side not in {PRIMARY, DR}:
            raise ValueError(f"unknown side: {side!r}")
        tree = self.primary_tree if side == PRIMARY else self.dr_tree
        root = self.application.primary_path if side == PRIMARY else self.application.dr_path
        node = find_node(tree, relative_path)
        if node is None or not node.is_dir:
            raise ValueError(f"no directory at {relative_path!r} on {side}")
        expanded = await expand_directory(self.provider, tree, root, node)
        if side == PRIMARY:
            self._recompare(expanded, self.dr_tree)
        else:
            self._recompare(self.primary_tree, expanded)
        self.expanded.add(relative_path)

    def plan_sync_all(self) -> BulkSyncPlan:
        return plan_sync_all(self.differences)

    async def _submit(self, differences: Sequence[Difference]) -> BatchOutcome:
        operations = tuple(SyncOperation.from_difference(diff) for diff in differences)
        try:
            validate_operations(operations)
        except InvalidOperationError as exc:
            self.reporter.error(f"Rejected sync request: {exc}")
            raise

        accepted, rejected = partition_operations(operations)
        reported = {result.path: result for result in rejected}
        if accepted:
            request = SyncRequest(
                primary_root=self.application.primary_path,
                dr_root=self.application.dr_path,
                operations=accepted,
            )
            try:
                response = await self.executor.submit(request)
            except ExecutorError as exc:
                self.reporter.error(f"Sync failed for {len(accepted)} item(s): {exc}")
                return BatchOutcome(fatal_error=str(exc))
            reported.update((result.path, result) for result in response.results)

        results: list[SyncResult] = []
        for op in operations:
            result = reported.get(op.path) or SyncResult(
                op.path, SyncOutcome.FAILED, "no result reported by executor"
            )
            if result.ok:
                self.reporter.success(f"Successfully synced {op.path}")
            else:
                self.reporter.error(f"Failed to sync {op.path}: {result.message}")
            results.append(result)
        return BatchOutcome(results=tuple(results))

    async def _reload(self) -> None:
        app = self.application
        logger.debug("reloading trees for %s", app.name)
        primary = await load_tree(self.provider, app.primary_path, self.max_depth)
        dr = await load_tree(self.provider, app.dr_path, self.max_depth)
        self._recompare(primary, dr)

    async def _run_batch(self, differences: Sequence[Difference]) -> BatchOutcome:
        if self._syncing:
            raise SyncInProgressError("a sync is already running")
        self._syncing = True
        try:
            outcome = await self._submit(differences)
            try:
                await self._reload()
            except Exception as exc:
                self.reporter.error(f"Failed to reload files after sync: {exc}")
                raise
            return outcome
        finally:
            self._syncing = False

    async def sync_one(self, diff: Difference) -> BatchOutcome:
        if not diff.is_actionable:
            self.reporter.info(f"{diff.path} is already in sync")
            return BatchOutcome()
        self.reporter.info(f"Syncing {diff.path}...")
        outcome = await self._run_batch([diff])
        if outcome.fatal_error is None and outcome.failed:
            self.reporter.error(f"Sync completed for {diff.path} with errors")
        elif outcome.fatal_error is None:
            self.reporter.success(f"Sync completed for {diff.path}")
        self.select(diff.path)
        return outcome

    async def sync_all(
        self, confirm: Callable[[BulkSyncPlan], bool] | None = None
    ) -> BatchOutcome:
        plan = self.plan_sync_all()
        app = self.application
        if plan.total == 0:
            self.reporter.info(f"Nothing to sync for {app.name}")
            return BatchOutcome()
        if confirm is not None and not confirm(plan):
            self.reporter.info(f"Sync all cancelled for {app.name}")
            return BatchOutcome(cancelled=True)

        self.reporter.info(
            f"Starting sync for {plan.total} item(s): {plan.to_add} to add, "
            f"{plan.to_update} to update, {plan.to_remove} to remove"
        )
        outcome = await self._run_batch(plan.differences)
        if outcome.fatal_error is None and outcome.failed:
            self.reporter.error(
                f"Sync all completed for {app.name}. {len(outcome.succeeded)} of "
                f"{plan.total} items synced, {len(outcome.failed)} failed."
            )
        elif outcome.fatal_error is None:
            self.reporter.success(
                f"Sync all completed for {app.name}. {plan.total} items processed."
            )
        if self.selected is not None:
            self.select(self.selected.path)
        return outcome
