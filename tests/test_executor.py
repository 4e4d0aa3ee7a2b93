from __future__ import annotations

import asyncio
import json
import os

import pytest

from drmirror import executor as executor_module
from drmirror.executor import (
    CommandSyncExecutor,
    ExecutorError,
    InvalidOperationError,
    LocalSyncExecutor,
    SimulatedSyncExecutor,
    SyncRequest,
    partition_operations,
    validate_operations,
)
from drmirror.indexer import index_tree
from drmirror.models import NodeKind, NodeStatus, SyncOperation, SyncOutcome
from drmirror.process import ParseError, ProcessError, ProcessSuccess

from conftest import mk_dir, mk_file, ts


def _op(path: str, status: NodeStatus, kind: NodeKind = NodeKind.FILE) -> SyncOperation:
    return SyncOperation(path=path, status=status, kind=kind)


def test_request_payload_uses_wire_names() -> None:
    request = SyncRequest(
        "/p", "/d", (_op("a", NodeStatus.PRIMARY_ONLY), _op("b", NodeStatus.DR_ONLY))
    )

    assert request.to_payload() == {
        "primaryRoot": "/p",
        "drRoot": "/d",
        "operations": [
            {"path": "a", "status": "primary_only", "type": "file"},
            {"path": "b", "status": "dr_only", "type": "file"},
        ],
    }


@pytest.mark.parametrize(
    "op",
    [
        "a",
        _op("", NodeStatus.DIFFERENT),
        _op("a", NodeStatus.SYNCED),
        _op("a", NodeStatus.UNKNOWN),
        SyncOperation(path="a", status=NodeStatus.DIFFERENT, kind="symlink"),
    ],
)
def test_validate_operations_rejects_bad_entries(op) -> None:
    with pytest.raises(InvalidOperationError):
        validate_operations([op])


def test_partition_rejects_only_escaping_paths() -> None:
    ops = [
        _op("report (1).pdf", NodeStatus.PRIMARY_ONLY),
        _op("notes..txt", NodeStatus.PRIMARY_ONLY),
        _op("R&D/plan;v2.docx", NodeStatus.DIFFERENT),
        _op("C:drive-like.txt", NodeStatus.DIFFERENT),
        _op("../etc/passwd", NodeStatus.DIFFERENT),
        _op("a/../../b", NodeStatus.DR_ONLY),
        _op("/abs", NodeStatus.DIFFERENT),
        _op("D:\\abs", NodeStatus.DIFFERENT),
    ]

    accepted, rejected = partition_operations(validate_operations(ops))

    assert [op.path for op in accepted] == [
        "report (1).pdf",
        "notes..txt",
        "R&D/plan;v2.docx",
        "C:drive-like.txt",
    ]
    assert [r.path for r in rejected] == ["../etc/passwd", "a/../../b", "/abs", "D:\\abs"]
    assert all(r.outcome == SyncOutcome.FAILED for r in rejected)
    assert rejected[0].message == "rejected: path escapes the tree root"


def test_command_executor_sends_one_batch(monkeypatch) -> None:
    seen: list[list[str]] = []

    async def fake_run(argv, timeout):
        seen.append(argv)
        return ProcessSuccess(
            {
                "results": [
                    {"path": "a", "status": "success"},
                    {"path": "b", "status": "failed", "message": "locked"},
                ]
            }
        )

    monkeypatch.setattr(executor_module, "run_json_command", fake_run)
    request = SyncRequest(
        "/p", "/d", (_op("a", NodeStatus.DIFFERENT), _op("b", NodeStatus.DR_ONLY))
    )

    response = asyncio.run(CommandSyncExecutor(["syncer"]).submit(request))

    (argv,) = seen
    assert argv[:5] == ["syncer", "--primary-root", "/p", "--dr-root", "/d"]
    assert argv[5] == "--operations-json"
    assert json.loads(argv[6]) == [
        {"path": "a", "status": "different", "type": "file"},
        {"path": "b", "status": "dr_only", "type": "file"},
    ]
    assert [r.outcome for r in response.results] == [SyncOutcome.SUCCESS, SyncOutcome.FAILED]
    assert response.results[1].message == "locked"


@pytest.mark.parametrize(
    "result",
    [ProcessError("exit 1"), ParseError("oops"), ProcessSuccess({"results": "nope"})],
)
def test_command_executor_failures_are_executor_errors(monkeypatch, result) -> None:
    async def fake_run(argv, timeout):
        return result

    monkeypatch.setattr(executor_module, "run_json_command", fake_run)
    request = SyncRequest("/p", "/d", (_op("a", NodeStatus.DIFFERENT),))

    with pytest.raises(ExecutorError):
        asyncio.run(CommandSyncExecutor(["syncer"]).submit(request))


def test_local_executor_applies_all_three_actions(tmp_path) -> None:
    primary = tmp_path / "primary"
    dr = tmp_path / "dr"
    (primary / "new").mkdir(parents=True)
    (primary / "new" / "a.txt").write_text("fresh", encoding="utf-8")
    (primary / "changed.txt").write_text("v2", encoding="utf-8")
    os.utime(primary / "changed.txt", (1_700_000_000, 1_700_000_000))
    dr.mkdir()
    (dr / "changed.txt").write_text("v1-old", encoding="utf-8")
    (dr / "stale").mkdir()
    (dr / "stale" / "x").write_text("x", encoding="utf-8")

    request = SyncRequest(
        str(primary),
        str(dr),
        (
            _op("changed.txt", NodeStatus.DIFFERENT),
            _op("new", NodeStatus.PRIMARY_ONLY, NodeKind.DIRECTORY),
            _op("new/a.txt", NodeStatus.PRIMARY_ONLY),
            _op("stale", NodeStatus.DR_ONLY, NodeKind.DIRECTORY),
            _op("stale/x", NodeStatus.DR_ONLY),
        ),
    )

    response = asyncio.run(LocalSyncExecutor().submit(request))

    assert all(result.ok for result in response.results)
    assert response.results[-1].message == "already absent on DR"
    assert (dr / "changed.txt").read_text(encoding="utf-8") == "v2"
    assert (dr / "changed.txt").stat().st_mtime == 1_700_000_000
    assert (dr / "new" / "a.txt").read_text(encoding="utf-8") == "fresh"
    assert not (dr / "stale").exists()


def test_local_executor_reports_missing_source_per_item(tmp_path) -> None:
    (tmp_path / "p").mkdir()
    (tmp_path / "d").mkdir()
    (tmp_path / "p" / "ok.txt").write_text("ok", encoding="utf-8")
    request = SyncRequest(
        str(tmp_path / "p"),
        str(tmp_path / "d"),
        (_op("gone.txt", NodeStatus.PRIMARY_ONLY), _op("ok.txt", NodeStatus.PRIMARY_ONLY)),
    )

    response = asyncio.run(LocalSyncExecutor().submit(request))

    assert [r.ok for r in response.results] == [False, True]
    assert response.results[0].message == "missing on primary"


def test_local_executor_missing_root_is_fatal(tmp_path) -> None:
    request = SyncRequest(
        str(tmp_path / "nope"), str(tmp_path), (_op("a", NodeStatus.DIFFERENT),)
    )

    with pytest.raises(ExecutorError):
        asyncio.run(LocalSyncExecutor().submit(request))


def test_simulated_executor_mirrors_primary_in_memory() -> None:
    primary = (
        mk_dir("d", mk_file("d/new", size=3, modified=ts(5))),
        mk_file("f", size=2, modified=ts(9)),
    )
    dr = (
        mk_file("f", root="/dr", size=1),
        mk_file("old", root="/dr"),
    )
    simulated = SimulatedSyncExecutor("/primary", "/dr", primary, dr)
    request = SyncRequest(
        "/primary",
        "/dr",
        (
            _op("d", NodeStatus.PRIMARY_ONLY, NodeKind.DIRECTORY),
            _op("f", NodeStatus.DIFFERENT),
            _op("old", NodeStatus.DR_ONLY),
        ),
    )

    response = asyncio.run(simulated.submit(request))

    assert all(result.ok for result in response.results)
    index = index_tree(simulated.dr)
    assert set(index) == {"d", "d/new", "f"}
    assert index["d/new"].path == "/dr/d/new"
    assert index["f"].size == 2
    assert index["f"].modified == ts(9)

    listing = asyncio.run(simulated.list_nodes("/dr", "/dr/d"))
    assert [node.relative_path for node in listing] == ["d/new"]
    with pytest.raises(ExecutorError):
        asyncio.run(simulated.list_nodes("/elsewhere"))


def test_local_executor_isolates_rejected_paths(tmp_path) -> None:
    primary = tmp_path / "primary"
    dr = tmp_path / "dr"
    primary.mkdir()
    dr.mkdir()
    for name in ("plain.txt", "report (1).pdf", "notes..txt", "R&D.docx"):
        (primary / name).write_text(name, encoding="utf-8")
    (tmp_path / "outside.txt").write_text("x", encoding="utf-8")
    request = SyncRequest(
        str(primary),
        str(dr),
        (
            _op("../outside.txt", NodeStatus.DR_ONLY),
            _op("notes..txt", NodeStatus.PRIMARY_ONLY),
            _op("plain.txt", NodeStatus.PRIMARY_ONLY),
            _op("R&D.docx", NodeStatus.PRIMARY_ONLY),
            _op("report (1).pdf", NodeStatus.PRIMARY_ONLY),
        ),
    )

    response = asyncio.run(LocalSyncExecutor().submit(request))

    by_path = {result.path: result for result in response.results}
    assert not by_path["../outside.txt"].ok
    assert (tmp_path / "outside.txt").exists()
    for name in ("plain.txt", "report (1).pdf", "notes..txt", "R&D.docx"):
        assert by_path[name].ok
        assert (dr / name).read_text(encoding="utf-8") == name


def test_command_executor_skips_process_when_every_path_is_rejected(monkeypatch) -> None:
    async def fake_run(argv, timeout):
        raise AssertionError("process should not start")

    monkeypatch.setattr(executor_module, "run_json_command", fake_run)
    request = SyncRequest("/p", "/d", (_op("../x", NodeStatus.DIFFERENT),))

    response = asyncio.run(CommandSyncExecutor(["syncer"]).submit(request))

    assert [r.outcome for r in response.results] == [SyncOutcome.FAILED]


@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
def test_local_executor_recreates_links_inside_dr(tmp_path) -> None:
    primary = tmp_path / "primary"
    dr = tmp_path / "dr"
    (primary / "docs").mkdir(parents=True)
    (primary / "nested").mkdir()
    dr.mkdir()
    (primary / "docs" / "x.txt").write_text("x", encoding="utf-8")
    (primary / "nested" / "link").symlink_to(str(primary / "docs" / "x.txt"))
    (primary / "rel").symlink_to("docs/x.txt")
    (dr / "rel").write_text("stale regular file", encoding="utf-8")
    request = SyncRequest(
        str(primary),
        str(dr),
        (
            _op("nested/link", NodeStatus.PRIMARY_ONLY),
            _op("rel", NodeStatus.DIFFERENT),
        ),
    )

    response = asyncio.run(LocalSyncExecutor().submit(request))

    assert all(result.ok for result in response.results)
    assert os.readlink(dr / "nested" / "link") == "../docs/x.txt"
    assert os.readlink(dr / "rel") == "docs/x.txt"
    assert (dr / "rel").is_symlink()


def test_simulated_executor_injected_failure_leaves_dr_untouched() -> None:
    primary = (mk_file("a", size=2),)
    dr = (mk_file("a", root="/dr", size=1),)
    simulated = SimulatedSyncExecutor(
        "/primary", "/dr", primary, dr, failures={"a": "disk full"}
    )

    response = asyncio.run(
        simulated.submit(SyncRequest("/primary", "/dr", (_op("a", NodeStatus.DIFFERENT),)))
    )

    assert response.results[0].message == "disk full"
    assert simulated.dr == dr
