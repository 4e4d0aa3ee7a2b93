from __future__ import annotations

import pytest

from drmirror.models import NodeKind, NodeStatus, SyncOutcome
from drmirror.payloads import (
    EPOCH,
    NodesError,
    NodesOk,
    PayloadError,
    parse_nodes,
    parse_results,
    parse_timestamp,
)

from conftest import T0


def test_parse_nodes_reads_camel_case_listing() -> None:
    raw = [
        {
            "id": "n1",
            "name": "docs",
            "type": "directory",
            "path": "/srv/app/docs",
            "relativePath": "docs",
            "lastModified": "2026-02-19T00:00:00Z",
            "size": "4KB",
            "children": [
                {
                    "name": "a.txt",
                    "type": "file",
                    "path": "/srv/app/docs/a.txt",
                    "relativePath": "docs/a.txt",
                    "lastModified": "2026-02-19T00:00:00Z",
                    "size": 12,
                }
            ],
        }
    ]

    result = parse_nodes(raw, "/srv/app")

    assert isinstance(result, NodesOk)
    (docs,) = result.nodes
    assert docs.kind == NodeKind.DIRECTORY
    assert docs.id == "n1"
    assert docs.modified == T0
    assert docs.size == "4KB"
    assert docs.status == NodeStatus.UNKNOWN
    assert docs.children[0].relative_path == "docs/a.txt"
    assert docs.children[0].size_bytes == 12


def test_parse_nodes_derives_relative_path_from_root() -> None:
    raw = [{"type": "file", "path": "/srv/app/x/y.txt", "modified": 0}]

    result = parse_nodes(raw, "/srv/app")

    assert isinstance(result, NodesOk)
    assert result.nodes[0].relative_path == "x/y.txt"
    assert result.nodes[0].name == "y.txt"
    assert result.nodes[0].modified == EPOCH


def test_parse_nodes_skips_malformed_entries() -> None:
    raw = [
        "not an object",
        {"type": "symlink", "relativePath": "link"},
        {"type": "file"},
        {"type": "directory", "relativePath": "bad", "children": "nope"},
        {"type": "file", "relativePath": "ok.txt", "lastModified": "garbage"},
    ]

    result = parse_nodes(raw)

    assert isinstance(result, NodesOk)
    assert [node.relative_path for node in result.nodes] == ["ok.txt"]
    assert result.nodes[0].modified == EPOCH


def test_parse_nodes_rejects_non_array() -> None:
    result = parse_nodes({"nodes": []})

    assert isinstance(result, NodesError)
    assert "dict" in result.reason


def test_parse_timestamp_accepts_common_shapes() -> None:
    assert parse_timestamp("2026-02-19T00:00:00+00:00") == T0
    assert parse_timestamp("2026-02-19T00:00:00") == T0
    assert parse_timestamp(T0.timestamp()) == T0
    with pytest.raises(PayloadError):
        parse_timestamp(None)


def test_parse_results_accepts_list_or_wrapped_object() -> None:
    items = [
        {"path": "a", "status": "success"},
        {"path": "b", "status": "FAILED", "message": "disk full"},
    ]

    for raw in (items, {"results": items}):
        results = parse_results(raw)
        assert [r.outcome for r in results] == [SyncOutcome.SUCCESS, SyncOutcome.FAILED]
        assert results[1].message == "disk full"


@pytest.mark.parametrize(
    "raw",
    [
        "oops",
        {"results": "oops"},
        [{"status": "success"}],
        [{"path": "a", "status": "maybe"}],
    ],
)
def test_parse_results_rejects_malformed_responses(raw) -> None:
    with pytest.raises(PayloadError):
        parse_results(raw)


def test_parse_nodes_keeps_float_sizes_and_link_targets() -> None:
    raw = [
        {"type": "file", "relativePath": "a.bin", "size": 12.0},
        {"type": "file", "relativePath": "flag", "size": True},
        {"type": "file", "relativePath": "link", "linkTarget": "inroot:a.bin"},
    ]

    result = parse_nodes(raw)

    assert isinstance(result, NodesOk)
    a_bin, flag, link = result.nodes
    assert a_bin.size == 12
    assert a_bin.size_bytes == 12
    assert flag.size == 0
    assert link.link_target == "inroot:a.bin"
    assert a_bin.link_target is None
