"""Tests for the EDB + manifest template store."""

import os

import pytest

from gallery_harness import template_store

from gallery_harness.data_models import IndexEntry
from gallery_harness.exceptions import TemplateStoreError
from gallery_harness.template_store import (
    TemplateStoreWriter,
    clear_enrollment_stores,
    consolidate_stores,
    find_shard_stores,
    iter_templates,
    read_manifest,
    shard_store_paths,
    validate_store,
)


def write_store(directory, shard_index, templates):
    edb_path, manifest_path = shard_store_paths(directory, shard_index)
    with TemplateStoreWriter(edb_path, manifest_path) as store:
        for template_id, template in templates:
            store.append(template_id, template)
    return edb_path, manifest_path


def test_writer_records_offsets(tmp_path):
    edb_path, manifest_path = write_store(
        tmp_path, 0, [("A", b"abc"), ("B", b""), ("C", b"12345")]
    )

    entries = read_manifest(manifest_path)

    assert entries == [
        IndexEntry("A", 3, 0),
        IndexEntry("B", 0, 3),
        IndexEntry("C", 5, 3),
    ]
    assert manifest_path.read_text().splitlines() == ["A 3 0", "B 0 3", "C 5 3"]
    assert edb_path.read_bytes() == b"abc12345"
    assert sum(entry.byte_length for entry in entries) == edb_path.stat().st_size


def test_validate_store_accepts_writer_output(tmp_path):
    edb_path, manifest_path = write_store(tmp_path, 0, [("A", b"xx"), ("A", b"yyy")])
    assert len(validate_store(edb_path, manifest_path)) == 2


def test_validate_store_rejects_range_past_blob(tmp_path):
    edb_path = tmp_path / "edb"
    manifest_path = tmp_path / "manifest"
    edb_path.write_bytes(b"abcd")
    manifest_path.write_text("A 10 0\n")

    with pytest.raises(TemplateStoreError):
        validate_store(edb_path, manifest_path)


def test_validate_store_rejects_overlap(tmp_path):
    edb_path = tmp_path / "edb"
    manifest_path = tmp_path / "manifest"
    edb_path.write_bytes(b"abcdef")
    manifest_path.write_text("A 4 0\nB 2 3\n")

    with pytest.raises(TemplateStoreError):
        validate_store(edb_path, manifest_path)


def test_validate_store_allows_gaps(tmp_path):
    edb_path = tmp_path / "edb"
    manifest_path = tmp_path / "manifest"
    edb_path.write_bytes(b"abcdef")
    manifest_path.write_text("B 2 4\nA 2 0\n")

    assert [entry.template_id for entry in validate_store(edb_path, manifest_path)] == [
        "B",
        "A",
    ]


@pytest.mark.parametrize("line", ["A 3", "A x 0", "A 3 -1", "A 1 2 3"])
def test_malformed_manifest_line(tmp_path, line):
    manifest_path = tmp_path / "manifest"
    manifest_path.write_text(line + "\n")

    with pytest.raises(TemplateStoreError):
        read_manifest(manifest_path)


def test_iter_templates(tmp_path):
    edb_path, manifest_path = write_store(tmp_path, 0, [("A", b"abc"), ("B", b"de")])

    assert list(iter_templates(edb_path, manifest_path)) == [("A", b"abc"), ("B", b"de")]


def test_consolidate_rebases_offsets(tmp_path):
    shard0 = write_store(tmp_path, 0, [("A", b"aaa"), ("B", b"")])
    shard1 = write_store(tmp_path, 1, [("C", b"cc"), ("D", b"dddd")])
    edb_path = tmp_path / "edb"
    manifest_path = tmp_path / "manifest"

    entries = consolidate_stores([shard0, shard1], edb_path, manifest_path)

    assert entries == [
        IndexEntry("A", 3, 0),
        IndexEntry("B", 0, 3),
        IndexEntry("C", 2, 3),
        IndexEntry("D", 4, 5),
    ]
    assert edb_path.read_bytes() == b"aaaccdddd"
    assert read_manifest(manifest_path) == entries
    assert dict(iter_templates(edb_path, manifest_path))["D"] == b"dddd"
    assert not (tmp_path / "edb.tmp").exists()


def test_consolidate_leaves_no_output_on_invalid_shard(tmp_path):
    shard0 = write_store(tmp_path, 0, [("A", b"aaa")])
    shard0[1].write_text("A 30 0\n")

    with pytest.raises(TemplateStoreError):
        consolidate_stores([shard0], tmp_path / "edb", tmp_path / "manifest")

    assert not (tmp_path / "edb").exists()
    assert not (tmp_path / "edb.tmp").exists()
    assert not (tmp_path / "manifest.tmp").exists()


def test_find_shard_stores_in_index_order(tmp_path):
    for shard_index in (2, 0, 10, 1):
        write_store(tmp_path, shard_index, [("X", b"x")])
    (tmp_path / "edb").write_bytes(b"")

    stores = find_shard_stores(tmp_path)

    assert [shard_index for shard_index, _, _ in stores] == [0, 1, 2, 10]


def test_find_shard_stores_requires_pairs(tmp_path):
    write_store(tmp_path, 0, [("X", b"x")])
    (tmp_path / "edb.1").write_bytes(b"y")

    with pytest.raises(TemplateStoreError):
        find_shard_stores(tmp_path)


def test_consolidate_rolls_back_edb_when_manifest_rename_fails(tmp_path, monkeypatch):
    shard0 = write_store(tmp_path, 0, [("A", b"aaa")])
    edb_path = tmp_path / "edb"
    manifest_path = tmp_path / "manifest"
    real_replace = os.replace

    def failing_replace(source, target):
        if os.fspath(target) == os.fspath(manifest_path):
            raise OSError("disk full")
        real_replace(source, target)

    monkeypatch.setattr(template_store.os, "replace", failing_replace)

    with pytest.raises(TemplateStoreError):
        consolidate_stores([shard0], edb_path, manifest_path)

    assert not edb_path.exists()
    assert not manifest_path.exists()
    assert not (tmp_path / "edb.tmp").exists()
    assert not (tmp_path / "manifest.tmp").exists()


def test_clear_enrollment_stores(tmp_path):
    for shard_index in (0, 1, 3):
        write_store(tmp_path, shard_index, [("X", b"x")])
    (tmp_path / "edb").write_bytes(b"x")
    (tmp_path / "manifest").write_text("X 1 0\n")
    (tmp_path / "edb.1.log").write_text("keep")
    (tmp_path / "run.enroll_1N.0").write_text("keep")

    removed = clear_enrollment_stores(tmp_path)

    assert sorted(path.name for path in removed) == [
        "edb",
        "edb.0",
        "edb.1",
        "edb.3",
        "manifest",
        "manifest.0",
        "manifest.1",
        "manifest.3",
    ]
    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "edb.1.log",
        "run.enroll_1N.0",
    ]


def test_clear_enrollment_stores_without_directory(tmp_path):
    assert clear_enrollment_stores(tmp_path / "missing") == []
