"""Tests for input sharding."""

import pytest

from gallery_harness.exceptions import ConfigurationError, InputFileError
from gallery_harness.sharding import (
    shard_file_path,
    shard_lines,
    shard_sizes,
    split_input_file,
)


@pytest.mark.parametrize(
    "num_records, num_workers, expected",
    [
        (5, 2, [3, 2]),
        (10, 3, [4, 3, 3]),
        (3, 8, [1, 1, 1]),
        (4, 4, [1, 1, 1, 1]),
        (7, 1, [7]),
        (0, 4, []),
    ],
)
def test_shard_sizes(num_records, num_workers, expected):
    assert shard_sizes(num_records, num_workers) == expected


def test_shard_sizes_are_balanced():
    for num_records in range(0, 40):
        for num_workers in range(1, 9):
            sizes = shard_sizes(num_records, num_workers)
            assert len(sizes) == min(num_records, num_workers)
            assert sum(sizes) == num_records
            if sizes:
                assert max(sizes) - min(sizes) <= 1
                assert min(sizes) >= 1


def test_shard_sizes_rejects_zero_workers():
    with pytest.raises(ConfigurationError):
        shard_sizes(5, 0)


def test_shard_lines_preserves_order():
    lines = [f"S{index}" for index in range(11)]

    shards = shard_lines(lines, 4)

    assert [len(shard) for shard in shards] == [3, 3, 3, 2]
    assert [line for shard in shards for line in shard] == lines


def test_split_input_file(write_input, output_dir):
    lines = [f"S{index} a.ppm faceiso" for index in range(5)]
    input_file = write_input(lines[:2] + [""] + lines[2:])

    shard_files = split_input_file(input_file, output_dir, 2)

    assert shard_files == [shard_file_path(output_dir, 0), shard_file_path(output_dir, 1)]
    assert shard_files[0].name == "input.txt.0"
    contents = [path.read_text(encoding="utf-8").splitlines() for path in shard_files]
    assert [len(shard) for shard in contents] == [3, 2]
    assert contents[0] + contents[1] == lines


def test_split_empty_input_yields_no_shards(write_input, output_dir):
    input_file = write_input([])

    assert split_input_file(input_file, output_dir, 3) == []
    assert list(output_dir.iterdir()) == []


def test_split_missing_input(tmp_path, output_dir):
    with pytest.raises(InputFileError):
        split_input_file(tmp_path / "missing.txt", output_dir, 2)
