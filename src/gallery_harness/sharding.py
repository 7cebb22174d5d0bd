"""
Input sharding for the gallery harness.

Splits the record stream into contiguous, order-preserving shards, one per
worker process. Shard sizes differ by at most one record, and concatenating
the shards in index order reproduces the input exactly.
"""

from pathlib import Path
from typing import List, Sequence, TypeVar, Union

import structlog

from .constants import INPUT_SHARD_STEM
from .exceptions import ConfigurationError, InputFileError
from .record_reader import read_lines
from .utils import ensure_directory

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def shard_sizes(num_records: int, num_workers: int) -> List[int]:
    """
    Compute balanced shard sizes.

    Parameters
    ----------
    num_records : int
        Number of records to distribute (L).
    num_workers : int
        Requested number of workers (W).

    Returns
    -------
    List[int]
        ``min(W, L)`` sizes; the first ``L mod n`` shards hold
        ``ceil(L / n)`` records and the rest ``floor(L / n)``.

    Raises
    ------
    ConfigurationError
        If fewer than one worker is requested or the record count is negative.

    Examples
    --------
    >>> shard_sizes(5, 2)
    [3, 2]
    >>> shard_sizes(0, 4)
    []
    """
    if num_workers < 1:
        raise ConfigurationError(
            "Number of shards must be at least 1",
            config_key="num_shards",
            config_value=str(num_workers),
        )
    if num_records < 0:
        raise ValueError(f"num_records cannot be negative, got {num_records}")

    num_shards = min(num_workers, num_records)
    if num_shards == 0:
        return []

    base, remainder = divmod(num_records, num_shards)
    return [base + 1 if i < remainder else base for i in range(num_shards)]


def shard_lines(lines: Sequence[T], num_workers: int) -> List[List[T]]:
    """
    Partition a sequence into balanced contiguous shards.

    Examples
    --------
    >>> shard_lines(["a", "b", "c", "d", "e"], 2)
    [['a', 'b', 'c'], ['d', 'e']]
    """
    shards = []
    start = 0
    for size in shard_sizes(len(lines), num_workers):
        shards.append(list(lines[start : start + size]))
        start += size
    return shards


def shard_file_path(output_dir: Union[str, Path], shard_index: int) -> Path:
    return Path(output_dir) / f"{INPUT_SHARD_STEM}{shard_index}"


def split_input_file(
    input_file: Union[str, Path], output_dir: Union[str, Path], num_workers: int
) -> List[Path]:
    """
    Split a record file into per-worker shard files.

    Parameters
    ----------
    input_file : Union[str, Path]
        Record file to split. Blank lines are dropped.
    output_dir : Union[str, Path]
        Directory receiving ``input.txt.<i>`` shard files.
    num_workers : int
        Requested number of workers.

    Returns
    -------
    List[Path]
        Shard file paths in shard order; empty when the input has no records.

    Raises
    ------
    InputFileError
        If the input cannot be read or a shard file cannot be written.
    ConfigurationError
        If fewer than one worker is requested.
    """
    lines = read_lines(input_file)
    shards = shard_lines(lines, num_workers)
    ensure_directory(output_dir)

    shard_files = []
    for shard_index, shard in enumerate(shards):
        path = shard_file_path(output_dir, shard_index)
        try:
            with open(path, "w", encoding="utf-8") as f:
                for line in shard:
                    f.write(line + "\n")
        except OSError as e:
            raise InputFileError(str(path), str(e))
        shard_files.append(path)

    logger.info(
        "Input file split into shards",
        input_file=str(input_file),
        num_records=len(lines),
        requested_workers=num_workers,
        num_shards=len(shard_files),
        shard_sizes=[len(shard) for shard in shards],
    )
    return shard_files
