"""
Utility functions and decorators for the gallery harness.

This module provides general-purpose helpers used across the harness:
logging setup, a timing decorator, run id generation, file digests, output
cleanup and progress reporting for long shard runs.
"""

import functools
import hashlib
import logging
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, List, TypeVar, Union

import structlog

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

PathLike = Union[str, Path]

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")
_HASH_CHUNK_SIZE = 1 << 20


def _add_process_id(_, __, event_dict: dict) -> dict:
    event_dict["pid"] = os.getpid()
    return event_dict


def configure_logging(level: str = "INFO", structured: bool = True) -> None:
    """
    Configure structlog for the harness.

    Log events go to stderr so that they never interleave with data written
    to shard output files. Each event carries the emitting process id, which
    distinguishes worker processes from the parent.

    Parameters
    ----------
    level : str, default="INFO"
        Minimum level name to emit.
    structured : bool, default=True
        Render JSON lines when True, human-readable console output otherwise.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if structured
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_process_id,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )


def timer(func: F) -> F:
    """
    Log how long each call of the decorated function takes.

    Successful calls are logged at debug level, failing calls at error level
    with the exception type; the exception is re-raised unchanged.

    Examples
    --------
    >>> @timer
    ... def finalize():
    ...     return "done"
    >>> finalize()  # logs elapsed_ms
    'done'
    """

    @functools.wraps(func)
    def timed(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Timed call raised",
                function=func.__qualname__,
                elapsed_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        logger.debug(
            "Timed call returned",
            function=func.__qualname__,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )
        return result

    return timed


def generate_session_id(prefix: str = "run") -> str:
    """
    Generate a unique run identifier.

    Examples
    --------
    >>> generate_session_id("enroll_1N")  # doctest: +SKIP
    'enroll_1N_20240101_123456_abc12345'
    """
    stamp = time.strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}"


def hash_files(paths: Iterable[PathLike], algorithm: str = "sha256") -> str:
    """
    Compute a single digest over the contents of several files.

    Each file contributes its byte length before its content, so moving bytes
    from one file to the next changes the digest.

    Parameters
    ----------
    paths : Iterable[PathLike]
        Files to hash, in order.
    algorithm : str, default="sha256"
        Any algorithm known to ``hashlib``.

    Returns
    -------
    str
        Hexadecimal digest.

    Raises
    ------
    ValueError
        If the algorithm is unknown.
    """
    try:
        digest = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unknown hash algorithm: {algorithm}")

    for path in paths:
        path = Path(path)
        digest.update(f"{path.stat().st_size}\n".encode("ascii"))
        with open(path, "rb") as f:
            for chunk in iter(functools.partial(f.read, _HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
    return digest.hexdigest()


def format_bytes(num_bytes: int) -> str:
    """
    Render a byte count with a binary unit.

    Examples
    --------
    >>> format_bytes(1536)
    '1.5 KB'
    """
    size = float(num_bytes)
    for unit in _BYTE_UNITS[:-1]:
        if abs(size) < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} {_BYTE_UNITS[-1]}"


def ensure_directory(path: PathLike) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def remove_files(paths: Iterable[PathLike]) -> List[Path]:
    """
    Delete files that exist, reporting but not raising on failure.

    Used on cleanup paths where the original error must keep propagating.

    Returns
    -------
    List[Path]
        The files actually removed.
    """
    removed = []
    for path in paths:
        path = Path(path)
        try:
            path.unlink()
            removed.append(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.error("Error deleting file", path=str(path), error=str(e))
            print(f"[ERROR] Error deleting file: {path}", file=sys.stderr)
    return removed


class ShardProgress:
    """
    Periodic progress events for a worker processing its shard.

    Parameters
    ----------
    total_records : int
        Number of records in the shard.
    label : str
        Prefix of every progress event, e.g. ``"Enrolling input.txt.0"``.
    step_percent : int, default=10
        Emit an event each time this many more percent of records are done.

    Examples
    --------
    >>> progress = ShardProgress(250, "Searching input.txt.1")
    >>> for record in records:
    ...     progress.advance()
    >>> progress.finish()
    """

    def __init__(self, total_records: int, label: str, step_percent: int = 10) -> None:
        self.total_records = total_records
        self.label = label
        self.step_percent = step_percent
        self.done = 0
        self._next_report = step_percent
        self._started = time.perf_counter()

        logger.info(f"{label} started", total_records=total_records)

    def advance(self, count: int = 1) -> None:
        self.done += count
        if self.total_records <= 0:
            return

        percent_done = 100 * self.done / self.total_records
        if percent_done < self._next_report:
            return

        elapsed = time.perf_counter() - self._started
        remaining = elapsed * (self.total_records - self.done) / self.done
        logger.info(
            f"{self.label} progress",
            records_done=self.done,
            total_records=self.total_records,
            percent_done=round(percent_done, 1),
            elapsed_seconds=round(elapsed, 3),
            remaining_seconds=round(remaining, 3),
        )
        while self._next_report <= percent_done:
            self._next_report += self.step_percent

    def finish(self) -> None:
        elapsed = time.perf_counter() - self._started
        logger.info(
            f"{self.label} finished",
            records_done=self.done,
            elapsed_seconds=round(elapsed, 3),
            records_per_second=self.done / elapsed if elapsed > 0 else 0.0,
        )
