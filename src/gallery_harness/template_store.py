"""
Flat-file template store (EDB + manifest).

The EDB is an append-only blob of concatenated template bytes with no
delimiters. The manifest is a text index, one ``id byteLength byteOffset``
line per enrolled record in processing order. Byte ranges are resolved only
through the manifest. Every range must lie within the blob and distinct
ranges must not overlap; contiguity is not required.
"""

import os
import re
import shutil
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple, Union

import structlog

from .constants import EDB_FILE_NAME, MANIFEST_FILE_NAME
from .data_models import IndexEntry
from .exceptions import TemplateStoreError
from .utils import format_bytes, remove_files

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]

_SHARD_EDB_PATTERN = re.compile(rf"^{EDB_FILE_NAME}\.(\d+)$")
_SHARD_MANIFEST_PATTERN = re.compile(rf"^{MANIFEST_FILE_NAME}\.(\d+)$")


def _shard_store_match(file_name: str):
    return _SHARD_EDB_PATTERN.match(file_name) or _SHARD_MANIFEST_PATTERN.match(
        file_name
    )


def shard_store_paths(output_dir: PathLike, shard_index: int) -> Tuple[Path, Path]:
    """Return the ``(edb.<i>, manifest.<i>)`` pair of one enrollment shard."""
    output_dir = Path(output_dir)
    return (
        output_dir / f"{EDB_FILE_NAME}.{shard_index}",
        output_dir / f"{MANIFEST_FILE_NAME}.{shard_index}",
    )


class TemplateStoreWriter:
    """
    Append-only writer for one shard's EDB and manifest.

    The writer owns both files exclusively for the duration of a shard run.
    Each append records the blob position before writing, so the manifest
    offset is exactly where the template bytes start.

    Parameters
    ----------
    edb_path : PathLike
        Blob file to create (truncated if present).
    manifest_path : PathLike
        Manifest file to create (truncated if present).

    Examples
    --------
    >>> with TemplateStoreWriter("edb.0", "manifest.0") as store:
    ...     entry = store.append("S001", b"template")
    >>> entry.byte_offset
    0
    """

    def __init__(self, edb_path: PathLike, manifest_path: PathLike) -> None:
        self.edb_path = Path(edb_path)
        self.manifest_path = Path(manifest_path)
        self.entries_written = 0
        try:
            self._edb = open(self.edb_path, "wb")
        except OSError as e:
            raise TemplateStoreError(
                f"Failed to open stream for {self.edb_path}: {e}",
                edb_path=str(self.edb_path),
            )
        try:
            self._manifest = open(self.manifest_path, "w", encoding="utf-8")
        except OSError as e:
            self._edb.close()
            raise TemplateStoreError(
                f"Failed to open stream for {self.manifest_path}: {e}",
                manifest_path=str(self.manifest_path),
            )

    def __enter__(self) -> "TemplateStoreWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def append(self, template_id: str, template: bytes) -> IndexEntry:
        """
        Append one template and its index entry.

        Zero-length templates are recorded like any other.
        """
        entry = IndexEntry(
            template_id=template_id,
            byte_length=len(template),
            byte_offset=self._edb.tell(),
        )
        self._manifest.write(entry.to_line() + "\n")
        self._edb.write(template)
        self.entries_written += 1
        return entry

    def close(self) -> None:
        self._edb.close()
        self._manifest.close()


def parse_manifest_line(line: str, line_number: int = 0) -> IndexEntry:
    """
    Parse one manifest line.

    Raises
    ------
    TemplateStoreError
        If the line does not hold an id and two non-negative integers.
    """
    tokens = line.split()
    if len(tokens) != 3:
        raise TemplateStoreError(
            f"Manifest line {line_number} must have 3 fields, found {len(tokens)}",
            context={"line": line},
        )
    template_id, length_token, offset_token = tokens
    try:
        byte_length = int(length_token)
        byte_offset = int(offset_token)
    except ValueError:
        raise TemplateStoreError(
            f"Manifest line {line_number} has non-integer length or offset",
            context={"line": line},
        )
    if byte_length < 0 or byte_offset < 0:
        raise TemplateStoreError(
            f"Manifest line {line_number} has a negative length or offset",
            context={"line": line},
        )
    return IndexEntry(template_id, byte_length, byte_offset)


def read_manifest(manifest_path: PathLike) -> List[IndexEntry]:
    """Read every entry of a manifest, in file order."""
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            return [
                parse_manifest_line(line, line_number)
                for line_number, line in enumerate(f, start=1)
                if line.strip()
            ]
    except OSError as e:
        raise TemplateStoreError(
            f"Failed to read manifest: {e}", manifest_path=str(manifest_path)
        )


def validate_store(edb_path: PathLike, manifest_path: PathLike) -> List[IndexEntry]:
    """
    Check that a manifest correctly indexes its EDB.

    Returns
    -------
    List[IndexEntry]
        The manifest entries, in file order.

    Raises
    ------
    TemplateStoreError
        If an entry extends past the end of the blob or two entries overlap.
    """
    entries = read_manifest(manifest_path)
    edb_size = Path(edb_path).stat().st_size

    for entry in entries:
        if entry.end > edb_size:
            raise TemplateStoreError(
                f"Entry '{entry.template_id}' ends at byte {entry.end}, "
                f"past the blob size {edb_size}",
                edb_path=str(edb_path),
                manifest_path=str(manifest_path),
            )

    occupied = sorted(
        (entry for entry in entries if entry.byte_length > 0),
        key=lambda entry: entry.byte_offset,
    )
    for previous, current in zip(occupied, occupied[1:]):
        if current.byte_offset < previous.end:
            raise TemplateStoreError(
                f"Entries '{previous.template_id}' and '{current.template_id}' "
                "have overlapping byte ranges",
                edb_path=str(edb_path),
                manifest_path=str(manifest_path),
            )

    logger.debug(
        "Template store validated",
        edb_path=str(edb_path),
        entries=len(entries),
        edb_size=edb_size,
    )
    return entries


def iter_templates(
    edb_path: PathLike, manifest_path: PathLike
) -> Iterator[Tuple[str, bytes]]:
    """Yield ``(template_id, template_bytes)`` pairs in manifest order."""
    entries = validate_store(edb_path, manifest_path)
    with open(edb_path, "rb") as edb:
        for entry in entries:
            edb.seek(entry.byte_offset)
            yield entry.template_id, edb.read(entry.byte_length)


def find_shard_stores(output_dir: PathLike) -> List[Tuple[int, Path, Path]]:
    """
    List the enrollment shard stores in an output directory.

    Returns
    -------
    List[Tuple[int, Path, Path]]
        ``(shard_index, edb_path, manifest_path)`` sorted by shard index.

    Raises
    ------
    TemplateStoreError
        If a shard EDB has no matching manifest or the reverse.
    """
    output_dir = Path(output_dir)
    indices = set()
    for path in output_dir.iterdir():
        match = _shard_store_match(path.name)
        if match:
            indices.add(int(match.group(1)))

    stores = []
    for shard_index in sorted(indices):
        edb_path, manifest_path = shard_store_paths(output_dir, shard_index)
        if not (edb_path.is_file() and manifest_path.is_file()):
            raise TemplateStoreError(
                f"Shard {shard_index} is missing its EDB or manifest",
                edb_path=str(edb_path),
                manifest_path=str(manifest_path),
            )
        stores.append((shard_index, edb_path, manifest_path))
    return stores


def consolidate_stores(
    shard_stores: Sequence[Tuple[PathLike, PathLike]],
    edb_path: PathLike,
    manifest_path: PathLike,
) -> List[IndexEntry]:
    """
    Merge shard stores into a single EDB and manifest.

    Shards are appended in the given order; each shard's offsets are rebased
    by the number of blob bytes written before it. Output is written to
    temporary files and renamed into place only after every shard merged.

    Returns
    -------
    List[IndexEntry]
        Entries of the consolidated manifest.

    Raises
    ------
    TemplateStoreError
        If any shard store is invalid or the output cannot be written.
    """
    edb_path = Path(edb_path)
    manifest_path = Path(manifest_path)
    tmp_edb = edb_path.with_name(edb_path.name + ".tmp")
    tmp_manifest = manifest_path.with_name(manifest_path.name + ".tmp")

    merged: List[IndexEntry] = []
    base_offset = 0
    try:
        with open(tmp_edb, "wb") as edb_out, open(
            tmp_manifest, "w", encoding="utf-8"
        ) as manifest_out:
            for shard_edb, shard_manifest in shard_stores:
                for entry in validate_store(shard_edb, shard_manifest):
                    rebased = IndexEntry(
                        entry.template_id,
                        entry.byte_length,
                        entry.byte_offset + base_offset,
                    )
                    manifest_out.write(rebased.to_line() + "\n")
                    merged.append(rebased)
                with open(shard_edb, "rb") as edb_in:
                    shutil.copyfileobj(edb_in, edb_out)
                base_offset = edb_out.tell()
        os.replace(tmp_edb, edb_path)
        try:
            os.replace(tmp_manifest, manifest_path)
        except OSError:
            # an EDB without its manifest must not survive
            remove_files([edb_path])
            raise
    except OSError as e:
        remove_files([tmp_edb, tmp_manifest])
        raise TemplateStoreError(
            f"Failed to consolidate template stores: {e}",
            edb_path=str(edb_path),
            manifest_path=str(manifest_path),
        )
    except TemplateStoreError:
        remove_files([tmp_edb, tmp_manifest])
        raise

    logger.info(
        "Template stores consolidated",
        shards=len(shard_stores),
        entries=len(merged),
        edb_size=format_bytes(base_offset),
        edb_path=str(edb_path),
    )
    return merged


def clear_enrollment_stores(output_dir: PathLike) -> List[Path]:
    """
    Delete every template store left in an output directory.

    Removes the consolidated ``edb``/``manifest`` and all ``edb.<i>`` and
    ``manifest.<i>`` shard stores, so a new enrollment run never shares a
    directory with stores written by an earlier run.

    Returns
    -------
    List[Path]
        The files removed.
    """
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return []

    stale = list(default_store_paths(output_dir))
    stale.extend(
        path for path in output_dir.iterdir() if _shard_store_match(path.name)
    )
    removed = remove_files(stale)
    if removed:
        logger.info(
            "Removed template stores of a previous enrollment",
            output_dir=str(output_dir),
            files=[path.name for path in removed],
        )
    return removed


def default_store_paths(output_dir: PathLike) -> Tuple[Path, Path]:
    """Return the consolidated ``(edb, manifest)`` pair of an output directory."""
    output_dir = Path(output_dir)
    return output_dir / EDB_FILE_NAME, output_dir / MANIFEST_FILE_NAME
