"""
Gallery finalization.

Runs once, in its own invocation, after every enrollment worker has exited.
Shard stores are consolidated into a single EDB and manifest, the store is
validated, and the engine builds its searchable gallery from it. A marker in
the enrollment directory records which store was finalized so that repeating
the run on the same store is a no-op.
"""

from pathlib import Path
from typing import Union

import structlog

from .constants import FINALIZED_MARKER_NAME
from .data_models import GalleryType
from .engine import TemplateEngine, require_success
from .exceptions import FinalizationError
from .template_store import (
    consolidate_stores,
    default_store_paths,
    find_shard_stores,
    validate_store,
)
from .utils import hash_files, timer

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


def _read_marker(marker_path: Path) -> str:
    try:
        return marker_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise FinalizationError(
            f"Cannot read finalization marker {marker_path}: {e}",
            enroll_dir=str(marker_path.parent),
        )


@timer
def finalize_gallery(
    engine: TemplateEngine,
    config_dir: PathLike,
    enroll_dir: PathLike,
    output_dir: PathLike,
) -> bool:
    """
    Finalize the enrolled gallery.

    Parameters
    ----------
    engine : TemplateEngine
        Engine that builds the gallery.
    config_dir : PathLike
        Engine configuration directory.
    enroll_dir : PathLike
        Directory the engine finalizes into.
    output_dir : PathLike
        Directory holding the enrollment shard stores.

    Returns
    -------
    bool
        True when the engine was invoked, False when the same store had
        already been finalized into ``enroll_dir``.

    Raises
    ------
    FinalizationError
        If the EDB or manifest is missing, or ``enroll_dir`` was finalized
        from a different store.
    TemplateStoreError
        If the manifest does not correctly index the EDB.
    EngineInitializationError
        If the engine's finalize step does not succeed.
    """
    enroll_dir = Path(enroll_dir)
    output_dir = Path(output_dir)
    edb_path, manifest_path = default_store_paths(output_dir)

    if not edb_path.exists() and not manifest_path.exists() and output_dir.is_dir():
        shard_stores = find_shard_stores(output_dir)
        if shard_stores:
            consolidate_stores(
                [(edb, manifest) for _, edb, manifest in shard_stores],
                edb_path,
                manifest_path,
            )

    for path in (edb_path, manifest_path):
        if not path.exists():
            raise FinalizationError(
                f"{path} does not exist. Please make sure enrollment was run "
                "successfully to generate the template store",
                enroll_dir=str(enroll_dir),
                context={"missing_file": str(path)},
            )

    entries = validate_store(edb_path, manifest_path)
    digest = hash_files([edb_path, manifest_path])

    marker_path = enroll_dir / FINALIZED_MARKER_NAME
    if marker_path.exists():
        if _read_marker(marker_path) == digest:
            logger.info(
                "Gallery already finalized from this store, skipping",
                enroll_dir=str(enroll_dir),
                digest=digest,
            )
            return False
        raise FinalizationError(
            "Enrollment directory was finalized from a different template store",
            enroll_dir=str(enroll_dir),
            context={"digest": digest},
        )

    status = engine.finalize_enrollment(
        str(config_dir),
        str(enroll_dir),
        str(edb_path),
        str(manifest_path),
        GalleryType.UNCONSOLIDATED,
    )
    require_success(status, "finalize_enrollment")

    try:
        enroll_dir.mkdir(parents=True, exist_ok=True)
        marker_path.write_text(digest + "\n", encoding="utf-8")
    except OSError as e:
        raise FinalizationError(
            f"Cannot write finalization marker: {e}", enroll_dir=str(enroll_dir)
        )

    logger.info(
        "Gallery finalized",
        enroll_dir=str(enroll_dir),
        entries=len(entries),
        digest=digest,
    )
    return True
