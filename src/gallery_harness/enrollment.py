"""
Per-shard enrollment pipeline.

One worker process runs ``enroll_shard`` over its input shard. Every record
gets exactly one manifest entry and one EDB append, whatever the engine
returned for it, so the gallery store mirrors the input order of the shard.
The per-image enrollment log records the template size, engine return code
and any geometry the engine reported.
"""

from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Sequence, Type, Union

import structlog

from .constants import ENROLLMENT_LOG_BASE_COLUMNS, ENROLLMENT_LOG_GEOMETRY_COLUMNS
from .data_models import (
    BoundingBox,
    EyePair,
    Geometry,
    IrisAnnulus,
    IrisLR,
    Media,
    Modality,
    Record,
    ShardStatus,
    TemplateRole,
)
from .engine import TemplateEngine, TemplateResult
from .exceptions import InputFileError
from .image_reader import load_media
from .record_reader import parse_record, read_lines
from .template_store import TemplateStoreWriter
from .utils import ShardProgress, remove_files

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]

GEOMETRY_PLACEHOLDERS: Dict[Modality, Type] = {
    Modality.FACE: EyePair,
    Modality.IRIS: IrisAnnulus,
    Modality.MEDIA: BoundingBox,
}


def enrollment_log_header(modality: Modality) -> str:
    """Return the enrollment log header line for a modality."""
    geometry_columns = ENROLLMENT_LOG_GEOMETRY_COLUMNS[modality]
    if not geometry_columns:
        return ENROLLMENT_LOG_BASE_COLUMNS
    return f"{ENROLLMENT_LOG_BASE_COLUMNS} {geometry_columns}"


def tag_iris_images(modality: Modality, media: Sequence[Media]) -> List[Media]:
    """
    Mark the eyes of a two-image iris record, first left then right.

    Any other record is returned unchanged.
    """
    media = list(media)
    if modality != Modality.IRIS or sum(len(entry.images) for entry in media) != 2:
        return media

    sides = iter((IrisLR.LEFT_IRIS, IrisLR.RIGHT_IRIS))
    return [
        replace(
            entry,
            images=tuple(replace(image, iris_lr=next(sides)) for image in entry.images),
        )
        for entry in media
    ]


def normalize_geometry(
    modality: Modality, record: Record, result: TemplateResult
) -> List[Geometry]:
    """
    Return exactly one geometry value per image of the record.

    When the engine reported a different number of entries than there are
    images, or a multi-media template failed, every entry is replaced with the
    modality's unassigned placeholder.
    """
    placeholder = GEOMETRY_PLACEHOLDERS.get(modality)
    if placeholder is None:
        return []

    image_count = record.image_count
    geometry = list(result.geometry)
    media_failed = modality == Modality.MEDIA and not result.status.is_success
    if len(geometry) != image_count or media_failed:
        if geometry:
            logger.debug(
                "Replacing engine geometry with placeholders",
                record_id=record.record_id,
                reported=len(geometry),
                images=image_count,
            )
        geometry = [placeholder() for _ in range(image_count)]
    return geometry


def format_log_lines(
    modality: Modality, record: Record, result: TemplateResult
) -> List[str]:
    """Render the enrollment log lines of one record, one per image."""
    geometry = normalize_geometry(modality, record, result)
    lines = []
    for index, ref in enumerate(record.image_refs):
        columns = [
            record.record_id,
            ref.path,
            str(len(result.template)),
            str(int(result.status.code)),
        ]
        if geometry:
            columns.extend(geometry[index].to_columns())
        lines.append(" ".join(columns))
    return lines


def enroll_shard(
    engine: TemplateEngine,
    modality: Modality,
    shard_file: PathLike,
    log_path: PathLike,
    edb_path: PathLike,
    manifest_path: PathLike,
) -> ShardStatus:
    """
    Enroll every record of an input shard.

    Parameters
    ----------
    engine : TemplateEngine
        Engine already initialized for enrollment.
    modality : Modality
        Modality of the records.
    shard_file : PathLike
        Input shard; deleted once fully consumed.
    log_path : PathLike
        Enrollment log to write.
    edb_path : PathLike
        Shard EDB to write.
    manifest_path : PathLike
        Shard manifest to write.

    Returns
    -------
    ShardStatus
        ``SUCCESS`` after all records were processed, or ``NOT_IMPLEMENTED``
        when the engine declined template creation. In the latter case the
        shard's log, EDB, manifest and input shard are deleted.

    Raises
    ------
    HarnessError
        On unreadable input, malformed records or undecodable media. Partial
        outputs are deleted before the error propagates.
    """
    shard_file = Path(shard_file)
    outputs = [Path(log_path), Path(edb_path), Path(manifest_path)]
    lines = read_lines(shard_file)
    progress = ShardProgress(len(lines), f"Enrolling {shard_file.name}")

    not_implemented = False
    try:
        with TemplateStoreWriter(edb_path, manifest_path) as store, open(
            log_path, "w", encoding="utf-8"
        ) as log:
            log.write(enrollment_log_header(modality) + "\n")
            for line in lines:
                record = parse_record(line)
                media = tag_iris_images(modality, load_media(record))
                result = engine.create_template(
                    modality, media, TemplateRole.ENROLLMENT_1N
                )
                if result.status.is_not_implemented:
                    not_implemented = True
                    break

                store.append(record.record_id, result.template)
                for log_line in format_log_lines(modality, record, result):
                    log.write(log_line + "\n")
                progress.advance()
    except OSError as e:
        remove_files(outputs)
        raise InputFileError(str(log_path), str(e))
    except Exception:
        remove_files(outputs)
        raise

    if not_implemented:
        remove_files(outputs + [shard_file])
        logger.warning(
            "Template creation not implemented, shard output discarded",
            shard_file=str(shard_file),
            modality=modality.value,
        )
        return ShardStatus.NOT_IMPLEMENTED

    progress.finish()
    remove_files([shard_file])
    return ShardStatus.SUCCESS
