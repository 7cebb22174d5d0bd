"""
Per-shard identification search pipeline.

One worker process runs ``search_shard`` over its input shard and writes a
candidate list file with ``K`` lines per search template. A probe whose
template could not be created, or whose search failed, still gets ``K``
lines, filled with null candidates and the engine's return code. A candidate
list that violates the identification protocol is fatal for the worker and
nothing from that probe is written.
"""

import sys
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import structlog

from .constants import (
    CANDIDATE_LIST_HEADER,
    NULL_CANDIDATE_SCORE,
    NULL_CANDIDATE_TEMPLATE_ID,
)
from .data_models import (
    Candidate,
    Modality,
    Record,
    ReturnCode,
    ReturnStatus,
    ShardStatus,
    TemplateRole,
)
from .engine import TemplateEngine
from .enrollment import tag_iris_images
from .exceptions import CandidateListError, InputFileError, RecordFormatError
from .image_reader import load_media
from .record_reader import parse_record, read_lines
from .utils import ShardProgress, remove_files
from .validation import format_candidate_list, validate_candidate_list

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]

# (search id, template bytes, creation status) for each template of a probe
SearchTemplate = Tuple[str, bytes, ReturnStatus]


class NotImplementedSignal(Exception):
    """Raised internally when the engine declines template creation."""


def null_candidate_list(candidate_list_length: int) -> List[Candidate]:
    """Return a candidate list made only of null placeholders."""
    return [
        Candidate(False, NULL_CANDIDATE_TEMPLATE_ID, NULL_CANDIDATE_SCORE)
        for _ in range(candidate_list_length)
    ]


def format_candidate_lines(
    search_id: str, return_code: ReturnCode, candidates: Sequence[Candidate]
) -> List[str]:
    return [
        f"{search_id} {rank} {int(return_code)} {int(candidate.is_assigned)} "
        f"{candidate.template_id} {candidate.score:g}"
        for rank, candidate in enumerate(candidates)
    ]


def _probe_templates(
    engine: TemplateEngine,
    modality: Modality,
    record: Record,
    line: str,
    multi_template: bool,
) -> List[SearchTemplate]:
    media = tag_iris_images(modality, load_media(record))

    if not multi_template:
        result = engine.create_template(modality, media, TemplateRole.SEARCH_1N)
        if result.status.is_not_implemented:
            raise NotImplementedSignal()
        return [(record.record_id, result.template, result.status)]

    if len(media) != 1:
        raise RecordFormatError(
            line, f"multi-template probes must have one media entry, found {len(media)}"
        )
    result = engine.create_search_templates(modality, media[0])
    if result.status.is_not_implemented:
        raise NotImplementedSignal()
    if not result.status.is_success:
        return [(f"{record.record_id}_0", b"", result.status)]
    if not result.templates:
        logger.warning("No search templates created", probe_id=record.record_id)
    return [
        (f"{record.record_id}_{index}", template, result.status)
        for index, template in enumerate(result.templates)
    ]


def search_template(
    engine: TemplateEngine,
    search_id: str,
    template: bytes,
    creation_status: ReturnStatus,
    candidate_list_length: int,
) -> List[str]:
    """
    Search one template and render its candidate list lines.

    Raises
    ------
    CandidateListError
        If the engine's candidate list violates the identification protocol.
    """
    if not creation_status.is_success:
        return format_candidate_lines(
            search_id,
            creation_status.code,
            null_candidate_list(candidate_list_length),
        )

    result = engine.search(template, candidate_list_length)
    if not result.status.is_success:
        return format_candidate_lines(
            search_id, result.status.code, null_candidate_list(candidate_list_length)
        )

    validate_candidate_list(search_id, result.candidates, candidate_list_length)
    return format_candidate_lines(search_id, result.status.code, result.candidates)


def _report_invalid_list(error: CandidateListError) -> None:
    logger.error("Invalid candidate list", **error.to_dict())
    print(f"[ERROR] {error}", file=sys.stderr)
    for line in format_candidate_list(error.probe_id, error.candidates):
        print(line, file=sys.stderr)


def search_shard(
    engine: TemplateEngine,
    modality: Modality,
    shard_file: PathLike,
    candidate_list_path: PathLike,
    multi_template: bool,
    candidate_list_length: int,
) -> ShardStatus:
    """
    Search every probe of an input shard.

    Parameters
    ----------
    engine : TemplateEngine
        Engine initialized for search template creation and search.
    modality : Modality
        Modality of the probes.
    shard_file : PathLike
        Input shard; deleted once fully consumed.
    candidate_list_path : PathLike
        Candidate list file to write.
    multi_template : bool
        Create one search template per subject found in each probe.
    candidate_list_length : int
        Number of candidates requested per search.

    Returns
    -------
    ShardStatus
        ``SUCCESS``, or ``NOT_IMPLEMENTED`` when the engine declined template
        creation; the candidate list and input shard are then deleted.

    Raises
    ------
    CandidateListError
        If a returned candidate list is malformed. The offending list is
        printed to stderr and the partial candidate list file is removed.
    HarnessError
        On unreadable input, malformed records or undecodable media.
    """
    shard_file = Path(shard_file)
    candidate_list_path = Path(candidate_list_path)
    lines = read_lines(shard_file)
    progress = ShardProgress(len(lines), f"Searching {shard_file.name}")

    try:
        with open(candidate_list_path, "w", encoding="utf-8") as out:
            out.write(CANDIDATE_LIST_HEADER + "\n")
            for line in lines:
                record = parse_record(line)
                for search_id, template, status in _probe_templates(
                    engine, modality, record, line, multi_template
                ):
                    probe_lines = search_template(
                        engine, search_id, template, status, candidate_list_length
                    )
                    out.write("\n".join(probe_lines) + "\n")
                progress.advance()
    except NotImplementedSignal:
        remove_files([candidate_list_path, shard_file])
        logger.warning(
            "Search template creation not implemented, shard output discarded",
            shard_file=str(shard_file),
            modality=modality.value,
        )
        return ShardStatus.NOT_IMPLEMENTED
    except CandidateListError as e:
        _report_invalid_list(e)
        remove_files([candidate_list_path])
        raise
    except OSError as e:
        remove_files([candidate_list_path])
        raise InputFileError(str(candidate_list_path), str(e))
    except Exception:
        remove_files([candidate_list_path])
        raise

    progress.finish()
    remove_files([shard_file])
    return ShardStatus.SUCCESS
