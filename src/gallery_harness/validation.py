"""
Structural validation of engine candidate lists.

The harness does not judge whether a candidate list is *correct*, only that
it follows the identification protocol: exactly the requested number of
entries, assigned scores in non-increasing rank order and no gallery template
returned twice.

Unassigned placeholders do not reference gallery members and are exempt from
the ordering and uniqueness checks. This is deliberately looser than a
duplicate check over every entry: an engine that pads a short gallery with
several ``NA`` placeholders returns a valid list.
"""

from typing import List, Sequence

import structlog

from .data_models import Candidate
from .exceptions import (
    CandidateListLengthError,
    CandidateOrderError,
    DuplicateCandidateError,
)

logger = structlog.get_logger(__name__)


def validate_candidate_list(
    probe_id: str, candidates: Sequence[Candidate], expected_length: int
) -> None:
    """
    Check a candidate list against the identification protocol.

    Parameters
    ----------
    probe_id : str
        Id of the search template the list was returned for.
    candidates : Sequence[Candidate]
        Candidates in rank order.
    expected_length : int
        Number of candidates requested from the engine.

    Raises
    ------
    CandidateListLengthError
        If the list does not hold exactly ``expected_length`` entries.
    CandidateOrderError
        If an assigned score is greater than the previous assigned score.
    DuplicateCandidateError
        If two assigned entries share a template id.

    Examples
    --------
    >>> validate_candidate_list("P1", [Candidate(True, "T1", 0.9)], 1)
    """
    candidates = list(candidates)
    if len(candidates) != expected_length:
        raise CandidateListLengthError(probe_id, candidates, expected_length)

    previous_score = None
    seen_ids = set()
    for rank, candidate in enumerate(candidates):
        if not candidate.is_assigned:
            continue
        if previous_score is not None and candidate.score > previous_score:
            raise CandidateOrderError(probe_id, candidates, rank)
        previous_score = candidate.score

        if candidate.template_id in seen_ids:
            raise DuplicateCandidateError(probe_id, candidates, candidate.template_id)
        seen_ids.add(candidate.template_id)


def format_candidate_list(probe_id: str, candidates: Sequence[Candidate]) -> List[str]:
    """
    Render a candidate list for diagnostics, one ``probeId rank templateId
    score`` line per entry with ten decimal places.
    """
    return [
        f"{probe_id} {rank} {candidate.template_id} {candidate.score:.10f}"
        for rank, candidate in enumerate(candidates)
    ]
