"""
Input record parsing for the gallery harness.

Input files hold one record per line in one of two forms:

- single media: ``id path label [path label ...]``
- multi media:  ``id|image path label [path label ...]|video path label ...``

The presence of a ``|`` selects the multi-media form.
"""

from pathlib import Path
from typing import Iterator, List, Optional, Union

import structlog

from .constants import IMAGE_LABELS, MEDIA_TYPE_BY_NAME
from .data_models import ImageDescription, MediaEntry, MediaRef, MediaType, Record
from .exceptions import InputFileError, RecordFormatError

logger = structlog.get_logger(__name__)

MEDIA_DELIMITER = "|"
TOKEN_DELIMITER = None  # any run of whitespace


def split_tokens(line: str, delimiter: Optional[str]) -> List[str]:
    """
    Split a line on a delimiter (whitespace when None), dropping empty tokens.

    A line that yields no tokens is returned whole, so callers always see at
    least one token.

    Examples
    --------
    >>> split_tokens("a  b c", None)
    ['a', 'b', 'c']
    """
    tokens = [token for token in line.split(delimiter) if token != ""]
    if not tokens:
        return [line]
    return tokens


def _parse_refs(tokens: List[str], line: str) -> tuple:
    if not tokens:
        raise RecordFormatError(line, "record has no media references")
    if len(tokens) % 2 != 0:
        raise RecordFormatError(line, f"image path '{tokens[-1]}' has no label")
    return tuple(
        MediaRef(path=tokens[i], label=tokens[i + 1]) for i in range(0, len(tokens), 2)
    )


def parse_record(line: str) -> Record:
    """
    Parse one input line into a typed record.

    Parameters
    ----------
    line : str
        Input line without its trailing newline.

    Returns
    -------
    Record
        The parsed record.

    Raises
    ------
    RecordFormatError
        If the line has no id, no media, a path without a label, or an
        unknown media type.
    """
    text = line.strip()
    if not text:
        raise RecordFormatError(line, "empty line")

    if MEDIA_DELIMITER not in text:
        tokens = split_tokens(text, TOKEN_DELIMITER)
        refs = _parse_refs(tokens[1:], line)
        return Record(record_id=tokens[0], media=(MediaEntry(MediaType.IMAGE, refs),))

    sections = [section.strip() for section in text.split(MEDIA_DELIMITER)]
    record_id = sections[0]
    if len(record_id.split()) != 1:
        raise RecordFormatError(line, "record id must be a single token")

    media = []
    for section in sections[1:]:
        if not section:
            continue
        tokens = split_tokens(section, TOKEN_DELIMITER)
        media_type = MEDIA_TYPE_BY_NAME.get(tokens[0])
        if media_type is None:
            raise RecordFormatError(line, f"unknown media type '{tokens[0]}'")
        media.append(MediaEntry(media_type, _parse_refs(tokens[1:], line)))

    if not media:
        raise RecordFormatError(line, "record has no media entries")

    return Record(record_id=record_id, media=tuple(media))


def resolve_label(label: str) -> ImageDescription:
    """Map an input label to an image description, defaulting to UNKNOWN."""
    description = IMAGE_LABELS.get(label.lower())
    if description is None:
        logger.warning("Unknown image label, using UNKNOWN", label=label)
        return ImageDescription.UNKNOWN
    return description


def read_lines(input_file: Union[str, Path]) -> List[str]:
    """
    Read the non-blank lines of a record file.

    Raises
    ------
    InputFileError
        If the file cannot be opened or decoded.
    """
    try:
        with open(input_file, "r", encoding="utf-8") as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(str(input_file), str(e))


def read_records(input_file: Union[str, Path]) -> Iterator[Record]:
    """
    Yield the records of an input file in file order.

    Raises
    ------
    InputFileError
        If the file cannot be read.
    RecordFormatError
        On the first malformed line.
    """
    for line in read_lines(input_file):
        yield parse_record(line)
