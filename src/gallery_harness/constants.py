"""
Constants and lookup tables for the gallery harness.

This module centralizes the fixed parameters of the evaluation protocol: file
naming, output headers, process exit codes and the immutable string-to-enum
tables used to interpret input files and command-line arguments.
"""

from types import MappingProxyType
from typing import Final, Mapping

from .data_models import (
    Action,
    ImageDescription,
    MediaType,
    Modality,
    ShardStatus,
)

# =============================================================================
# Process Exit Codes
# =============================================================================

EXIT_SUCCESS: Final[int] = 0
EXIT_FAILURE: Final[int] = 1

# Distinct sentinel: the engine declines to support the requested operation
EXIT_NOT_IMPLEMENTED: Final[int] = 2

SHARD_STATUS_EXIT_CODES: Final[Mapping[ShardStatus, int]] = MappingProxyType(
    {
        ShardStatus.SUCCESS: EXIT_SUCCESS,
        ShardStatus.NOT_IMPLEMENTED: EXIT_NOT_IMPLEMENTED,
        ShardStatus.FAILURE: EXIT_FAILURE,
    }
)

# =============================================================================
# Search Parameters
# =============================================================================

# Number of candidates requested from the engine per search template
DEFAULT_CANDIDATE_LIST_LENGTH: Final[int] = 20

# Null candidate used when template creation or search fails
NULL_CANDIDATE_TEMPLATE_ID: Final[str] = "NA"
NULL_CANDIDATE_SCORE: Final[float] = -1.0

# Frame rate attached to decoded video media
VIDEO_FPS: Final[int] = 30

# =============================================================================
# File and Directory Constants
# =============================================================================

# Per-shard input files written by the sharder: input.txt.<i>
INPUT_SHARD_STEM: Final[str] = "input.txt."

# Consolidated gallery store consumed by finalization
EDB_FILE_NAME: Final[str] = "edb"
MANIFEST_FILE_NAME: Final[str] = "manifest"

# Marker written to the enrollment directory after a successful finalization
FINALIZED_MARKER_NAME: Final[str] = ".finalized"

# Binary PGM / PPM magic numbers and their pixel depth in bits
PNM_DEPTHS: Final[Mapping[bytes, int]] = MappingProxyType({b"P5": 8, b"P6": 24})

# =============================================================================
# Output Headers
# =============================================================================

CANDIDATE_LIST_HEADER: Final[str] = (
    "searchId candidateRank searchRetCode isAssigned templateId score"
)

ENROLLMENT_LOG_BASE_COLUMNS: Final[str] = "id image templateSizeBytes returnCode"

ENROLLMENT_LOG_GEOMETRY_COLUMNS: Final[Mapping[Modality, str]] = MappingProxyType(
    {
        Modality.FACE: "isLeftEyeAssigned isRightEyeAssigned xleft yleft xright yright",
        Modality.IRIS: "limbusCenterX limbusCenterY pupilRadius limbusRadius",
        Modality.MULTIMODAL: "",
        Modality.MEDIA: "bbxleft bbytop bbwidth bbheight",
    }
)

# =============================================================================
# Lookup Tables
# =============================================================================

MODALITY_BY_NAME: Final[Mapping[str, Modality]] = MappingProxyType(
    {modality.value: modality for modality in Modality}
)

ACTION_BY_NAME: Final[Mapping[str, Action]] = MappingProxyType(
    {action.value: action for action in Action}
)

MEDIA_TYPE_BY_NAME: Final[Mapping[str, MediaType]] = MappingProxyType(
    {media_type.value: media_type for media_type in MediaType}
)

IMAGE_LABELS: Final[Mapping[str, ImageDescription]] = MappingProxyType(
    {
        "faceunknown": ImageDescription.FACE_UNKNOWN,
        "faceiso": ImageDescription.FACE_ISO,
        "facemugshot": ImageDescription.FACE_MUGSHOT,
        "facephotojournalism": ImageDescription.FACE_PHOTOJOURNALISM,
        "facewild": ImageDescription.FACE_WILD,
        "irisunknown": ImageDescription.IRIS_UNKNOWN,
        "irisnir": ImageDescription.IRIS_NIR,
        "iriswild": ImageDescription.IRIS_WILD,
        "unknown": ImageDescription.UNKNOWN,
        "stilliso": ImageDescription.STILL_ISO,
        "stillmugshot": ImageDescription.STILL_MUGSHOT,
        "stillphotojournalism": ImageDescription.STILL_PHOTOJOURNALISM,
        "stillwild": ImageDescription.STILL_WILD,
        "videolongrange": ImageDescription.VIDEO_LONG_RANGE,
        "videophotojournalism": ImageDescription.VIDEO_PHOTOJOURNALISM,
        "videopassiveobservation": ImageDescription.VIDEO_PASSIVE_OBSERVATION,
        "videochokepoint": ImageDescription.VIDEO_CHOKEPOINT,
        "videoelevatedplatform": ImageDescription.VIDEO_ELEVATED_PLATFORM,
    }
)
