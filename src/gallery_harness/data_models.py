"""
Data models for the gallery harness.

This module defines the core data structures passed between the harness and
the template engine: typed input records, decoded images, engine return
statuses, auxiliary geometry, template store index entries and ranked
candidates. Image and template buffers are immutable ``bytes`` values with an
explicit length, so no two owners ever alias the same mutable buffer.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Tuple, Union

import numpy as np


class Modality(str, Enum):
    """Biometric modality evaluated by one harness invocation."""

    FACE = "face"
    IRIS = "iris"
    MULTIMODAL = "mm"
    MEDIA = "media"


class Action(str, Enum):
    """Harness phase requested on the command line."""

    ENROLL = "enroll_1N"
    FINALIZE = "finalize_1N"
    SEARCH = "search_1N"
    SEARCH_MULTI = "searchMulti_1N"

    @property
    def is_search(self) -> bool:
        return self in (Action.SEARCH, Action.SEARCH_MULTI)


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class ImageDescription(IntEnum):
    """Capture conditions of an image, taken from the label in the input file."""

    FACE_UNKNOWN = 0
    FACE_ISO = 1
    FACE_MUGSHOT = 2
    FACE_PHOTOJOURNALISM = 3
    FACE_WILD = 4
    IRIS_UNKNOWN = 5
    IRIS_NIR = 6
    IRIS_WILD = 7
    UNKNOWN = 8
    STILL_ISO = 9
    STILL_MUGSHOT = 10
    STILL_PHOTOJOURNALISM = 11
    STILL_WILD = 12
    VIDEO_LONG_RANGE = 13
    VIDEO_PHOTOJOURNALISM = 14
    VIDEO_PASSIVE_OBSERVATION = 15
    VIDEO_CHOKEPOINT = 16
    VIDEO_ELEVATED_PLATFORM = 17


class IrisLR(IntEnum):
    UNSPECIFIED = 0
    RIGHT_IRIS = 1
    LEFT_IRIS = 2


class TemplateRole(IntEnum):
    ENROLLMENT_11 = 0
    VERIFICATION_11 = 1
    ENROLLMENT_1N = 2
    SEARCH_1N = 3


class GalleryType(IntEnum):
    """Composition of the gallery handed to the engine's finalize step."""

    CONSOLIDATED = 0
    UNCONSOLIDATED = 1


class ReturnCode(IntEnum):
    """
    Numeric return codes reported by a template engine.

    The values are written verbatim into enrollment logs and candidate list
    files, so they must never be renumbered.
    """

    SUCCESS = 0
    UNKNOWN_ERROR = 1
    CONFIG_ERROR = 2
    REFUSE_INPUT = 3
    EXTRACT_ERROR = 4
    PARSE_ERROR = 5
    TEMPLATE_CREATION_ERROR = 6
    VERIF_TEMPLATE_ERROR = 7
    FACE_DETECTION_ERROR = 8
    NUM_DATA_ERROR = 9
    TEMPLATE_FORMAT_ERROR = 10
    ENROLL_DIR_ERROR = 11
    INPUT_LOCATION_ERROR = 12
    MEMORY_ERROR = 13
    MATCH_ERROR = 14
    QUALITY_ASSESSMENT_ERROR = 15
    NOT_IMPLEMENTED = 16
    VENDOR_ERROR = 17


class ShardStatus(str, Enum):
    """Outcome of one worker process, ordered by severity."""

    SUCCESS = "success"
    NOT_IMPLEMENTED = "not_implemented"
    FAILURE = "failure"

    @property
    def severity(self) -> int:
        return _SHARD_STATUS_SEVERITY[self]


_SHARD_STATUS_SEVERITY = {
    ShardStatus.SUCCESS: 0,
    ShardStatus.NOT_IMPLEMENTED: 1,
    ShardStatus.FAILURE: 2,
}


class RunState(str, Enum):
    """Lifecycle of a sharded harness run."""

    IDLE = "idle"
    SHARDED = "sharded"
    RUNNING = "running"
    JOINED = "joined"
    DONE = "done"


@dataclass(frozen=True)
class ReturnStatus:
    """
    Status returned by every template engine operation.

    Parameters
    ----------
    code : ReturnCode
        Numeric outcome of the call.
    info : str, default=""
        Optional engine-specific diagnostic text.
    """

    code: ReturnCode
    info: str = ""

    @property
    def is_success(self) -> bool:
        return self.code == ReturnCode.SUCCESS

    @property
    def is_not_implemented(self) -> bool:
        return self.code == ReturnCode.NOT_IMPLEMENTED


@dataclass(frozen=True)
class MediaRef:
    """One image reference from an input line: a file path and its label."""

    path: str
    label: str


@dataclass(frozen=True)
class MediaEntry:
    """An ordered group of image references forming one image or video."""

    media_type: MediaType
    refs: Tuple[MediaRef, ...]


@dataclass(frozen=True)
class Record:
    """
    A typed input record.

    Parameters
    ----------
    record_id : str
        Identifier of the subject or probe. Ids need not be unique across a
        run; output files are keyed per id.
    media : Tuple[MediaEntry, ...]
        Media entries in input order. Single-media input lines produce one
        ``image`` entry holding every path/label pair of the line.

    Examples
    --------
    >>> record = Record("S001", (MediaEntry(MediaType.IMAGE, (MediaRef("a.ppm", "faceiso"),)),))
    >>> record.image_count
    1
    """

    record_id: str
    media: Tuple[MediaEntry, ...]

    @property
    def image_refs(self) -> List[MediaRef]:
        """All image references of the record, flattened in input order."""
        return [ref for entry in self.media for ref in entry.refs]

    @property
    def image_count(self) -> int:
        return sum(len(entry.refs) for entry in self.media)


@dataclass(frozen=True)
class Image:
    """
    A decoded raster image held in an owned, immutable byte buffer.

    Parameters
    ----------
    width : int
        Image width in pixels.
    height : int
        Image height in pixels.
    depth : int
        Bits per pixel: 8 for grayscale, 24 for RGB.
    data : bytes
        Raw pixel data, row-major, RGB interleaved for 24-bit images.
    description : ImageDescription, default=ImageDescription.FACE_UNKNOWN
        Capture conditions from the input label.
    iris_lr : IrisLR, default=IrisLR.UNSPECIFIED
        Which eye an iris image shows, when known.

    Raises
    ------
    ValueError
        If the buffer length does not match ``width * height * depth / 8``.
    """

    width: int
    height: int
    depth: int
    data: bytes = field(repr=False)
    description: ImageDescription = ImageDescription.FACE_UNKNOWN
    iris_lr: IrisLR = IrisLR.UNSPECIFIED

    def __post_init__(self) -> None:
        if self.depth not in (8, 24):
            raise ValueError(f"Unsupported image depth: {self.depth}")
        if len(self.data) != self.size:
            raise ValueError(
                f"Image buffer holds {len(self.data)} bytes, expected {self.size}"
            )

    @property
    def size(self) -> int:
        """Number of bytes in the pixel buffer."""
        return self.width * self.height * (self.depth // 8)

    def to_array(self) -> np.ndarray:
        """
        Return a read-only NumPy view of the pixel buffer.

        Returns
        -------
        np.ndarray
            Array of shape ``(height, width)`` for 8-bit images or
            ``(height, width, 3)`` for 24-bit images.
        """
        array = np.frombuffer(self.data, dtype=np.uint8)
        if self.depth == 8:
            return array.reshape(self.height, self.width)
        return array.reshape(self.height, self.width, 3)


@dataclass(frozen=True)
class Media:
    """Decoded media entry handed to the template engine."""

    media_type: MediaType
    images: Tuple[Image, ...]
    fps: int = 0


@dataclass(frozen=True)
class EyePair:
    """
    Eye coordinates reported for a face image.

    The default instance is the explicit unassigned placeholder.
    """

    is_left_assigned: bool = False
    is_right_assigned: bool = False
    x_left: int = 0
    y_left: int = 0
    x_right: int = 0
    y_right: int = 0

    def to_columns(self) -> List[str]:
        return [
            str(int(self.is_left_assigned)),
            str(int(self.is_right_assigned)),
            str(self.x_left),
            str(self.y_left),
            str(self.x_right),
            str(self.y_right),
        ]


@dataclass(frozen=True)
class IrisAnnulus:
    """Limbus and pupil geometry reported for an iris image."""

    limbus_center_x: int = 0
    limbus_center_y: int = 0
    pupil_radius: int = 0
    limbus_radius: int = 0

    def to_columns(self) -> List[str]:
        return [
            str(self.limbus_center_x),
            str(self.limbus_center_y),
            str(self.pupil_radius),
            str(self.limbus_radius),
        ]


@dataclass(frozen=True)
class BoundingBox:
    """Subject bounding box reported for one still or video frame."""

    x_left: int = 0
    y_top: int = 0
    width: int = 0
    height: int = 0

    def to_columns(self) -> List[str]:
        return [str(self.x_left), str(self.y_top), str(self.width), str(self.height)]


Geometry = Union[EyePair, IrisAnnulus, BoundingBox]


@dataclass(frozen=True)
class IndexEntry:
    """
    Manifest entry locating one template inside the EDB blob file.

    Parameters
    ----------
    template_id : str
        Id of the enrolled record.
    byte_length : int
        Template size in bytes; zero marks a failed template.
    byte_offset : int
        Position of the first template byte in the blob file.
    """

    template_id: str
    byte_length: int
    byte_offset: int

    @property
    def end(self) -> int:
        return self.byte_offset + self.byte_length

    def to_line(self) -> str:
        return f"{self.template_id} {self.byte_length} {self.byte_offset}"


@dataclass(frozen=True)
class Candidate:
    """
    One ranked gallery match returned for a probe.

    Parameters
    ----------
    is_assigned : bool
        False for placeholder entries that do not reference a gallery member.
    template_id : str
        Id of the matched gallery template.
    score : float
        Similarity score; larger means more similar.
    """

    is_assigned: bool
    template_id: str
    score: float


@dataclass(frozen=True)
class ShardResult:
    """Exit status of one worker process as collected by the orchestrator."""

    shard_index: int
    pid: Optional[int]
    exit_code: Optional[int]
    status: ShardStatus
