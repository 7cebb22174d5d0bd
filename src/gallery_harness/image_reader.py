"""
Raster image decoding for the gallery harness.

The harness only needs a simple fixed-format reader: binary PGM (``P5``) and
PPM (``P6``) files with 8-bit samples. Decoding is delegated to OpenCV; the
pixel data is handed to the engine as an owned byte buffer in file (RGB)
channel order.
"""

from pathlib import Path
from typing import List

import cv2
import numpy as np
import structlog

from .constants import PNM_DEPTHS, VIDEO_FPS
from .data_models import Image, ImageDescription, Media, MediaType, Record
from .exceptions import ImageDecodeError
from .record_reader import resolve_label

logger = structlog.get_logger(__name__)


def _read_magic_number(image_path: str) -> bytes:
    try:
        with open(image_path, "rb") as f:
            return f.read(2)
    except OSError as e:
        raise ImageDecodeError(image_path, f"cannot open image: {e}")


def read_image(
    image_path: str, description: ImageDescription = ImageDescription.FACE_UNKNOWN
) -> Image:
    """
    Decode a binary PGM or PPM file into an Image.

    Parameters
    ----------
    image_path : str
        Path to the image file.
    description : ImageDescription, default=ImageDescription.FACE_UNKNOWN
        Capture description attached to the decoded image.

    Returns
    -------
    Image
        Decoded image with depth 8 (PGM) or 24 (PPM).

    Raises
    ------
    ImageDecodeError
        If the file is missing, is not binary PGM/PPM, or cannot be decoded.

    Examples
    --------
    >>> image = read_image("/path/to/probe.ppm")
    >>> image.depth
    24
    """
    magic_number = _read_magic_number(image_path)
    depth = PNM_DEPTHS.get(magic_number)
    if depth is None:
        raise ImageDecodeError(
            image_path, f"unsupported magic number {magic_number!r}"
        )

    try:
        pixels = cv2.imread(image_path, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise ImageDecodeError(image_path, f"OpenCV error: {e}")

    if pixels is None:
        raise ImageDecodeError(image_path, "file may be truncated or corrupted")

    if pixels.dtype != np.uint8:
        raise ImageDecodeError(image_path, f"unsupported sample type {pixels.dtype}")

    if depth == 24:
        if pixels.ndim != 3:
            raise ImageDecodeError(image_path, "expected three colour channels")
        # OpenCV decodes colour images as BGR
        pixels = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
    elif pixels.ndim != 2:
        raise ImageDecodeError(image_path, "expected a single grayscale channel")

    height, width = pixels.shape[:2]
    logger.debug(
        "Image decoded",
        image_path=image_path,
        width=width,
        height=height,
        depth=depth,
    )

    return Image(
        width=width,
        height=height,
        depth=depth,
        data=np.ascontiguousarray(pixels).tobytes(),
        description=description,
    )


def load_media(record: Record) -> List[Media]:
    """
    Decode every image referenced by a record.

    Parameters
    ----------
    record : Record
        Parsed input record.

    Returns
    -------
    List[Media]
        One decoded media value per media entry, in input order.

    Raises
    ------
    ImageDecodeError
        On the first image that cannot be decoded.
    """
    media = []
    for entry in record.media:
        images = tuple(read_image(ref.path, resolve_label(ref.label)) for ref in entry.refs)
        fps = VIDEO_FPS if entry.media_type == MediaType.VIDEO else 0
        media.append(Media(media_type=entry.media_type, images=images, fps=fps))
    return media


def write_pnm(image_path: Path, pixels: np.ndarray) -> Path:
    """
    Write an 8-bit array as a binary PGM (2-D) or PPM (3-D, RGB) file.

    Raises
    ------
    ValueError
        If the array is not 8-bit grayscale or RGB.
    """
    if pixels.dtype != np.uint8 or pixels.ndim not in (2, 3):
        raise ValueError("expected an 8-bit grayscale or RGB array")
    magic = "P5" if pixels.ndim == 2 else "P6"
    height, width = pixels.shape[:2]
    with open(image_path, "wb") as f:
        f.write(f"{magic}\n{width} {height}\n255\n".encode("ascii"))
        f.write(np.ascontiguousarray(pixels).tobytes())
    return Path(image_path)
