"""
Reference template engine for the gallery harness.

A small, deterministic engine that conforms to ``TemplateEngine`` so the
harness can be run end to end without a vendor library. Templates are
downsampled grayscale appearance vectors:

1. Each image is converted to grayscale and resized with OpenCV to a
   ``patch_size x patch_size`` patch.
2. The patch is flattened, mean-centred and L2-normalized.
3. The vectors of all images in a record are averaged and renormalized.

Search scores are cosine similarities against every enrolled template. The
engine makes no accuracy claims; it only exercises the harness protocol.
Iris templates are not supported and report ``NOT_IMPLEMENTED``.
"""

import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import structlog

from .constants import (
    EDB_FILE_NAME,
    MANIFEST_FILE_NAME,
    NULL_CANDIDATE_SCORE,
    NULL_CANDIDATE_TEMPLATE_ID,
)
from .data_models import (
    BoundingBox,
    Candidate,
    EyePair,
    GalleryType,
    Geometry,
    Image,
    Media,
    MediaType,
    Modality,
    ReturnCode,
    ReturnStatus,
    TemplateRole,
)
from .engine import MultiTemplateResult, SearchResult, TemplateResult
from .exceptions import TemplateStoreError
from .template_store import iter_templates

logger = structlog.get_logger(__name__)

DEFAULT_PATCH_SIZE = 16


class ReferenceEngine:
    """
    Appearance-vector template engine.

    Parameters
    ----------
    patch_size : int, default=DEFAULT_PATCH_SIZE
        Side length of the grayscale patch each image is reduced to.

    Examples
    --------
    >>> engine = ReferenceEngine()
    >>> engine.initialize_template_creation("config", TemplateRole.ENROLLMENT_1N).is_success
    True
    """

    def __init__(self, patch_size: int = DEFAULT_PATCH_SIZE) -> None:
        if patch_size < 2:
            raise ValueError(f"patch_size must be at least 2, got {patch_size}")
        self.patch_size = patch_size
        self.role: Optional[TemplateRole] = None
        self._gallery_ids: List[str] = []
        self._gallery = np.empty((0, patch_size * patch_size), dtype=np.float32)

    @property
    def template_size(self) -> int:
        """Size in bytes of every template this engine creates."""
        return self.patch_size * self.patch_size * np.dtype(np.float32).itemsize

    @property
    def gallery_size(self) -> int:
        return len(self._gallery_ids)

    # -------------------------------------------------------------------------
    # Template creation
    # -------------------------------------------------------------------------

    def initialize_template_creation(
        self, config_dir: str, role: TemplateRole
    ) -> ReturnStatus:
        self.role = role
        logger.info(
            "Reference engine ready for template creation",
            config_dir=str(config_dir),
            role=role.name,
            patch_size=self.patch_size,
        )
        return ReturnStatus(ReturnCode.SUCCESS)

    def _image_vector(self, image: Image) -> np.ndarray:
        pixels = image.to_array().copy()
        if pixels.ndim == 3:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY)
        patch = cv2.resize(
            pixels, (self.patch_size, self.patch_size), interpolation=cv2.INTER_AREA
        )
        vector = patch.astype(np.float32).ravel()
        vector -= vector.mean()
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector

    def _encode(self, images: Sequence[Image]) -> bytes:
        vectors = np.stack([self._image_vector(image) for image in images])
        template = vectors.mean(axis=0)
        norm = np.linalg.norm(template)
        if norm > 0:
            template /= norm
        return template.astype(np.float32).tobytes()

    @staticmethod
    def _geometry(modality: Modality, images: Sequence[Image]) -> Tuple[Geometry, ...]:
        if modality == Modality.FACE:
            # Nominal eye positions for a roughly centred face
            return tuple(
                EyePair(
                    is_left_assigned=True,
                    is_right_assigned=True,
                    x_left=int(image.width * 0.65),
                    y_left=int(image.height * 0.4),
                    x_right=int(image.width * 0.35),
                    y_right=int(image.height * 0.4),
                )
                for image in images
            )
        if modality == Modality.MEDIA:
            return tuple(
                BoundingBox(0, 0, image.width, image.height) for image in images
            )
        return ()

    def create_template(
        self, modality: Modality, media: Sequence[Media], role: TemplateRole
    ) -> TemplateResult:
        if modality == Modality.IRIS:
            return TemplateResult(
                ReturnStatus(ReturnCode.NOT_IMPLEMENTED, "iris templates not supported")
            )

        images = [image for entry in media for image in entry.images]
        if not images:
            return TemplateResult(ReturnStatus(ReturnCode.REFUSE_INPUT, "no images"))

        return TemplateResult(
            status=ReturnStatus(ReturnCode.SUCCESS),
            template=self._encode(images),
            geometry=self._geometry(modality, images),
        )

    def create_search_templates(
        self, modality: Modality, media: Media
    ) -> MultiTemplateResult:
        """
        Create search templates for a probe.

        Still images yield one template per image; a video yields a single
        template averaged over its frames.
        """
        if modality == Modality.IRIS:
            return MultiTemplateResult(
                ReturnStatus(ReturnCode.NOT_IMPLEMENTED, "iris templates not supported")
            )
        if not media.images:
            return MultiTemplateResult(ReturnStatus(ReturnCode.REFUSE_INPUT, "no images"))

        if media.media_type == MediaType.VIDEO:
            templates = (self._encode(media.images),)
        else:
            templates = tuple(self._encode([image]) for image in media.images)

        return MultiTemplateResult(
            status=ReturnStatus(ReturnCode.SUCCESS),
            templates=templates,
            geometry=self._geometry(modality, media.images),
        )

    # -------------------------------------------------------------------------
    # Finalization and search
    # -------------------------------------------------------------------------

    def finalize_enrollment(
        self,
        config_dir: str,
        enroll_dir: str,
        edb_path: str,
        manifest_path: str,
        gallery_type: GalleryType,
    ) -> ReturnStatus:
        """Copy the template store into the enrollment directory."""
        enroll_path = Path(enroll_dir)
        try:
            enroll_path.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(edb_path, enroll_path / EDB_FILE_NAME)
            shutil.copyfile(manifest_path, enroll_path / MANIFEST_FILE_NAME)
        except OSError as e:
            return ReturnStatus(ReturnCode.ENROLL_DIR_ERROR, str(e))

        logger.info(
            "Reference gallery finalized",
            enroll_dir=str(enroll_path),
            gallery_type=gallery_type.name,
        )
        return ReturnStatus(ReturnCode.SUCCESS)

    def initialize_search(self, config_dir: str, enroll_dir: str) -> ReturnStatus:
        """
        Load the finalized gallery.

        Failed (zero-length) and foreign-sized templates are skipped.
        """
        enroll_path = Path(enroll_dir)
        ids: List[str] = []
        vectors: List[np.ndarray] = []
        try:
            for template_id, template in iter_templates(
                enroll_path / EDB_FILE_NAME, enroll_path / MANIFEST_FILE_NAME
            ):
                if len(template) != self.template_size:
                    continue
                ids.append(template_id)
                vectors.append(np.frombuffer(template, dtype=np.float32))
        except FileNotFoundError as e:
            return ReturnStatus(ReturnCode.ENROLL_DIR_ERROR, str(e))
        except TemplateStoreError as e:
            return ReturnStatus(ReturnCode.TEMPLATE_FORMAT_ERROR, e.message)

        self._gallery_ids = ids
        if vectors:
            self._gallery = np.stack(vectors)
        else:
            self._gallery = np.empty((0, self.patch_size**2), dtype=np.float32)

        logger.info(
            "Reference gallery loaded", enroll_dir=str(enroll_path), gallery_size=len(ids)
        )
        return ReturnStatus(ReturnCode.SUCCESS)

    def search(self, search_template: bytes, candidate_list_length: int) -> SearchResult:
        """
        Rank gallery subjects by cosine similarity.

        Subjects enrolled more than once are reported once, with their best
        score. Lists shorter than requested are padded with unassigned
        placeholders.
        """
        if len(search_template) != self.template_size:
            return SearchResult(
                ReturnStatus(ReturnCode.TEMPLATE_FORMAT_ERROR, "unexpected template size")
            )
        if not self._gallery_ids:
            return SearchResult(ReturnStatus(ReturnCode.VENDOR_ERROR, "gallery is empty"))

        probe = np.frombuffer(search_template, dtype=np.float32)
        scores = self._gallery @ probe

        best: Dict[str, float] = {}
        for template_id, score in zip(self._gallery_ids, scores.tolist()):
            if template_id not in best or score > best[template_id]:
                best[template_id] = score

        ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))
        candidates = [
            Candidate(True, template_id, score)
            for template_id, score in ranked[:candidate_list_length]
        ]
        while len(candidates) < candidate_list_length:
            candidates.append(
                Candidate(False, NULL_CANDIDATE_TEMPLATE_ID, NULL_CANDIDATE_SCORE)
            )

        return SearchResult(ReturnStatus(ReturnCode.SUCCESS), tuple(candidates))
