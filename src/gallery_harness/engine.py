"""
Template engine capability boundary.

The harness never extracts features or scores comparisons itself. It drives
an external *template engine* through the small, closed set of operations in
``TemplateEngine``. Any object providing these methods conforms; no base class
is required. Engines are initialized once per phase and then treated as pure
functions from inputs to template bytes or candidate lists.
"""

import importlib
import inspect
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple, runtime_checkable

import structlog

from .data_models import (
    Candidate,
    GalleryType,
    Geometry,
    Media,
    Modality,
    ReturnStatus,
    TemplateRole,
)
from .exceptions import EngineInitializationError, EngineLoadError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TemplateResult:
    """
    Outcome of creating one template from a record's media.

    Parameters
    ----------
    status : ReturnStatus
        Engine return status.
    template : bytes, default=b""
        Template bytes; empty when creation failed.
    geometry : Tuple[Geometry, ...], default=()
        Optional per-image geometry (eye pairs, iris annuli or bounding boxes)
        in the flattened image order of the record.
    """

    status: ReturnStatus
    template: bytes = b""
    geometry: Tuple[Geometry, ...] = ()


@dataclass(frozen=True)
class MultiTemplateResult:
    """Outcome of creating search templates for every subject found in a probe."""

    status: ReturnStatus
    templates: Tuple[bytes, ...] = ()
    geometry: Tuple[Geometry, ...] = ()


@dataclass(frozen=True)
class SearchResult:
    status: ReturnStatus
    candidates: Tuple[Candidate, ...] = ()


@runtime_checkable
class TemplateEngine(Protocol):
    """Operations a template engine supplies to the harness."""

    def initialize_template_creation(
        self, config_dir: str, role: TemplateRole
    ) -> ReturnStatus:
        """Load models needed to create templates for the given role."""
        ...

    def create_template(
        self, modality: Modality, media: Sequence[Media], role: TemplateRole
    ) -> TemplateResult:
        """Create one template from all media of a record."""
        ...

    def create_search_templates(
        self, modality: Modality, media: Media
    ) -> MultiTemplateResult:
        """Create one search template per subject detected in the probe media."""
        ...

    def finalize_enrollment(
        self,
        config_dir: str,
        enroll_dir: str,
        edb_path: str,
        manifest_path: str,
        gallery_type: GalleryType,
    ) -> ReturnStatus:
        """Build the searchable gallery in ``enroll_dir`` from the EDB and manifest."""
        ...

    def initialize_search(self, config_dir: str, enroll_dir: str) -> ReturnStatus:
        """Load the finalized gallery for identification."""
        ...

    def search(
        self, search_template: bytes, candidate_list_length: int
    ) -> SearchResult:
        """Return a ranked candidate list for one search template."""
        ...


def load_engine(reference: str) -> TemplateEngine:
    """
    Resolve and instantiate a template engine from a ``module:attribute``
    reference.

    The attribute may be a class or a zero-argument factory; anything else
    is used as the engine instance itself.

    Raises
    ------
    EngineLoadError
        If the module or attribute cannot be resolved, the factory fails, or
        the object does not provide the engine operations.
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise EngineLoadError(reference, "expected 'module:attribute'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise EngineLoadError(reference, str(e))

    target = getattr(module, attribute, None)
    if target is None:
        raise EngineLoadError(reference, f"module has no attribute '{attribute}'")

    if inspect.isclass(target) or inspect.isfunction(target):
        try:
            engine = target()
        except Exception as e:
            raise EngineLoadError(reference, f"engine construction failed: {e}")
    else:
        engine = target

    if not isinstance(engine, TemplateEngine):
        raise EngineLoadError(
            reference, "object does not implement the TemplateEngine operations"
        )

    logger.info("Template engine loaded", engine=reference)
    return engine


def require_success(status: ReturnStatus, operation: str) -> None:
    """
    Raise if a one-time engine step did not succeed.

    Raises
    ------
    EngineInitializationError
        If ``status`` is not a success.
    """
    if not status.is_success:
        logger.error(
            "Engine operation failed",
            operation=operation,
            return_code=int(status.code),
            info=status.info,
        )
        raise EngineInitializationError(operation, int(status.code), status.info)
