"""Shared fixtures for the gallery harness tests."""

import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

os.environ.setdefault("DEBUG_MODE", "true")

from gallery_harness.data_models import (  # noqa: E402
    Candidate,
    GalleryType,
    Media,
    Modality,
    ReturnCode,
    ReturnStatus,
    TemplateRole,
)
from gallery_harness.engine import (  # noqa: E402
    MultiTemplateResult,
    SearchResult,
    TemplateResult,
)
from gallery_harness.image_reader import write_pnm  # noqa: E402


class FakeEngine:
    """
    Scriptable template engine.

    ``template_codes`` maps the 1-based number of a ``create_template`` or
    ``create_search_templates`` call to the return code it reports; every
    other call succeeds. Successful templates have distinct lengths so that
    offset bookkeeping is observable.
    """

    def __init__(
        self,
        template_codes: Optional[Dict[int, ReturnCode]] = None,
        geometry: Optional[Callable[[Sequence], tuple]] = None,
        search_candidates: Optional[Callable[[bytes, int], List[Candidate]]] = None,
        search_code: ReturnCode = ReturnCode.SUCCESS,
        multi_count: int = 1,
        init_code: ReturnCode = ReturnCode.SUCCESS,
        finalize_code: ReturnCode = ReturnCode.SUCCESS,
    ) -> None:
        self.template_codes = template_codes or {}
        self.geometry = geometry
        self.search_candidates = search_candidates
        self.search_code = search_code
        self.multi_count = multi_count
        self.init_code = init_code
        self.finalize_code = finalize_code
        self.create_calls = 0
        self.calls: List[str] = []
        self.media_seen: List[Sequence[Media]] = []

    def initialize_template_creation(self, config_dir, role: TemplateRole):
        self.calls.append("initialize_template_creation")
        return ReturnStatus(self.init_code)

    def _next_code(self) -> ReturnCode:
        self.create_calls += 1
        return self.template_codes.get(self.create_calls, ReturnCode.SUCCESS)

    def create_template(self, modality: Modality, media, role: TemplateRole):
        self.calls.append("create_template")
        self.media_seen.append(media)
        code = self._next_code()
        if code != ReturnCode.SUCCESS:
            return TemplateResult(ReturnStatus(code))
        images = [image for entry in media for image in entry.images]
        geometry = self.geometry(images) if self.geometry else ()
        template = f"T{self.create_calls}".encode() * self.create_calls
        return TemplateResult(ReturnStatus(code), template, geometry)

    def create_search_templates(self, modality: Modality, media: Media):
        self.calls.append("create_search_templates")
        code = self._next_code()
        if code != ReturnCode.SUCCESS:
            return MultiTemplateResult(ReturnStatus(code))
        templates = tuple(f"S{index}".encode() for index in range(self.multi_count))
        return MultiTemplateResult(ReturnStatus(code), templates)

    def finalize_enrollment(
        self, config_dir, enroll_dir, edb_path, manifest_path, gallery_type: GalleryType
    ):
        self.calls.append("finalize_enrollment")
        return ReturnStatus(self.finalize_code)

    def initialize_search(self, config_dir, enroll_dir):
        self.calls.append("initialize_search")
        return ReturnStatus(self.init_code)

    def search(self, search_template: bytes, candidate_list_length: int):
        self.calls.append("search")
        if self.search_code != ReturnCode.SUCCESS:
            return SearchResult(ReturnStatus(self.search_code))
        if self.search_candidates is not None:
            candidates = self.search_candidates(search_template, candidate_list_length)
        else:
            candidates = [
                Candidate(True, f"G{rank}", 1.0 - rank * 0.01)
                for rank in range(candidate_list_length)
            ]
        return SearchResult(ReturnStatus(ReturnCode.SUCCESS), tuple(candidates))


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Write a random 8-bit PPM (or PGM when ``channels`` is 1) and return its path."""
    image_dir = tmp_path / "images"
    image_dir.mkdir()

    def _make(name: str, seed: int = 0, size: int = 24, channels: int = 3) -> Path:
        rng = np.random.default_rng(seed)
        shape = (size, size) if channels == 1 else (size, size, 3)
        pixels = rng.integers(0, 256, size=shape, dtype=np.uint8)
        suffix = ".pgm" if channels == 1 else ".ppm"
        return write_pnm(image_dir / f"{name}{suffix}", pixels)

    return _make


@pytest.fixture
def write_input(tmp_path: Path) -> Callable[..., Path]:
    """Write record lines to an input file and return its path."""

    def _write(lines: Sequence[str], name: str = "input.txt") -> Path:
        path = tmp_path / name
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def face_records(make_image) -> List[str]:
    """Five single-image face records, S0..S4."""
    return [
        f"S{index} {make_image(f'subject{index}', seed=index)} faceiso"
        for index in range(5)
    ]


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "output"
    path.mkdir()
    return path
