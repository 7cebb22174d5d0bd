"""Tests for process-per-shard orchestration."""

import sys

import pytest

from gallery_harness.config import HarnessSettings
from gallery_harness.data_models import (
    Action,
    Candidate,
    Modality,
    ReturnCode,
    RunState,
    ShardStatus,
)
from gallery_harness.exceptions import ConfigurationError, EngineInitializationError
from gallery_harness.finalization import finalize_gallery
from gallery_harness.orchestrator import (
    ProcessOrchestrator,
    classify_exit_code,
    reduce_statuses,
    shard_output_path,
)
from gallery_harness.reference_engine import ReferenceEngine
from gallery_harness.template_store import read_manifest

from conftest import FakeEngine

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="workers inherit the engine through fork"
)


@pytest.fixture
def settings_for(tmp_path, output_dir):
    def _settings(input_file, num_shards=2, candidate_list_length=3):
        return HarnessSettings(
            config_dir=tmp_path / "config",
            enroll_dir=tmp_path / "enroll",
            output_dir=output_dir,
            output_stem="stem",
            input_file=input_file,
            num_shards=num_shards,
            candidate_list_length=candidate_list_length,
            start_method="fork",
        )

    return _settings


@pytest.mark.parametrize(
    "exit_code, expected",
    [
        (0, ShardStatus.SUCCESS),
        (1, ShardStatus.FAILURE),
        (2, ShardStatus.NOT_IMPLEMENTED),
        (3, ShardStatus.FAILURE),
        (-9, ShardStatus.FAILURE),
        (None, ShardStatus.FAILURE),
    ],
)
def test_classify_exit_code(exit_code, expected):
    assert classify_exit_code(exit_code) == expected


def test_reduce_statuses_worst_wins():
    assert reduce_statuses([]) == ShardStatus.SUCCESS
    assert reduce_statuses([ShardStatus.SUCCESS] * 3) == ShardStatus.SUCCESS
    assert (
        reduce_statuses([ShardStatus.SUCCESS, ShardStatus.NOT_IMPLEMENTED])
        == ShardStatus.NOT_IMPLEMENTED
    )
    assert (
        reduce_statuses(
            [ShardStatus.NOT_IMPLEMENTED, ShardStatus.FAILURE, ShardStatus.SUCCESS]
        )
        == ShardStatus.FAILURE
    )


def test_finalize_is_not_a_sharded_action(fake_engine, settings_for):
    with pytest.raises(ConfigurationError):
        ProcessOrchestrator(fake_engine, Modality.FACE, Action.FINALIZE, settings_for(None))


def test_enroll_finalize_search(write_input, face_records, settings_for, output_dir):
    engine = ReferenceEngine(patch_size=8)
    settings = settings_for(write_input(face_records))

    enroll = ProcessOrchestrator(engine, Modality.FACE, Action.ENROLL, settings)
    assert enroll.run() == 0
    assert enroll.state == RunState.DONE
    assert sorted(result.shard_index for result in enroll.results) == [0, 1]
    assert all(result.exit_code == 0 for result in enroll.results)
    assert [len(read_manifest(output_dir / f"manifest.{index}")) for index in (0, 1)] == [3, 2]
    assert not (output_dir / "input.txt.0").exists()

    finalize_gallery(engine, settings.config_dir, settings.enroll_dir, output_dir)
    entries = read_manifest(output_dir / "manifest")
    assert [entry.template_id for entry in entries] == ["S0", "S1", "S2", "S3", "S4"]
    assert sum(entry.byte_length for entry in entries) == (output_dir / "edb").stat().st_size

    search_settings = settings_for(write_input(face_records[3:], "search.txt"))
    search = ProcessOrchestrator(engine, Modality.FACE, Action.SEARCH, search_settings)
    assert search.run() == 0

    rows = []
    for index in (0, 1):
        path = shard_output_path(search_settings, Action.SEARCH, index)
        rows.extend(line.split() for line in path.read_text().splitlines()[1:])
    assert len(rows) == 2 * 3
    top_matches = {row[0]: row[4] for row in rows if row[1] == "0"}
    assert top_matches == {"S3": "S3", "S4": "S4"}


def test_not_implemented_run(write_input, make_image, settings_for, output_dir):
    records = [
        f"S{index} {make_image(f'iris{index}', seed=index, channels=1)} irisnir"
        for index in range(3)
    ]
    settings = settings_for(write_input(records))

    orchestrator = ProcessOrchestrator(
        ReferenceEngine(patch_size=8), Modality.IRIS, Action.ENROLL, settings
    )

    assert orchestrator.run() == 2
    assert orchestrator.final_status == ShardStatus.NOT_IMPLEMENTED
    assert not (output_dir / "manifest.0").exists()
    assert not (output_dir / "edb.1").exists()
    assert not shard_output_path(settings, Action.ENROLL, 0).exists()


def test_failing_shard_fails_the_run(write_input, face_records, tmp_path, settings_for, output_dir):
    records = face_records[:3] + [f"S9 {tmp_path / 'missing.ppm'} faceiso"]
    settings = settings_for(write_input(records))

    orchestrator = ProcessOrchestrator(FakeEngine(), Modality.FACE, Action.ENROLL, settings)

    assert orchestrator.run() == 1
    statuses = {result.shard_index: result.status for result in orchestrator.results}
    assert statuses == {0: ShardStatus.SUCCESS, 1: ShardStatus.FAILURE}
    assert (output_dir / "manifest.0").exists()
    assert not (output_dir / "manifest.1").exists()
    assert (output_dir / "input.txt.1").exists()


def test_empty_input_succeeds(write_input, settings_for, output_dir):
    orchestrator = ProcessOrchestrator(
        FakeEngine(), Modality.FACE, Action.ENROLL, settings_for(write_input([]))
    )

    assert orchestrator.run() == 0
    assert orchestrator.results == []
    assert orchestrator.state == RunState.DONE


def test_engine_initialization_failure(write_input, face_records, settings_for, output_dir):
    engine = FakeEngine(init_code=ReturnCode.CONFIG_ERROR)
    orchestrator = ProcessOrchestrator(
        engine, Modality.FACE, Action.ENROLL, settings_for(write_input(face_records))
    )

    with pytest.raises(EngineInitializationError):
        orchestrator.run()

    assert orchestrator.state == RunState.IDLE
    assert list(output_dir.iterdir()) == []


def test_search_initializes_both_phases(write_input, face_records, settings_for):
    engine = FakeEngine()
    orchestrator = ProcessOrchestrator(
        engine, Modality.FACE, Action.SEARCH, settings_for(write_input(face_records[:1]))
    )

    orchestrator.initialize_engine()

    assert engine.calls == ["initialize_template_creation", "initialize_search"]


class RecordingEngine(FakeEngine):
    """Fake engine that remembers which template ids it finalized."""

    finalized_ids = None

    def finalize_enrollment(self, config_dir, enroll_dir, edb_path, manifest_path, gallery_type):
        self.finalized_ids = [entry.template_id for entry in read_manifest(manifest_path)]
        return super().finalize_enrollment(
            config_dir, enroll_dir, edb_path, manifest_path, gallery_type
        )


def test_reenrollment_with_fewer_shards_drops_old_shard_stores(
    write_input, face_records, settings_for, output_dir
):
    first = settings_for(write_input(face_records, "first.txt"), num_shards=4)
    assert ProcessOrchestrator(FakeEngine(), Modality.FACE, Action.ENROLL, first).run() == 0
    assert (output_dir / "edb.3").exists()

    second = settings_for(write_input(face_records[:2], "second.txt"), num_shards=1)
    assert ProcessOrchestrator(FakeEngine(), Modality.FACE, Action.ENROLL, second).run() == 0

    assert not (output_dir / "edb.1").exists()
    assert not (output_dir / "manifest.3").exists()

    engine = RecordingEngine()
    finalize_gallery(engine, second.config_dir, second.enroll_dir, output_dir)
    assert engine.finalized_ids == ["S0", "S1"]
    assert [entry.template_id for entry in read_manifest(output_dir / "manifest")] == [
        "S0",
        "S1",
    ]


def test_reenrollment_replaces_consolidated_store(
    write_input, face_records, settings_for, tmp_path, output_dir
):
    first = settings_for(write_input(face_records[:2], "first.txt"))
    assert ProcessOrchestrator(FakeEngine(), Modality.FACE, Action.ENROLL, first).run() == 0
    finalize_gallery(RecordingEngine(), first.config_dir, first.enroll_dir, output_dir)
    assert (output_dir / "edb").exists()

    second = settings_for(write_input(face_records[2:], "second.txt"))
    assert ProcessOrchestrator(FakeEngine(), Modality.FACE, Action.ENROLL, second).run() == 0
    assert not (output_dir / "edb").exists()
    assert not (output_dir / "manifest").exists()

    engine = RecordingEngine()
    assert finalize_gallery(engine, second.config_dir, tmp_path / "enroll2", output_dir)
    assert engine.finalized_ids == ["S2", "S3", "S4"]


def test_short_candidate_list_fails_the_run(write_input, face_records, settings_for, output_dir):
    engine = FakeEngine(
        search_candidates=lambda template, k: [
            Candidate(True, f"G{rank}", 1.0 - rank * 0.1) for rank in range(k - 1)
        ]
    )
    settings = settings_for(write_input(face_records[:2]), candidate_list_length=20)

    orchestrator = ProcessOrchestrator(engine, Modality.FACE, Action.SEARCH, settings)

    assert orchestrator.run() == 1
    assert orchestrator.final_status == ShardStatus.FAILURE
    assert all(result.exit_code == 1 for result in orchestrator.results)
    assert not shard_output_path(settings, Action.SEARCH, 0).exists()
    assert not shard_output_path(settings, Action.SEARCH, 1).exists()
    assert (output_dir / "input.txt.0").exists()
