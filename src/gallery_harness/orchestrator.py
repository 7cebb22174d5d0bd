"""
Process-per-shard orchestration for enrollment and search runs.

The parent process initializes the template engine once, splits the input
into shards and starts one worker process per shard. Workers inherit the
initialized engine, process their shard and report an outcome through their
exit code. The parent does no record processing: it waits on worker
sentinels, collects each result as the worker exits and reduces all shard
outcomes to a single run status, worst outcome first.
"""

import multiprocessing
import sys
import time
from multiprocessing.connection import wait
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .config import HarnessSettings
from .constants import SHARD_STATUS_EXIT_CODES
from .data_models import Action, Modality, RunState, ShardResult, ShardStatus, TemplateRole
from .engine import TemplateEngine, require_success
from .enrollment import enroll_shard
from .exceptions import ConfigurationError, HarnessError
from .search import search_shard
from .sharding import split_input_file
from .template_store import clear_enrollment_stores, shard_store_paths
from .utils import generate_session_id

logger = structlog.get_logger(__name__)

_STATUS_BY_EXIT_CODE = {code: status for status, code in SHARD_STATUS_EXIT_CODES.items()}


def classify_exit_code(exit_code: Optional[int]) -> ShardStatus:
    """
    Map a worker exit code to a shard status.

    A worker killed by a signal (negative code), one that has not exited
    (``None``) or one exiting with an unexpected code counts as a failure.
    """
    if exit_code is None:
        return ShardStatus.FAILURE
    return _STATUS_BY_EXIT_CODE.get(exit_code, ShardStatus.FAILURE)


def reduce_statuses(statuses: Iterable[ShardStatus]) -> ShardStatus:
    """
    Reduce shard outcomes to a run outcome: the most severe one wins.

    Examples
    --------
    >>> reduce_statuses([ShardStatus.SUCCESS, ShardStatus.NOT_IMPLEMENTED])
    <ShardStatus.NOT_IMPLEMENTED: 'not_implemented'>
    """
    return max(statuses, key=lambda status: status.severity, default=ShardStatus.SUCCESS)


def shard_output_path(settings: HarnessSettings, action: Action, shard_index: int) -> Path:
    """Return ``<outputDir>/<stem>.<action>.<i>``, the shard log or candidate list."""
    return Path(settings.output_dir) / f"{settings.output_stem}.{action.value}.{shard_index}"


def run_shard(
    engine: TemplateEngine,
    modality: Modality,
    action: Action,
    settings: HarnessSettings,
    shard_index: int,
    shard_file: Path,
) -> ShardStatus:
    """Run the enrollment or search pipeline over one shard."""
    output_path = shard_output_path(settings, action, shard_index)
    if action == Action.ENROLL:
        edb_path, manifest_path = shard_store_paths(settings.output_dir, shard_index)
        return enroll_shard(
            engine, modality, shard_file, output_path, edb_path, manifest_path
        )

    multi_template = action == Action.SEARCH_MULTI or modality == Modality.MEDIA
    return search_shard(
        engine,
        modality,
        shard_file,
        output_path,
        multi_template,
        settings.candidate_list_length,
    )


def _worker_main(
    engine: TemplateEngine,
    modality: Modality,
    action: Action,
    settings: HarnessSettings,
    shard_index: int,
    shard_file: Path,
) -> None:
    """Worker process entry point; the exit code carries the shard status."""
    log = logger.bind(shard_index=shard_index, shard_file=str(shard_file))
    try:
        status = run_shard(engine, modality, action, settings, shard_index, shard_file)
    except HarnessError as e:
        log.error("Shard failed", **e.to_dict())
        print(f"[ERROR] Shard {shard_index}: {e}", file=sys.stderr)
        status = ShardStatus.FAILURE
    except Exception as e:
        log.error("Unexpected shard failure", error=str(e), exc_info=True)
        print(f"[FATAL ERROR] Shard {shard_index}: {e}", file=sys.stderr)
        status = ShardStatus.FAILURE

    log.info("Shard finished", status=status.value)
    sys.exit(SHARD_STATUS_EXIT_CODES[status])


class ProcessOrchestrator:
    """
    Fan a sharded enrollment or search run out to worker processes.

    Parameters
    ----------
    engine : TemplateEngine
        Template engine; initialized here, in the parent, before any worker
        starts.
    modality : Modality
        Modality of the input records.
    action : Action
        ``ENROLL``, ``SEARCH`` or ``SEARCH_MULTI``.
    settings : HarnessSettings
        Directories, input file, shard count and candidate list length.

    Attributes
    ----------
    state : RunState
        Current lifecycle state, ``IDLE`` through ``DONE``.
    results : List[ShardResult]
        Worker results in completion order.

    Examples
    --------
    >>> orchestrator = ProcessOrchestrator(engine, Modality.FACE, Action.ENROLL, settings)
    >>> exit_code = orchestrator.run()
    """

    def __init__(
        self,
        engine: TemplateEngine,
        modality: Modality,
        action: Action,
        settings: HarnessSettings,
    ) -> None:
        if action == Action.FINALIZE:
            raise ConfigurationError(
                "Finalization is not a sharded action",
                config_key="action",
                config_value=action.value,
            )
        self.engine = engine
        self.modality = modality
        self.action = action
        self.settings = settings

        self.session_id = generate_session_id(action.value)
        self.state = RunState.IDLE
        self.shard_files: List[Path] = []
        self.results: List[ShardResult] = []
        self.final_status: Optional[ShardStatus] = None
        self.elapsed_seconds = 0.0
        self._processes: Dict[int, Tuple[int, multiprocessing.Process]] = {}

        logger.info(
            "ProcessOrchestrator initialized",
            session_id=self.session_id,
            modality=modality.value,
            action=action.value,
            num_shards=settings.num_shards,
            start_method=settings.start_method,
        )

    def initialize_engine(self) -> None:
        """
        Run the engine's one-time initialization for this action.

        Raises
        ------
        EngineInitializationError
            If an initialization call does not succeed.
        """
        config_dir = str(self.settings.config_dir)
        role = (
            TemplateRole.ENROLLMENT_1N
            if self.action == Action.ENROLL
            else TemplateRole.SEARCH_1N
        )
        require_success(
            self.engine.initialize_template_creation(config_dir, role),
            "initialize_template_creation",
        )
        if self.action.is_search:
            require_success(
                self.engine.initialize_search(config_dir, str(self.settings.enroll_dir)),
                "initialize_search",
            )

    def shard(self) -> List[Path]:
        """Split the input file into one shard file per worker."""
        if self.settings.input_file is None:
            raise ConfigurationError(
                f"An input file is required for {self.action.value}",
                config_key="input_file",
            )
        self.shard_files = split_input_file(
            self.settings.input_file, self.settings.output_dir, self.settings.num_shards
        )
        self.state = RunState.SHARDED
        return self.shard_files

    def start(self) -> None:
        """Start one worker process per shard."""
        context = multiprocessing.get_context(self.settings.start_method)
        for shard_index, shard_file in enumerate(self.shard_files):
            process = context.Process(
                target=_worker_main,
                args=(
                    self.engine,
                    self.modality,
                    self.action,
                    self.settings,
                    shard_index,
                    shard_file,
                ),
                name=f"{self.action.value}-shard-{shard_index}",
            )
            process.start()
            self._processes[process.sentinel] = (shard_index, process)
            logger.debug("Worker started", shard_index=shard_index, pid=process.pid)
        self.state = RunState.RUNNING

    def join(self) -> List[ShardResult]:
        """Wait for every worker and collect results in completion order."""
        while self._processes:
            for sentinel in wait(list(self._processes)):
                shard_index, process = self._processes.pop(sentinel)
                process.join()
                status = classify_exit_code(process.exitcode)
                self.results.append(
                    ShardResult(shard_index, process.pid, process.exitcode, status)
                )
                log = logger.info if status == ShardStatus.SUCCESS else logger.warning
                log(
                    "Worker exited",
                    shard_index=shard_index,
                    pid=process.pid,
                    exit_code=process.exitcode,
                    status=status.value,
                )
        self.state = RunState.JOINED
        return self.results

    def run(self) -> int:
        """
        Execute the full run.

        An enrollment run first deletes the consolidated and shard template
        stores of any earlier enrollment in the output directory.

        Returns
        -------
        int
            Process exit code of the run: 0 success, 1 failure, 2 not
            implemented.

        Raises
        ------
        HarnessError
            If engine initialization or input sharding fails.
        """
        start_time = time.perf_counter()
        self.initialize_engine()
        if self.action == Action.ENROLL:
            clear_enrollment_stores(self.settings.output_dir)
        self.shard()

        if self.shard_files:
            self.start()
            self.join()
        else:
            logger.info("Input has no records, nothing to do")
            self.state = RunState.JOINED

        self.final_status = reduce_statuses(result.status for result in self.results)
        self.elapsed_seconds = time.perf_counter() - start_time
        self.state = RunState.DONE

        exit_code = SHARD_STATUS_EXIT_CODES[self.final_status]
        logger.info(
            "Run completed",
            session_id=self.session_id,
            action=self.action.value,
            num_shards=len(self.shard_files),
            final_status=self.final_status.value,
            exit_code=exit_code,
            elapsed_seconds=self.elapsed_seconds,
        )
        return exit_code
