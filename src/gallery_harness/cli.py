import sys
import argparse
from pathlib import Path
from typing import Optional, List
import structlog

from . import config
from .config import HarnessSettings
from .constants import (
    ACTION_BY_NAME,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    MODALITY_BY_NAME,
)
from .data_logger import RunReportWriter
from .data_models import Action, Modality
from .engine import load_engine
from .exceptions import ConfigurationError, HarnessError
from .finalization import finalize_gallery
from .orchestrator import ProcessOrchestrator
from .utils import configure_logging

# Initialize structured logger
logger = structlog.get_logger(__name__)

MULTI_TEMPLATE_MODALITIES = (Modality.FACE, Modality.MEDIA)

USAGE_EXAMPLES = """\
examples:
  gallery-harness face enroll_1N -c config -e enroll -o output -h stem -i enroll.txt -t 4
  gallery-harness face finalize_1N -c config -e enroll -o output -h stem
  gallery-harness face search_1N -c config -e enroll -o output -h stem -i search.txt -t 4
"""


class HarnessCLI:
    """Main command-line interface for the gallery harness."""

    def __init__(self) -> None:
        self.parser = self._create_argument_parser()

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        # -h is the output stem, so help is only available as --help
        parser = argparse.ArgumentParser(
            prog="gallery-harness",
            description="Gallery Harness - 1:N identification evaluation harness",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=USAGE_EXAMPLES,
            add_help=False,
        )

        parser.add_argument(
            "modality",
            choices=sorted(MODALITY_BY_NAME),
            help="Biometric modality of the records.",
        )
        parser.add_argument(
            "action",
            choices=list(ACTION_BY_NAME),
            help="Harness phase to run.",
        )
        parser.add_argument(
            "-c",
            dest="config_dir",
            type=Path,
            default=config.CONFIG_DIR,
            help=f"Engine configuration directory. Default: {config.CONFIG_DIR}.",
        )
        parser.add_argument(
            "-e",
            dest="enroll_dir",
            type=Path,
            default=config.ENROLL_DIR,
            help=f"Finalized gallery directory. Default: {config.ENROLL_DIR}.",
        )
        parser.add_argument(
            "-o",
            dest="output_dir",
            type=Path,
            default=config.OUTPUT_DIR,
            help=f"Directory for shard outputs. Default: {config.OUTPUT_DIR}.",
        )
        parser.add_argument(
            "-h",
            dest="output_stem",
            default=config.OUTPUT_STEM,
            help=f"Stem of log and candidate list files. Default: {config.OUTPUT_STEM}.",
        )
        parser.add_argument(
            "-i",
            dest="input_file",
            type=Path,
            default=None,
            help="Input record file (required for enrollment and search).",
        )
        parser.add_argument(
            "-t",
            dest="num_shards",
            type=int,
            default=config.NUM_SHARDS,
            help=f"Number of worker processes. Default: {config.NUM_SHARDS}.",
        )
        parser.add_argument(
            "-k",
            dest="candidate_list_length",
            type=int,
            default=config.CANDIDATE_LIST_LENGTH,
            help=(
                "Candidates requested per search. "
                f"Default: {config.CANDIDATE_LIST_LENGTH}."
            ),
        )
        parser.add_argument(
            "--engine",
            default=config.TEMPLATE_ENGINE,
            help="Template engine as 'module:attribute'. Default: %(default)s.",
        )
        parser.add_argument(
            "--help",
            action="help",
            default=argparse.SUPPRESS,
            help="Show this help message and exit.",
        )

        return parser

    def _build_settings(self, args: argparse.Namespace) -> HarnessSettings:
        """Validate argument combinations and build the invocation settings."""
        modality = MODALITY_BY_NAME[args.modality]
        action = ACTION_BY_NAME[args.action]

        if action == Action.SEARCH_MULTI and modality not in MULTI_TEMPLATE_MODALITIES:
            raise ConfigurationError(
                f"{action.value} is only supported for face and media",
                config_key="modality",
                config_value=modality.value,
            )
        if action != Action.FINALIZE and args.input_file is None:
            raise ConfigurationError(
                f"An input file (-i) is required for {action.value}",
                config_key="input_file",
            )
        if args.num_shards < 1:
            raise ConfigurationError(
                "Number of processes (-t) must be at least 1",
                config_key="num_shards",
                config_value=str(args.num_shards),
            )
        if args.candidate_list_length < 1:
            raise ConfigurationError(
                "Candidate list length (-k) must be at least 1",
                config_key="candidate_list_length",
                config_value=str(args.candidate_list_length),
            )

        return HarnessSettings(
            config_dir=args.config_dir,
            enroll_dir=args.enroll_dir,
            output_dir=args.output_dir,
            output_stem=args.output_stem,
            input_file=args.input_file,
            num_shards=args.num_shards,
            candidate_list_length=args.candidate_list_length,
            start_method=config.PROCESS_START_METHOD,
        )

    def _execute_finalize(self, engine, settings: HarnessSettings) -> int:
        """Finalize the enrolled gallery in a single process."""
        finalize_gallery(
            engine, settings.config_dir, settings.enroll_dir, settings.output_dir
        )
        return EXIT_SUCCESS

    def _execute_sharded(
        self, engine, modality: Modality, action: Action, settings: HarnessSettings
    ) -> int:
        """Run a sharded enrollment or search and write the run report."""
        orchestrator = ProcessOrchestrator(engine, modality, action, settings)
        exit_code = orchestrator.run()

        if config.WRITE_RUN_REPORT:
            RunReportWriter(settings, modality, action).write(
                orchestrator.session_id,
                orchestrator.results,
                orchestrator.final_status,
                exit_code,
                orchestrator.elapsed_seconds,
            )
        return exit_code

    def _execute(self, args: argparse.Namespace) -> int:
        """Execute the requested action."""
        try:
            settings = self._build_settings(args)
            modality = MODALITY_BY_NAME[args.modality]
            action = ACTION_BY_NAME[args.action]

            logger.info(
                "Starting gallery harness",
                modality=modality.value,
                action=action.value,
                engine=args.engine,
            )
            engine = load_engine(args.engine)

            if action == Action.FINALIZE:
                return self._execute_finalize(engine, settings)
            return self._execute_sharded(engine, modality, action, settings)

        except HarnessError as e:
            logger.error(f"A known application error occurred: {e}", exc_info=True)
            print(f"\n[ERROR] {e}", file=sys.stderr)
            return EXIT_FAILURE
        except Exception as e:
            logger.error(f"An unexpected fatal error occurred: {e}", exc_info=True)
            print(
                f"\n[FATAL ERROR] An unexpected error occurred: {e}",
                file=sys.stderr,
            )
            return EXIT_FAILURE

    def run_from_args(self, args_list: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments."""
        try:
            try:
                args = self.parser.parse_args(args_list)
            except SystemExit as e:
                # argparse exits with 2 on usage errors, which means
                # "not implemented" to callers of the harness
                return EXIT_FAILURE if e.code else EXIT_SUCCESS
            configure_logging(config.LOG_LEVEL, config.STRUCTURED_LOGGING)
            return self._execute(args)
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.", file=sys.stderr)
            return 130


def main() -> int:
    """Main entry point for the CLI."""
    cli = HarnessCLI()
    return cli.run_from_args()


if __name__ == "__main__":
    sys.exit(main())
