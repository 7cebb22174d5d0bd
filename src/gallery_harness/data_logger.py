"""
Run report persistence for the gallery harness.

Each invocation can leave a JSON summary next to its shard outputs: what was
run, how every shard ended and the configuration in effect. The report is a
convenience for operators; shard logs, template stores and candidate lists
remain the authoritative outputs.
"""

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from .config import HarnessSettings, get_config_summary
from .data_models import Action, Modality, ShardResult, ShardStatus
from .exceptions import HarnessError

# Initialize structured logger
logger = structlog.get_logger(__name__)


class RunReportWriter:
    """
    Write ``<stem>.<action>.report.json`` into the output directory.

    Parameters
    ----------
    settings : HarnessSettings
        Settings of the invocation; the output directory and stem locate
        the report.
    modality : Modality
        Modality of the run.
    action : Action
        Action of the run.

    Examples
    --------
    >>> writer = RunReportWriter(settings, Modality.FACE, Action.ENROLL)
    >>> path = writer.write(session_id, orchestrator.results, ShardStatus.SUCCESS, 0, 1.5)
    """

    def __init__(
        self, settings: HarnessSettings, modality: Modality, action: Action
    ) -> None:
        self.settings = settings
        self.modality = modality
        self.action = action
        self.output_directory = Path(settings.output_dir)

    @property
    def report_path(self) -> Path:
        return (
            self.output_directory
            / f"{self.settings.output_stem}.{self.action.value}.report.json"
        )

    def _settings_dict(self) -> Dict[str, Any]:
        return {
            key: str(value) if isinstance(value, Path) else value
            for key, value in asdict(self.settings).items()
        }

    @staticmethod
    def _shard_dicts(results: Sequence[ShardResult]) -> List[Dict[str, Any]]:
        return [
            {
                "shard_index": result.shard_index,
                "pid": result.pid,
                "exit_code": result.exit_code,
                "status": result.status.value,
            }
            for result in sorted(results, key=lambda result: result.shard_index)
        ]

    def build_report(
        self,
        session_id: str,
        results: Sequence[ShardResult],
        final_status: Optional[ShardStatus],
        exit_code: int,
        elapsed_seconds: float,
    ) -> Dict[str, Any]:
        """
        Assemble the report document.

        Returns
        -------
        Dict[str, Any]
            JSON-serializable report.
        """
        return {
            "metadata": {
                "session_id": session_id,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "modality": self.modality.value,
                "action": self.action.value,
            },
            "settings": self._settings_dict(),
            "summary": {
                "num_shards": len(results),
                "final_status": final_status.value if final_status else None,
                "exit_code": exit_code,
                "elapsed_seconds": round(elapsed_seconds, 3),
            },
            "shards": self._shard_dicts(results),
            "configuration": get_config_summary(),
        }

    def write(
        self,
        session_id: str,
        results: Sequence[ShardResult],
        final_status: Optional[ShardStatus],
        exit_code: int,
        elapsed_seconds: float,
    ) -> Path:
        """
        Write the report file.

        Returns
        -------
        Path
            Path of the written report.

        Raises
        ------
        HarnessError
            If the report cannot be written.
        """
        report = self.build_report(
            session_id, results, final_status, exit_code, elapsed_seconds
        )
        path = self.report_path
        try:
            self.output_directory.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2, default=str, ensure_ascii=False)
        except OSError as e:
            raise HarnessError(
                f"Failed to write run report: {e}",
                context={"report_path": str(path)},
                error_code="REPORT_001",
            )

        logger.info("Run report saved", report_path=str(path))
        return path
