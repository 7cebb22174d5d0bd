"""
Configuration management for the gallery harness.

This module loads harness defaults from environment variables and .env files.
Every value here is a default: command-line arguments take precedence and are
combined with these defaults into a frozen ``HarnessSettings`` per invocation.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import DEFAULT_CANDIDATE_LIST_LENGTH

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# Directory Configuration
# =============================================================================
# Read-only directory holding the engine's configuration files
CONFIG_DIR: Path = Path(os.getenv("HARNESS_CONFIG_DIR", "config"))

# Directory the engine finalizes the gallery into and searches from
ENROLL_DIR: Path = Path(os.getenv("HARNESS_ENROLL_DIR", "enroll"))

# Directory receiving shard inputs, logs, template stores and candidate lists
OUTPUT_DIR: Path = Path(os.getenv("HARNESS_OUTPUT_DIR", "output"))

# Stem of per-shard log and candidate list file names
OUTPUT_STEM: str = os.getenv("HARNESS_OUTPUT_STEM", "stem")

# =============================================================================
# Processing Configuration
# =============================================================================
# Default number of shards (one worker process per shard)
NUM_SHARDS: int = int(os.getenv("NUM_SHARDS", "1"))

# Number of candidates requested per search
CANDIDATE_LIST_LENGTH: int = int(
    os.getenv("CANDIDATE_LIST_LENGTH", str(DEFAULT_CANDIDATE_LIST_LENGTH))
)

# multiprocessing start method for workers; "fork" lets workers inherit the
# engine initialized in the parent
PROCESS_START_METHOD: str = os.getenv("PROCESS_START_METHOD", "fork")

# =============================================================================
# Engine Configuration
# =============================================================================
# Template engine reference in "module:attribute" form
TEMPLATE_ENGINE: str = os.getenv(
    "TEMPLATE_ENGINE", "gallery_harness.reference_engine:ReferenceEngine"
)

# =============================================================================
# Logging Configuration
# =============================================================================
# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Render log events as JSON lines instead of console text
STRUCTURED_LOGGING: bool = os.getenv("STRUCTURED_LOGGING", "true").lower() == "true"

# Write a JSON run report next to the shard outputs
WRITE_RUN_REPORT: bool = os.getenv("WRITE_RUN_REPORT", "true").lower() == "true"

# =============================================================================
# Development and Debugging Configuration
# =============================================================================
# Enable debug mode (skips configuration validation on import)
DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"


@dataclass(frozen=True)
class HarnessSettings:
    """
    Resolved settings for one harness invocation.

    Parameters
    ----------
    config_dir : Path
        Engine configuration directory.
    enroll_dir : Path
        Gallery directory written by finalization and read by search.
    output_dir : Path
        Directory for shard inputs and outputs.
    output_stem : str
        Stem for log and candidate list file names.
    input_file : Optional[Path]
        Record file; required by enrollment and search.
    num_shards : int
        Requested number of worker processes.
    candidate_list_length : int
        Number of candidates requested per search.
    start_method : str
        multiprocessing start method used for workers.
    """

    config_dir: Path = CONFIG_DIR
    enroll_dir: Path = ENROLL_DIR
    output_dir: Path = OUTPUT_DIR
    output_stem: str = OUTPUT_STEM
    input_file: Optional[Path] = None
    num_shards: int = NUM_SHARDS
    candidate_list_length: int = CANDIDATE_LIST_LENGTH
    start_method: str = PROCESS_START_METHOD


# =============================================================================
# Configuration Validation
# =============================================================================
def validate_configuration() -> bool:
    """
    Validate the current configuration settings.

    Returns
    -------
    bool
        True if configuration is valid.

    Raises
    ------
    ValueError
        If critical configuration parameters are invalid.
    """
    errors = []

    # Validate numeric parameters
    if NUM_SHARDS < 1:
        errors.append("NUM_SHARDS must be at least 1")

    if CANDIDATE_LIST_LENGTH < 1:
        errors.append("CANDIDATE_LIST_LENGTH must be at least 1")

    # Validate process start method
    valid_start_methods = ["fork", "forkserver", "spawn"]
    if PROCESS_START_METHOD not in valid_start_methods:
        errors.append(f"PROCESS_START_METHOD must be one of {valid_start_methods}")

    # Validate engine reference
    if ":" not in TEMPLATE_ENGINE:
        errors.append("TEMPLATE_ENGINE must have the form 'module:attribute'")

    # Validate log level
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True


def get_config_summary() -> dict:
    """
    Get a summary of the current configuration.

    Returns
    -------
    dict
        Dictionary containing key configuration parameters.
    """
    return {
        "paths": {
            "config_dir": str(CONFIG_DIR),
            "enroll_dir": str(ENROLL_DIR),
            "output_dir": str(OUTPUT_DIR),
            "output_stem": OUTPUT_STEM,
        },
        "processing": {
            "num_shards": NUM_SHARDS,
            "candidate_list_length": CANDIDATE_LIST_LENGTH,
            "start_method": PROCESS_START_METHOD,
        },
        "engine": {
            "template_engine": TEMPLATE_ENGINE,
        },
        "logging": {
            "level": LOG_LEVEL,
            "structured": STRUCTURED_LOGGING,
            "write_run_report": WRITE_RUN_REPORT,
        },
    }


# Validate configuration on import
if not DEBUG_MODE:
    validate_configuration()
