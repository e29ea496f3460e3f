"""
HolySheets Logging Utilities - Debug & Audit Logging for the Analyst Loop

Overview:
---------
Centralised logging configuration for the code-generation-and-execution loop.
Provides session-based file logging with unique identifiers, configurable
verbosity, and structured output for debugging prompt construction, model
responses, sandbox runs and self-correction attempts.

Log Location:
-------------
- Default: ~/.holysheets/logs/
- Each process creates a timestamped log file with session ID
- A symlink 'holysheets.log' always points to the latest session
- Can be overridden via HOLYSHEETS_LOG_DIR environment variable

Log Levels:
-----------
- DEBUG: Full prompts, raw model responses, extracted scripts
- INFO: Turn flow, attempt outcomes
- WARNING: Failed attempts, extraction fallbacks
- ERROR: Exhausted turns, backend failures

Usage:
------
    from holysheets.utils.logging import get_logger, setup_logging

    log_file = setup_logging(level="DEBUG")
    logger = get_logger(__name__)
    logger.info("Starting turn...")
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

# ============================================================================
# Constants
# ============================================================================

DEFAULT_LOG_DIR = Path.home() / ".holysheets" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
SYMLINK_NAME = "holysheets.log"
ROOT_LOGGER_NAME = "holysheets"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(session_id)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Detailed format for file logging (includes line numbers)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(session_id)s | %(name)s:%(lineno)d | %(message)s"

_logging_initialised = False
_log_file_path: Optional[Path] = None
_session_id: Optional[str] = None


# ============================================================================
# Session ID Filter / Formatter
# ============================================================================

class SessionIdFilter(logging.Filter):
    """Add session_id to all log records."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id  # type: ignore[attr-defined]
        return True


class SessionFormatter(logging.Formatter):
    """Formatter that adds session_id, defaulting to 'N/A' if not present."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "session_id"):
            record.session_id = _session_id or "N/A"  # type: ignore[attr-defined]
        return super().format(record)


# ============================================================================
# Setup Functions
# ============================================================================

def generate_session_id() -> str:
    """Generate a short unique session ID (6 characters)."""
    return uuid.uuid4().hex[:6]


def get_log_directory() -> Path:
    """Get the log directory, respecting HOLYSHEETS_LOG_DIR environment variable."""
    env_log_dir = os.getenv("HOLYSHEETS_LOG_DIR")
    if env_log_dir:
        return Path(env_log_dir)
    return DEFAULT_LOG_DIR


def generate_log_filename(session_id: str) -> str:
    """Generate a timestamped log filename with session ID."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"holysheets_{timestamp}_{session_id}.log"


def _writable_log_dir(log_dir: Path) -> Path:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
    except OSError:
        fallback = Path(tempfile.gettempdir()) / "holysheets" / "logs"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console_output: bool = False,
    quiet: bool = False,
) -> Path:
    """
    Initialise HolySheets logging with session-based file and optional console output.

    Parameters
    ----------
    level : str, optional
        Log level: DEBUG, INFO, WARNING, ERROR. Defaults to INFO.
        Can also be set via HOLYSHEETS_LOG_LEVEL environment variable.
    log_dir : Path, optional
        Directory for log files. Defaults to ~/.holysheets/logs/
    console_output : bool
        If True, also log to console (stderr). Default False.
    quiet : bool
        If True, suppress console output entirely. Default False.

    Returns
    -------
    Path
        Path to the log file being written to.
    """
    global _logging_initialised, _log_file_path, _session_id

    _session_id = generate_session_id()

    if level is None:
        level = os.getenv("HOLYSHEETS_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_dir is None:
        log_dir = get_log_directory()
    log_dir = _writable_log_dir(log_dir)

    log_file = log_dir / generate_log_filename(_session_id)
    _log_file_path = log_file

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    for f in root_logger.filters[:]:
        root_logger.removeFilter(f)
    root_logger.setLevel(log_level)
    root_logger.addFilter(SessionIdFilter(_session_id))

    # No rotation - each session gets its own file
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(SessionFormatter(FILE_LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(file_handler)

    if console_output and not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(SessionFormatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root_logger.addHandler(console_handler)

    root_logger.propagate = False

    symlink_path = log_dir / SYMLINK_NAME
    try:
        if symlink_path.is_symlink() or symlink_path.exists():
            symlink_path.unlink()
        symlink_path.symlink_to(log_file.name)
    except OSError:
        # Symlink creation may fail on some systems (e.g., Windows without admin)
        pass

    _logging_initialised = True

    root_logger.info("=" * 80)
    root_logger.info("HolySheets Logging Session Started")
    root_logger.info(f"  Session ID: {_session_id}")
    root_logger.info(f"  Log file: {log_file}")
    root_logger.info(f"  Log level: {level.upper()}")
    root_logger.info("=" * 80)

    return log_file


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given module name.

    Parameters
    ----------
    name : str
        Module name (typically __name__)

    Returns
    -------
    logging.Logger
        Logger instance under the ``holysheets`` namespace
    """
    if not _logging_initialised:
        setup_logging()

    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_current_log_file() -> Optional[Path]:
    """Return the path to the current log file, if logging is initialised."""
    return _log_file_path


def get_session_id() -> Optional[str]:
    """Return the current session ID, if logging is initialised."""
    return _session_id


# ============================================================================
# Logging Helper Functions - Structured Logging
# ============================================================================

def _truncate(content: str, truncate_at: int) -> str:
    if len(content) > truncate_at:
        return content[:truncate_at] + f"... [TRUNCATED, {len(content)} chars total]"
    return content


def log_turn_start(
    logger: logging.Logger,
    user_message: str,
    backend: str,
    dataset: Optional[str] = None,
) -> None:
    """Log the start of a conversation turn."""
    logger.info("-" * 60)
    logger.info("TURN START")
    logger.info(f"  Request: {_truncate(user_message, 200)}")
    logger.info(f"  Backend: {backend}")
    if dataset:
        logger.info(f"  Dataset: {dataset}")
    logger.info("-" * 60)


def log_attempt(
    logger: logging.Logger,
    attempt: int,
    budget: int,
    details: Optional[str] = None,
) -> None:
    """Log the start of a generate/execute/validate attempt."""
    msg = f"[Attempt {attempt}/{budget}] Drafting script"
    if details:
        msg += f" | {details}"
    logger.info(msg)


def log_attempt_failure(
    logger: logging.Logger,
    attempt: int,
    kind: str,
    error: str,
) -> None:
    """Log a failed attempt with its failure classification."""
    logger.warning(f"✗ FAILED [Attempt {attempt}] {kind}: {_truncate(error, 500)}")


def log_prompt(
    logger: logging.Logger,
    prompt_type: str,
    prompt_content: str,
    truncate_at: int = 2000,
) -> None:
    """
    Log a prompt being sent to a model backend.

    Parameters
    ----------
    prompt_type : str
        Description of the prompt (e.g., "Analysis Prompt", "Correction Prompt")
    prompt_content : str
        The full prompt text
    truncate_at : int
        Maximum characters to log
    """
    logger.debug(f"PROMPT ({prompt_type}):\n{_truncate(prompt_content, truncate_at)}")


def log_llm_response(
    logger: logging.Logger,
    response_type: str,
    response_content: str,
    truncate_at: int = 2000,
) -> None:
    """Log a model response or a derived artifact (extracted script, stdout)."""
    logger.debug(f"LLM RESPONSE ({response_type}):\n{_truncate(response_content, truncate_at)}")


def log_turn_complete(
    logger: logging.Logger,
    state: str,
    attempts: int,
    result_type: Optional[str] = None,
    total_duration: Optional[float] = None,
) -> None:
    """Log turn completion summary."""
    logger.info("-" * 60)
    logger.info(f"TURN {state.upper()}")
    logger.info(f"  Attempts: {attempts}")
    if result_type:
        logger.info(f"  Result type: {result_type}")
    if total_duration is not None:
        logger.info(f"  Duration: {total_duration:.2f}s")
    logger.info("-" * 60)
