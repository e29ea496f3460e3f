"""
HolySheets Utilities Package - Cross-Cutting Helpers

Logging setup and structured log helpers shared by the analyst loop, the SDK
and the CLI.  Nothing here imports pandas, DSPy or any model runtime, so the
package stays cheap to import.
"""

from .logging import (
    setup_logging,
    get_logger,
    get_current_log_file,
    get_session_id,
    log_turn_start,
    log_attempt,
    log_attempt_failure,
    log_prompt,
    log_llm_response,
    log_turn_complete,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "get_current_log_file",
    "get_session_id",
    "log_turn_start",
    "log_attempt",
    "log_attempt_failure",
    "log_prompt",
    "log_llm_response",
    "log_turn_complete",
]
