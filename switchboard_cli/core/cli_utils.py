import click
import json
import logging
import sys
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


def _confirm_action(
    prompt_message: str,
    yes_flag: bool,
    default_abort_message: str = "Action aborted by user.",
) -> Tuple[bool, str]:
    """
    Prompts user for confirmation or bypasses if yes_flag is True.
    Returns a tuple: (bool_confirmed_or_bypassed, message_to_display_or_log).
    """
    if yes_flag:
        logger.info(f"Confirmation bypassed by --yes flag for prompt: '{prompt_message}'")
        return True, f"Confirmation bypassed by --yes flag for: {prompt_message}"

    if not click.confirm(prompt_message, default=False, abort=False):
        logger.info(f"User aborted action for prompt: '{prompt_message}'")
        return False, default_abort_message

    logger.info(f"User confirmed action for prompt: '{prompt_message}'")
    return True, ""


def _write_json_response(
    command_executed: str,
    message: str,
    data: Any = None,
    error_code: Optional[str] = None,
    error_details: Optional[str] = None,
) -> None:
    """Writes the standard {status, command_executed, message, data, error_details} envelope."""
    response_obj = {
        "status": "error" if error_code else "success",
        "command_executed": command_executed,
        "message": message,
        "data": data,
        "error_details": (
            {"code": error_code, "details": error_details or message}
            if error_code
            else None
        ),
    }
    sys.stdout.write(json.dumps(response_obj, indent=2) + "\n")


def format_count(total: int, is_estimate: bool) -> str:
    """'1,234' for exact counts, '~1,234' for search estimates."""
    formatted = f"{total:,}"
    return f"~{formatted}" if is_estimate else formatted
