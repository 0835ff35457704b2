import click
import json
from typing import Optional

from switchboard_cli.core_api import counts_api_service
from switchboard_cli.core_api import gmail_api_service
from switchboard_cli.core_api import panels_api_service
from switchboard_cli.core_api.exceptions import (
    SwitchboardError,
    InvalidParameterError,
    RuleCompilationError,
    NotAuthenticatedError,
    SessionExpiredError,
    GmailApiError,
    PanelStorageError,
)
from switchboard_cli.core.cli_utils import _write_json_response, format_count
from switchboard_cli.features.panel_management.models import CountsResponse

CMD_NAME = "switchboard counts"


def _error_code_and_message(error: SwitchboardError):
    """Maps a core error to (code, user-facing message)."""
    if isinstance(error, (InvalidParameterError, RuleCompilationError)):
        return "BAD_REQUEST", str(error)
    if isinstance(error, NotAuthenticatedError):
        return "NOT_AUTHENTICATED", "Not authenticated"
    if isinstance(error, SessionExpiredError):
        return "SESSION_EXPIRED", f"Session expired: {error}"
    if isinstance(error, PanelStorageError):
        return "PANEL_STORAGE_ERROR", str(error)
    if isinstance(error, GmailApiError):
        return "UPSTREAM_ERROR", f"Gmail API error: {error}"
    return "UPSTREAM_ERROR", f"Unexpected error: {error}"


def _read_request(request_json: Optional[str]):
    """Parses --request-json (a JSON string or a file path) into (panels, searchQuery)."""
    try:
        body = json.loads(request_json)
    except json.JSONDecodeError:
        try:
            with open(request_json, "r") as f:
                body = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidParameterError("Invalid JSON body", original_exception=e)
    if not isinstance(body, dict):
        raise InvalidParameterError("Invalid JSON body")
    search = body.get("searchQuery")
    if search is not None and not isinstance(search, str):
        raise InvalidParameterError("searchQuery must be a string")
    return body.get("panels"), search


@click.command("counts")
@click.option(
    "--request-json",
    default=None,
    help='Request as a JSON string or file path: {"panels": [...], "searchQuery": "..."}. Uses the saved panels when omitted.',
)
@click.option("--search", default=None, help="Active search query (ignored when --request-json is given).")
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def counts_cmd(ctx, request_json, search, output_format):
    """Shows total and unread thread counts for every panel."""
    logger = ctx.obj.get("logger")
    if logger:
        logger.info("Executing 'counts'")

    try:
        if request_json:
            raw_panels, search_query = _read_request(request_json)
            panels = counts_api_service.validate_panels(raw_panels)
        else:
            panels = counts_api_service.validate_panels(panels_api_service.load_panels())
            search_query = search

        service = ctx.obj.get("gmail_service") or gmail_api_service.get_gmail_service_from_token()
        counts = counts_api_service.estimate_counts(panels, search_query, service=service)
    except SwitchboardError as e:
        code, message = _error_code_and_message(e)
        if logger:
            logger.error(f"counts failed ({code}): {e}", exc_info=True)
        if output_format == "json":
            details = str(e.original_exception) if e.original_exception else str(e)
            _write_json_response(CMD_NAME, message, error_code=code, error_details=details)
        else:
            click.secho(message, fg="red")
        ctx.exit(1)
        return

    if output_format == "json":
        data = CountsResponse(counts=counts).model_dump(by_alias=True)
        _write_json_response(CMD_NAME, f"Counted {len(counts)} panels.", data=data)
        return

    click.echo("Panel counts (~ marks a search estimate):")
    for panel, count in zip(panels, counts):
        click.echo(
            f" {panel.name}: {format_count(count.total, count.is_estimate)} ({count.unread:,} unread)"
        )
