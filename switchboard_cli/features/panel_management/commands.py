import click
import json
from pydantic import ValidationError

from switchboard_cli.core_api import panels_api_service
from switchboard_cli.core_api.exceptions import (
    PanelStorageError,
    InvalidParameterError,
    RuleCompilationError,
)
from switchboard_cli.core.cli_utils import _confirm_action, _write_json_response
from .models import PanelConfig


def _load_panels_or_exit(ctx, cmd_name, output_format):
    logger = ctx.obj.get("logger")
    try:
        return panels_api_service.load_panels()
    except PanelStorageError as e:
        if logger:
            logger.error(f"Panel storage error during '{cmd_name}': {e}", exc_info=True)
        if output_format == "json":
            _write_json_response(
                cmd_name,
                str(e),
                error_code="PANEL_STORAGE_ERROR",
                error_details=str(e.original_exception or e),
            )
        else:
            click.secho(f"Error loading panels: {e}", fg="red")
        ctx.exit(1)


@click.group("panels")
@click.pass_context
def panels_group(ctx):
    """Manage inbox panels and their rules."""
    logger = ctx.obj.get("logger")
    if logger:
        logger.debug("Panels command group invoked.")


@panels_group.command("list")
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def list_panels_cmd(ctx, output_format):
    """Lists the configured panels."""
    cmd_name = "switchboard panels list"
    panels = _load_panels_or_exit(ctx, cmd_name, output_format)

    if output_format == "json":
        _write_json_response(
            cmd_name,
            f"Successfully listed {len(panels)} panels.",
            data=[panel.model_dump(mode="json") for panel in panels],
        )
        return

    if not panels:
        click.echo("No panels configured yet.")
        return
    click.echo("Configured Panels:")
    for i, panel in enumerate(panels):
        kind_label = "catch-all" if panel.is_catch_all else f"{len(panel.rules)} rules"
        click.echo(f"\n--- Panel {i+1}: {panel.name} ({kind_label}) ---")
        if panel.is_catch_all:
            click.echo(" Shows threads no other panel claims.")
        elif not panel.rules:
            click.echo(" Shows the whole inbox.")
        for rule in panel.rules:
            click.echo(f" - {rule.action.upper()} {rule.field} ~ /{rule.pattern}/")


@panels_group.command("add")
@click.option(
    "--panel-json",
    required=True,
    help="Panel definition as a JSON string or path to a JSON file.",
)
@click.option(
    "--position",
    type=int,
    default=None,
    help="Zero-based position to insert at. Appends when omitted.",
)
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def add_panel_cmd(ctx, panel_json, position, output_format):
    """Adds a panel from a JSON definition."""
    logger = ctx.obj.get("logger")
    cmd_name = "switchboard panels add"

    def _output_error(message, code, details=None):
        if output_format == "json":
            _write_json_response(cmd_name, message, error_code=code, error_details=details)
        else:
            click.secho(message, fg="red")
        ctx.exit(1)

    try:
        panel_data = json.loads(panel_json)
    except json.JSONDecodeError:
        try:
            with open(panel_json, "r") as f:
                panel_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            if logger:
                logger.error(f"Failed to parse panel_json: {e}", exc_info=True)
            _output_error(
                f"Error: Could not parse --panel-json. Not valid JSON or readable file: {e}",
                "INVALID_INPUT_JSON",
                str(e),
            )
            return

    try:
        new_panel = PanelConfig.model_validate(panel_data)
        panels_api_service.compile_panel_query(new_panel)
        added = panels_api_service.add_panel(new_panel, position=position)
    except ValidationError as e:
        _output_error(f"Error: Invalid panel definition: {e}", "VALIDATION_ERROR", str(e))
        return
    except (InvalidParameterError, RuleCompilationError) as e:
        _output_error(f"Error: {e}", "INVALID_PARAMETER", str(e))
        return
    except PanelStorageError as e:
        _output_error(f"Error saving panel: {e}", "PANEL_STORAGE_ERROR", str(e))
        return

    if output_format == "json":
        _write_json_response(
            cmd_name,
            f"Panel '{added.name}' added successfully.",
            data=added.model_dump(mode="json"),
        )
    else:
        click.secho(f"Panel '{added.name}' added successfully.", fg="green")


@panels_group.command("delete")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def delete_panel_cmd(ctx, name, yes, output_format):
    """Deletes the panel called NAME."""
    cmd_name = "switchboard panels delete"
    confirmed, message = _confirm_action(f"Delete panel '{name}'?", yes)
    if not confirmed:
        click.echo(message)
        return
    try:
        panels_api_service.delete_panel(name)
    except InvalidParameterError as e:
        if output_format == "json":
            _write_json_response(cmd_name, str(e), error_code="PANEL_NOT_FOUND")
        else:
            click.secho(f"Error: {e}", fg="red")
        ctx.exit(1)
        return
    except PanelStorageError as e:
        if output_format == "json":
            _write_json_response(cmd_name, str(e), error_code="PANEL_STORAGE_ERROR")
        else:
            click.secho(f"Error deleting panel: {e}", fg="red")
        ctx.exit(1)
        return

    if output_format == "json":
        _write_json_response(cmd_name, f"Panel '{name}' deleted successfully.", data={"name": name})
    else:
        click.secho(f"Panel '{name}' deleted successfully.", fg="green")


@panels_group.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def reset_panels_cmd(ctx, yes):
    """Replaces all panels with the default layout."""
    confirmed, message = _confirm_action("Replace all panels with the defaults?", yes)
    if not confirmed:
        click.echo(message)
        return
    try:
        defaults = panels_api_service.reset_panels()
    except PanelStorageError as e:
        click.secho(f"Error resetting panels: {e}", fg="red")
        ctx.exit(1)
        return
    click.secho(
        f"Panels reset to defaults: {', '.join(p.name for p in defaults)}.", fg="green"
    )


@panels_group.command("query")
@click.option("--search", default=None, help="Active search to AND with every panel query.")
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def query_panels_cmd(ctx, search, output_format):
    """Shows the Gmail search query each panel compiles to."""
    cmd_name = "switchboard panels query"
    panels = _load_panels_or_exit(ctx, cmd_name, output_format)

    try:
        filter_queries = [
            panels_api_service.compile_panel_query(p) for p in panels if p.has_rules
        ]
        compiled = []
        for panel in panels:
            if panel.is_catch_all:
                query = panels_api_service.compile_panel_query(panel, negate_against=filter_queries)
            else:
                query = panels_api_service.compile_panel_query(panel)
            compiled.append(
                {"name": panel.name, "query": panels_api_service.combine_with_search(query, search)}
            )
    except RuleCompilationError as e:
        if output_format == "json":
            _write_json_response(cmd_name, str(e), error_code="RULE_COMPILATION_ERROR")
        else:
            click.secho(f"Error: {e}", fg="red")
        ctx.exit(1)
        return

    if output_format == "json":
        _write_json_response(cmd_name, f"Compiled {len(compiled)} panel queries.", data=compiled)
        return
    for item in compiled:
        click.echo(f"{item['name']}: {item['query'] or '(whole inbox)'}")


@panels_group.command("match")
@click.option("--from", "from_", default="", help="From header of the thread.")
@click.option("--to", default="", help="To header of the thread.")
@click.option("--cc", default="", help="Cc header of the thread.")
@click.option("--subject", default="", help="Subject of the thread.")
@click.option("--body", default="", help="Body text (or snippet) of the thread.")
@click.pass_context
def match_panels_cmd(ctx, from_, to, cc, subject, body):
    """Shows which panels a thread with the given headers would appear in."""
    panels = _load_panels_or_exit(ctx, "switchboard panels match", "human")
    message_fields = {"from": from_, "to": to, "cc": cc, "subject": subject, "body": body}

    matching = [
        panel.name
        for panel in panels
        if panels_api_service.thread_matches_panel(panel, message_fields, siblings=panels)
    ]
    first = panels_api_service.assign_panel(panels, message_fields)
    if not matching:
        click.echo("No panel takes this thread.")
        return
    click.echo(f"Appears in: {', '.join(matching)}")
    click.echo(f"First panel: {panels[first].name}")
