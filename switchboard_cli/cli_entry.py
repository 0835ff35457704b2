import click
import logging
import os

from switchboard_cli.core.logging_setup import setup_logging

# Import feature command groups
from switchboard_cli.features.panel_management.commands import panels_group
from switchboard_cli.features.counts.commands import counts_cmd


@click.group()
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose (DEBUG level) logging."
)
@click.pass_context
def switchboard(ctx, verbose):
    """
    Switchboard: panel-based triage for your Gmail inbox.
    Define panels with rules and see per-panel thread counts at a glance.
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    running_tests = (
        "PYTEST_CURRENT_TEST" in os.environ
        or os.environ.get("SWITCHBOARD_TEST_MODE") == "1"
    )

    logger = setup_logging(log_level=log_level, testing_mode=running_tests)

    # Preserves obj passed from runner.invoke in tests
    ctx.ensure_object(dict)
    ctx.obj["logger"] = logger

    logger.debug(
        f"Switchboard CLI started. Verbose: {verbose}, Testing Mode: {running_tests}, Initial ctx.obj keys: {list(ctx.obj.keys())}"
    )


# Register command groups from feature slices
switchboard.add_command(panels_group)
switchboard.add_command(counts_cmd)


@switchboard.command()
@click.pass_context
def login(ctx):
    """Logs into Gmail and stores a read-only access token."""
    logger = ctx.obj.get("logger", logging.getLogger("switchboard_cli"))
    from switchboard_cli.core_api.gmail_api_service import get_authenticated_service
    from switchboard_cli.core_api.exceptions import SwitchboardError

    logger.info("Attempting Gmail login and service initialization...")
    try:
        service = get_authenticated_service()
    except SwitchboardError as e:
        logger.error(f"Login failed: {e}", exc_info=True)
        click.secho(f"Login failed: {e}", fg="red")
        ctx.exit(1)
        return

    ctx.obj["gmail_service"] = service
    logger.info("Login successful! Switchboard is connected to Gmail.")
    click.echo("Login successful! Switchboard is connected to Gmail.")


if __name__ == "__main__":
    switchboard(obj={})
