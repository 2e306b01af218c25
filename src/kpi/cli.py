"""CLI for KPI submission, automation and configuration management.

Run with ``python -m src.kpi.cli``. Commands share the application's
database settings (``DATABASE_URL``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from uuid import UUID

import click
import yaml

from src.services.configuration_store import ConfigurationStore
from src.services.errors import KPIEngineError
from src.services.kpi_service import KPIService
from src.services.trigger_orchestrator import AutomationResult, ProcessOptions, TriggerOrchestrator


def _echo_result(result: AutomationResult) -> None:
    if result.skipped:
        click.echo(f"{result.kpi_score_id}: skipped ({result.skipped.value}), status {result.status.value}")
        return
    click.echo(f"{result.kpi_score_id}: {result.status.value} (config v{result.config_version})")
    for action in result.actions:
        line = f"  {action.kind.value:<12} {action.action:<28} {action.outcome.value}"
        if action.error:
            line += f"  [{action.error}]"
        click.echo(line)
    if result.error:
        click.echo(f"  error: {result.error}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """KPI trigger automation commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# =============================================================================
# KPI scores
# =============================================================================


@cli.command()
@click.argument("user_id", type=click.UUID)
@click.argument("period")
@click.option(
    "--inputs",
    "-i",
    "inputs_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="YAML or JSON file with the seven raw metric values.",
)
@click.option("--no-process", is_flag=True, help="Store the score without running automation.")
@click.option("--no-email", is_flag=True, help="Run automation without sending email.")
def submit(user_id: UUID, period: str, inputs_path: Path, no_process: bool, no_email: bool) -> None:
    """Submit a KPI score for USER_ID and PERIOD (YYYY-MM)."""
    raw_inputs = yaml.safe_load(inputs_path.read_text())

    async def _submit() -> tuple[str, AutomationResult | None]:
        kpi_score = await KPIService().submit(user_id, period, raw_inputs)
        summary = f"KPI score {kpi_score.id}: {kpi_score.overall_score:.2f} ({kpi_score.rating.value})"
        if no_process:
            return summary, None
        result = await TriggerOrchestrator().process(kpi_score.id, ProcessOptions(send_email=not no_email))
        return summary, result

    try:
        summary, result = asyncio.run(_submit())
    except KPIEngineError as e:
        raise click.ClickException(e.message) from e

    click.echo(summary)
    if result is not None:
        _echo_result(result)


@cli.command()
@click.argument("kpi_score_id", type=click.UUID)
@click.option("--reprocess", is_flag=True, help="Re-run a record that already settled.")
@click.option("--resend-emails", is_flag=True, help="Send email templates again even if already sent.")
@click.option("--no-email", is_flag=True, help="Skip email dispatch.")
def process(kpi_score_id: UUID, reprocess: bool, resend_emails: bool, no_email: bool) -> None:
    """Run automation for one KPI score."""
    options = ProcessOptions(send_email=not no_email, reprocess=reprocess, resend_emails=resend_emails)
    try:
        result = asyncio.run(TriggerOrchestrator().process(kpi_score_id, options))
    except KPIEngineError as e:
        raise click.ClickException(e.message) from e
    _echo_result(result)


@cli.command("process-pending")
@click.option("--limit", "-l", type=int, default=50, show_default=True, help="Maximum records to process.")
@click.option("--no-email", is_flag=True, help="Skip email dispatch.")
def process_pending(limit: int, no_email: bool) -> None:
    """Process pending and stale KPI scores, oldest first."""
    results = asyncio.run(TriggerOrchestrator().process_pending(limit, ProcessOptions(send_email=not no_email)))
    if not results:
        click.echo("No pending KPI scores")
        return
    for result in results:
        _echo_result(result)
    click.echo(f"\nProcessed {sum(1 for r in results if r.processed)} of {len(results)} records")


@cli.command()
def stale() -> None:
    """List KPI scores stuck in processing."""
    records = asyncio.run(TriggerOrchestrator().find_stale())
    if not records:
        click.echo("No stale KPI scores")
        return
    for record in records:
        click.echo(f"{record.id}  user {record.user_id}  period {record.period}  claimed {record.claimed_at}")


@cli.command()
def stats() -> None:
    """Count KPI scores per automation status."""
    counts = asyncio.run(KPIService().automation_stats())
    for status, total in counts.items():
        click.echo(f"  {status:<18} {total}")


# =============================================================================
# Configuration
# =============================================================================


@cli.group()
def config() -> None:
    """KPI configuration commands."""
    pass


@config.command("show")
@click.option("--version", "version", type=int, default=None, help="Show a stored version instead of the active one.")
@click.option("--format", "output_format", type=click.Choice(["yaml", "json"]), default="yaml", show_default=True)
def config_show(version: int | None, output_format: str) -> None:
    """Print the active (or a specific) configuration document."""
    store = ConfigurationStore()
    try:
        active = asyncio.run(store.get_version(version) if version is not None else store.get_active())
    except KPIEngineError as e:
        raise click.ClickException(e.message) from e

    document = active.document.model_dump(mode="json")
    click.echo(f"# version {active.version} ({active.change_kind.value})")
    if output_format == "json":
        click.echo(json.dumps(document, indent=2))
    else:
        click.echo(yaml.safe_dump(document, sort_keys=False))


@config.command("load")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def config_load(path: Path) -> None:
    """Import a complete configuration document from a YAML file."""
    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict):
        raise click.ClickException(f"{path} does not contain a configuration mapping")
    try:
        active = asyncio.run(ConfigurationStore().import_document(raw))
    except KPIEngineError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"Configuration version {active.version} is now active")


@config.command("reset")
def config_reset() -> None:
    """Restore the built-in default configuration."""
    active = asyncio.run(ConfigurationStore().reset_to_defaults())
    click.echo(f"Configuration version {active.version} is active ({active.change_kind.value})")


if __name__ == "__main__":
    cli()
