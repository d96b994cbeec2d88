"""
Command-line entrypoint for the Finora recurring engine

Commands:
- serve         start the daily scheduler and block until interrupted
- run-now       run one materialization pass immediately and print the summary
- check-config  report which settings groups are valid

The scheduler itself has no user-facing surface. `run-now` exists for
operators who need to force a pass (e.g., after fixing a broken template).
It is NOT idempotent: running it on a day the timer already ran can create
a second occurrence for daily templates whose last occurrence is not
visible yet, and it does not coordinate with a scheduler in another process.
"""

import asyncio
from datetime import date, datetime
from typing import Optional

import typer

from finora.audit import configure_logging
from finora.config import get_settings, validate_all_settings
from finora.models.transaction import OutcomeStatus, RunSummary
from finora.orchestrator import create_app_components


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Materialize recurring Finora transactions once a day.",
)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def format_summary(summary: RunSummary) -> str:
    """Render a pass summary for the terminal."""
    if summary.aborted:
        return f"Recurring transactions job failed: {summary.abort_reason}"

    lines = [
        f"Recurring transactions job completed for {summary.run_date.isoformat()}. "
        f"Created: {summary.created_count}, Errors: {summary.error_count}",
        f"Templates evaluated: {summary.template_count} "
        f"(skipped: {summary.skipped_count})",
    ]
    for outcome in summary.outcomes:
        if outcome.status == OutcomeStatus.CREATED:
            lines.append(f"  + {outcome.template_id} -> {outcome.occurrence_id}")
        elif outcome.status == OutcomeStatus.FAILED:
            lines.append(f"  ! {outcome.template_id}: {outcome.error}")
    return "\n".join(lines)


async def _serve(backend: Optional[str]) -> None:
    _, scheduler, audit_logger = create_app_components(backend=backend)
    task = scheduler.start()
    await audit_logger.log_scheduler_started(next_run=scheduler.next_run_time())
    try:
        await task
    finally:
        await scheduler.stop()
        await audit_logger.log_scheduler_stopped()


@app.command("serve")
def serve_cmd(
    backend: Optional[str] = typer.Option(
        None, help="Storage backend: sheets or memory (default: APP_STORAGE_BACKEND)."
    ),
) -> None:
    """Run the daily scheduler until interrupted."""
    settings = get_settings()
    configure_logging(settings.app.log_level)

    if not settings.recurring.enabled:
        typer.echo("Recurring transactions are disabled (RECURRING_ENABLED=false).")
        raise typer.Exit(0)

    try:
        asyncio.run(_serve(backend))
    except KeyboardInterrupt:
        typer.echo("Scheduler stopped.")


@app.command("run-now")
def run_now_cmd(
    run_date: Optional[str] = typer.Option(
        None, "--date", help="Materialize as of this date (YYYY-MM-DD). Default: today."
    ),
    backend: Optional[str] = typer.Option(
        None, help="Storage backend: sheets or memory (default: APP_STORAGE_BACKEND)."
    ),
) -> None:
    """Run one materialization pass immediately."""
    settings = get_settings()
    configure_logging(settings.app.log_level)
    today = _parse_date(run_date)

    try:
        _, scheduler, _ = create_app_components(backend=backend)
    except Exception as e:
        typer.echo(f"Error: could not initialize storage: {e}", err=True)
        raise typer.Exit(1)

    summary = asyncio.run(scheduler.run_now(today))
    if summary is None:
        typer.echo("Error: pass did not complete, see logs.", err=True)
        raise typer.Exit(1)

    typer.echo(format_summary(summary))
    if summary.aborted:
        raise typer.Exit(1)


@app.command("check-config")
def check_config_cmd() -> None:
    """Report which settings groups are valid."""
    status = validate_all_settings()
    failed = False
    for name in ("app", "recurring", "google_sheets"):
        if status.get(name, False):
            typer.echo(f"OK    {name}")
        else:
            failed = True
            typer.echo(f"FAIL  {name}: {status.get(f'{name}_error', 'Not configured')}")

    settings = get_settings()
    try:
        recurring = settings.recurring
        _, scheduler, _ = create_app_components(backend="memory")
        typer.echo(
            f"Next run: {scheduler.next_run_time().isoformat()} "
            f"(timezone: {recurring.timezone or 'local'}, checked {datetime.now().isoformat(timespec='seconds')})"
        )
    except Exception as e:
        failed = True
        typer.echo(f"FAIL  scheduler: {e}")

    if failed:
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
