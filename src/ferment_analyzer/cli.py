"""
CLI commands for Ferment Analyzer using Click.

Command-line access to batch creation, reading entry, batch status,
daily recaps, the consolidated timeline, reading cleanup and alerts, all
against the configured SQLite database.
"""

import sys
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ferment_analyzer.config import Config, get_config
from ferment_analyzer.core.models import (
    BatchStatus,
    DailyRecap,
    HourlySummary,
    ReadingSnapshot,
    TemperatureUnit,
    TimelineEntry,
    TimelineItem,
)
from ferment_analyzer.core.templates import STANDARD_PROTOCOLS
from ferment_analyzer.database.manager import DatabaseError, DatabaseManager
from ferment_analyzer.utils.constants import APP_NAME, APP_VERSION
from ferment_analyzer.utils.dates import resolve_timezone
from ferment_analyzer.utils.gravity import apparent_attenuation, calculate_abv, format_gravity

logger = logging.getLogger(__name__)

# Initialize Rich console for output
console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


def _open_database(ctx) -> DatabaseManager:
    if ctx.obj.get('db') is None:
        config: Config = ctx.obj['config']
        ctx.obj['db'] = DatabaseManager(ctx.obj.get('database'), config=config)
    return ctx.obj['db']


def _fail(ctx, error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {str(error)}")
    if ctx.obj['debug']:
        console.print_exception()
    sys.exit(1)


# Main CLI group
@click.group()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--database', '-d', type=click.Path(),
              help='Path to SQLite database (default from config)')
@click.option('--debug/--no-debug', default=False,
              help='Enable debug logging')
@click.version_option(APP_VERSION, prog_name=APP_NAME)
@click.pass_context
def cli(ctx, config, database, debug):
    """
    Ferment Analyzer - fermentation batch analysis

    Phase readiness, alerts, daily recaps and reading cleanup for
    wine, beer and mead batches.
    """
    ctx.ensure_object(dict)
    _setup_logging(debug)

    if config:
        ctx.obj['config'] = Config.load(Path(config))
    else:
        ctx.obj['config'] = get_config()

    ctx.obj['database'] = Path(database) if database else None
    ctx.obj['debug'] = debug

    if debug:
        console.print("[yellow]Debug mode enabled[/yellow]")


@cli.command()
@click.option('--status', 'status_filter', type=click.Choice([s.value for s in BatchStatus]),
              help='Only show batches with this status')
@click.pass_context
def batches(ctx, status_filter):
    """List batches, newest first."""
    try:
        db = _open_database(ctx)
        found = db.list_batches(BatchStatus(status_filter) if status_filter else None)

        if not found:
            console.print("[yellow]No batches found[/yellow]")
            return

        table = Table(title="Batches", show_header=True, header_style="bold magenta")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Style")
        table.add_column("Status")
        table.add_column("OG", justify="right")
        table.add_column("Current", justify="right")

        for batch in found:
            table.add_row(
                str(batch.id),
                batch.name,
                batch.style or "-",
                batch.status.value,
                f"{batch.original_gravity:.3f}" if batch.original_gravity is not None else "-",
                f"{batch.final_gravity:.3f}" if batch.final_gravity is not None else "-",
            )

        console.print(table)

    except DatabaseError as e:
        _fail(ctx, e)


@cli.command()
@click.argument('name')
@click.option('--style', '-s', help='Batch style (defaults to the protocol name)')
@click.option('--og', 'original_gravity', type=float, help='Original gravity')
@click.option('--template', '-t', type=click.Choice(sorted(STANDARD_PROTOCOLS)),
              help='Create phases from a standard protocol')
@click.option('--optional', 'optional_phases', multiple=True,
              help='Optional protocol phase to include (repeatable; default all)')
@click.option('--no-start', is_flag=True, help="Don't activate the first phase")
@click.pass_context
def new(ctx, name, style, original_gravity, template, optional_phases, no_start):
    """Create a batch, optionally from a standard protocol."""
    try:
        db = _open_database(ctx)
        if template:
            batch = db.create_batch_from_template(
                name,
                template,
                style=style,
                original_gravity=original_gravity,
                enabled_optional=optional_phases or None,
                start=not no_start,
            )
        else:
            batch = db.create_batch(name, style=style, original_gravity=original_gravity)

        console.print(f"[green]✓[/green] Created batch {batch.id}: {batch.name}")
        for phase in db.get_phases(batch.id):
            marker = " [green](active)[/green]" if phase.id == batch.current_phase_id else ""
            console.print(f"  {phase.sort_order + 1}. {phase.name}{marker}")

    except (DatabaseError, ValueError) as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int)
@click.argument('gravity', type=float)
@click.option('--temp', 'temperature', type=float, help='Temperature at the time of the reading')
@click.option('--unit', type=click.Choice([u.value for u in TemperatureUnit]),
              default=TemperatureUnit.FAHRENHEIT.value, show_default=True,
              help='Temperature unit')
@click.pass_context
def reading(ctx, batch_id, gravity, temperature, unit):
    """Record a hydrometer reading and check for alerts."""
    try:
        db = _open_database(ctx)
        stored = db.add_reading(batch_id, gravity, temperature=temperature, temperature_unit=TemperatureUnit(unit))

        temp = f" at {temperature:g}°{unit}" if temperature is not None else ""
        console.print(f"[green]✓[/green] Recorded {format_gravity(stored.gravity)}{temp} (reading {stored.id})")

        for alert in db.get_unresolved_alerts(batch_id=batch_id, limit=5):
            console.print(f"[yellow]![/yellow] {alert['message']}")

    except (DatabaseError, ValueError) as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int)
@click.pass_context
def status(ctx, batch_id):
    """Show the active phase and whether it is ready to advance."""
    try:
        db = _open_database(ctx)
        batch = db.get_batch(batch_id)
        phase, evaluation = db.get_phase_status(batch_id)

        lines = [f"[bold]{batch.name}[/bold]" + (f" ({batch.style})" if batch.style else "")]
        if batch.original_gravity is not None:
            lines.append(f"OG: {format_gravity(batch.original_gravity)}")
        if batch.final_gravity is not None:
            lines.append(f"Current: {format_gravity(batch.final_gravity)}")
        if batch.original_gravity is not None and batch.final_gravity is not None:
            lines.append(f"ABV: {calculate_abv(batch.original_gravity, batch.final_gravity):.1f}%")
            attenuation = apparent_attenuation(
                batch.original_gravity,
                batch.final_gravity,
                db.config.analysis.expected_final_gravity,
            )
            if attenuation is not None:
                lines.append(f"Attenuation: {attenuation:.0%}")
        console.print(Panel.fit("\n".join(lines), title=f"Batch {batch.id}"))

        if phase is None:
            console.print("[yellow]No active phase[/yellow]")
            return

        ready = "[green]Ready to advance[/green]" if evaluation.criteria_met else "[yellow]Not ready[/yellow]"
        console.print(f"\nPhase: [cyan]{phase.name}[/cyan] (day {evaluation.days_in_phase + 1}) - {ready}")
        console.print(f"  {evaluation.criteria_details}")

        if evaluation.overdue_actions or evaluation.next_actions:
            table = Table(title="Actions", show_header=True, header_style="bold magenta")
            table.add_column("Action", style="cyan")
            table.add_column("State", justify="center")
            for action in evaluation.overdue_actions:
                table.add_row(action.name, "[red]Overdue[/red]")
            for action in evaluation.next_actions:
                table.add_row(action.name, "Upcoming")
            console.print(table)

    except DatabaseError as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int)
@click.option('--skip', is_flag=True, help='Skip the active phase instead of completing it')
@click.pass_context
def advance(ctx, batch_id, skip):
    """Complete (or skip) the active phase and start the next one."""
    try:
        db = _open_database(ctx)
        transition = db.skip_phase(batch_id) if skip else db.advance_phase(batch_id)

        verb = "Skipped" if transition.skipped else "Completed"
        console.print(f"[green]✓[/green] {verb} {transition.from_phase.name}")
        if transition.protocol_complete:
            console.print("[bold green]Protocol complete![/bold green]")
        else:
            console.print(f"Now in: [cyan]{transition.to_phase.name}[/cyan]")

    except DatabaseError as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int)
@click.pass_context
def recaps(ctx, batch_id):
    """Generate missing daily recaps and list them."""
    try:
        db = _open_database(ctx)
        created = db.generate_recaps(batch_id)
        stored = db.get_recaps(batch_id)

        if created:
            console.print(f"[green]✓[/green] Generated {created} new recaps")

        if not stored:
            console.print("[yellow]No recaps yet[/yellow]")
            return

        table = Table(title=f"Daily Recaps - Batch {batch_id}", show_header=True, header_style="bold magenta")
        table.add_column("Day", justify="right")
        table.add_column("Date", style="cyan")
        table.add_column("Open", justify="right")
        table.add_column("Close", justify="right")
        table.add_column("Delta", justify="right")
        table.add_column("Avg Temp", justify="right")
        table.add_column("Readings", justify="right")

        for recap in stored:
            table.add_row(
                str(recap.day_number),
                recap.recap_date.isoformat(),
                f"{recap.opening_gravity:.3f}",
                f"{recap.closing_gravity:.3f}",
                f"{recap.gravity_delta:+.4f}",
                f"{recap.avg_temperature:.1f}°{recap.temp_unit.value}" if recap.avg_temperature is not None else "-",
                str(recap.reading_count),
            )

        console.print(table)

    except DatabaseError as e:
        _fail(ctx, e)


def _describe(item: TimelineItem) -> str:
    if isinstance(item, DailyRecap):
        return (
            f"Day {item.day_number} recap: {item.opening_gravity:.3f} -> {item.closing_gravity:.3f} "
            f"({item.reading_count} readings)"
        )
    if isinstance(item, HourlySummary):
        return (
            f"{item.hour_label}: {item.start_gravity:.3f} -> {item.end_gravity:.3f} "
            f"({item.reading_count} readings)"
        )
    if isinstance(item, ReadingSnapshot):
        temp = f", {item.temperature:g}°{item.temperature_unit.value}" if item.temperature is not None else ""
        return f"{format_gravity(item.gravity)}{temp}"
    if isinstance(item, TimelineEntry):
        data = item.data
        return str(data.get("message") or data.get("content") or data.get("name") or data.get("toPhase") or "")
    return ""


@cli.command()
@click.argument('batch_id', type=int)
@click.option('--limit', '-n', type=int, default=30, help='Maximum items to show')
@click.pass_context
def timeline(ctx, batch_id, limit):
    """Show the batch timeline, newest first."""
    try:
        db = _open_database(ctx)
        items = db.load_timeline(batch_id)
        zone = resolve_timezone(db.timezone)

        if not items:
            console.print("[yellow]Timeline is empty[/yellow]")
            return

        table = Table(title=f"Timeline - Batch {batch_id}", show_header=True, header_style="bold magenta")
        table.add_column("When", style="cyan", no_wrap=True)
        table.add_column("Kind")
        table.add_column("Details")

        for item in items[:limit]:
            kind = item.entry_type.value if isinstance(item, TimelineEntry) else item.kind
            table.add_row(
                item.timestamp.astimezone(zone).strftime("%Y-%m-%d %H:%M"),
                kind,
                _describe(item),
            )

        console.print(table)

        if len(items) > limit:
            console.print(f"\n[yellow]Showing first {limit} of {len(items)} items[/yellow]")

    except DatabaseError as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int)
@click.option('--apply', 'apply_flags', is_flag=True,
              help='Exclude every flagged reading')
@click.pass_context
def cleanup(ctx, batch_id, apply_flags):
    """Review suggested outlier exclusions for a batch."""
    try:
        db = _open_database(ctx)
        review = db.get_cleanup_review(batch_id)
        detection = review.detection

        console.print(f"{len(review.readings)} readings, {detection.total_flagged} flagged")
        if detection.clean_range_start and detection.clean_range_end:
            console.print(
                f"Clean range: {detection.clean_range_start:%Y-%m-%d %H:%M} - "
                f"{detection.clean_range_end:%Y-%m-%d %H:%M} UTC"
            )

        if not detection.total_flagged:
            console.print("[green]Nothing to clean up[/green]")
            return

        table = Table(title="Flagged Readings", show_header=True, header_style="bold magenta")
        table.add_column("ID", justify="right")
        table.add_column("Recorded", style="cyan")
        table.add_column("Gravity", justify="right")
        table.add_column("Deviation", justify="right")
        table.add_column("Reason")

        for flag in detection.all_flags:
            table.add_row(
                str(flag.reading_id),
                flag.recorded_at.strftime("%Y-%m-%d %H:%M"),
                f"{flag.gravity:.3f}",
                f"{flag.deviation:.4f}",
                flag.reason.value,
            )

        console.print(table)

        if apply_flags:
            invalidated = db.apply_cleanup(
                batch_id,
                exclude={flag.reading_id: flag.reason for flag in detection.all_flags},
            )
            console.print(
                f"\n[green]✓[/green] Excluded {detection.total_flagged} readings, "
                f"invalidated {len(invalidated)} recaps"
            )

    except DatabaseError as e:
        _fail(ctx, e)


@cli.command()
@click.argument('batch_id', type=int, required=False)
@click.option('--resolve', 'resolve_id', type=int, help='Resolve the alert with this ID')
@click.option('--limit', '-n', type=int, default=50, help='Maximum alerts to show')
@click.pass_context
def alerts(ctx, batch_id: Optional[int], resolve_id: Optional[int], limit):
    """List unresolved alerts (optionally for one batch)."""
    try:
        db = _open_database(ctx)

        if resolve_id is not None:
            if db.resolve_alert(resolve_id):
                console.print(f"[green]✓[/green] Resolved alert {resolve_id}")
            else:
                console.print(f"[red]Alert {resolve_id} not found[/red]")
                sys.exit(1)
            return

        open_alerts = db.get_unresolved_alerts(batch_id=batch_id, limit=limit)
        if not open_alerts:
            console.print("[green]No open alerts[/green]")
            return

        table = Table(title="Open Alerts", show_header=True, header_style="bold magenta")
        table.add_column("ID", justify="right")
        table.add_column("Batch", justify="right")
        table.add_column("Created", style="cyan")
        table.add_column("Type")
        table.add_column("Message")

        for alert in open_alerts:
            color = "yellow" if alert["severity"] == "warning" else "blue"
            table.add_row(
                str(alert["id"]),
                str(alert["batch_id"]),
                alert["created_date"].strftime("%Y-%m-%d %H:%M"),
                f"[{color}]{alert['alert_type']}[/{color}]",
                alert["message"],
            )

        console.print(table)

    except DatabaseError as e:
        _fail(ctx, e)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
