"""CLI entry point for the SEO IQ autopilot."""

from __future__ import annotations

import logging
from datetime import date, datetime

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from seoiq.pipeline.base import (
    AutopilotError,
    PipelineProgress,
    PipelineStep,
    RunReport,
    StepFailedError,
    StepStatus,
)

console = Console()

_STATUS_STYLE = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.DONE: "green",
    StepStatus.FAILED: "bold red",
    StepStatus.SKIPPED: "dim",
}

_RUN_STYLE = {
    "pending": "white",
    "keyword_picked": "cyan",
    "generating": "yellow",
    "completed": "green",
    "failed": "red",
}


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """SEO IQ autopilot: keyword to published article, on a schedule."""


# ---------------------------------------------------------------------------
# sites - register managed sites
# ---------------------------------------------------------------------------


@main.group()
def sites() -> None:
    """Manage sites under autopilot control."""


@sites.command("add")
@click.argument("site_id")
@click.option("--org", "organization_id", required=True, help="Owning organization ID")
@click.option("--domain", required=True, help="Site domain, e.g. example.com")
def sites_add(site_id: str, organization_id: str, domain: str) -> None:
    """Register a site."""
    config = _guard(lambda: _site_store().add_site(site_id, organization_id, domain))
    console.print(f"[green]Added site {config.site_id} ({config.domain})[/green]")


@sites.command("list")
def sites_list() -> None:
    """List registered sites."""
    configs = _site_store().list_sites()
    if not configs:
        console.print("[yellow]No sites registered. Use 'seoiq sites add'.[/yellow]")
        return

    table = Table(title="Sites")
    table.add_column("ID")
    table.add_column("Domain")
    table.add_column("Autopilot")
    table.add_column("Cadence")
    table.add_column("Next run")
    table.add_column("In flight")
    for c in configs:
        table.add_row(
            c.site_id,
            c.domain,
            "[green]on[/green]" if c.enabled else "[dim]off[/dim]",
            c.cadence.value,
            _fmt(c.next_run_at),
            c.pipeline_step or "-",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# status / config
# ---------------------------------------------------------------------------


@main.command()
@click.option("--site", "site_id", required=True, help="Site ID")
def status(site_id: str) -> None:
    """Show autopilot config and pipeline progress for a site."""
    config = _guard(lambda: _site_store().get_autopilot_config(site_id))

    lines = [
        f"Autopilot: {'[green]enabled[/green]' if config.enabled else '[dim]disabled[/dim]'}",
        f"Cadence: {config.cadence.value}",
        f"Reasoning level: {config.reasoning_level.value}",
        f"Articles per run: {config.articles_per_run}",
        f"Next run: {_fmt(config.next_run_at)}",
        f"Last run: {_fmt(config.last_run_at)}",
    ]
    if config.awaiting_generation:
        lines.append(
            f"[yellow]Awaiting generation[/yellow] for keyword {config.pipeline_keyword_id}"
        )
    if config.last_error:
        lines.append(f"[red]Last error:[/red] {config.last_error}")
    console.print(Panel("\n".join(lines), title=f"{config.site_id} ({config.domain})"))
    if config.awaiting_generation:
        console.print(f"[dim]Continue with: seoiq resume --site {site_id}[/dim]")


@main.command("config")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--enable/--disable", "enabled", default=None, help="Turn autopilot on or off")
@click.option(
    "--cadence",
    type=click.Choice(["daily", "every_3_days", "weekly"]),
    default=None,
    help="How often the nightly trigger picks a keyword",
)
@click.option(
    "--iq",
    "reasoning_level",
    type=click.Choice(["low", "medium", "high"]),
    default=None,
    help="Reasoning level passed to article generation",
)
@click.option("--per-run", "articles_per_run", type=int, default=None, help="Articles per run")
@click.option("--clear-progress", is_flag=True, help="Discard the in-flight article")
def config_cmd(
    site_id: str,
    enabled: bool | None,
    cadence: str | None,
    reasoning_level: str | None,
    articles_per_run: int | None,
    clear_progress: bool,
) -> None:
    """Update a site's autopilot configuration."""
    from seoiq.storage.sites import AutopilotUpdate

    changes = {
        key: value
        for key, value in {
            "enabled": enabled,
            "cadence": cadence,
            "reasoning_level": reasoning_level,
            "articles_per_run": articles_per_run,
        }.items()
        if value is not None
    }
    if clear_progress:
        changes["pipeline_step"] = None
    if not changes:
        console.print("[yellow]Nothing to update.[/yellow]")
        return

    config = _guard(
        lambda: _site_store().update_autopilot_config(site_id, AutopilotUpdate(**changes))
    )
    console.print(
        f"[green]Updated {site_id}:[/green] "
        f"{'enabled' if config.enabled else 'disabled'}, {config.cadence.value}, "
        f"{config.reasoning_level.value}, {config.articles_per_run}/run, "
        f"next run {_fmt(config.next_run_at)}"
    )


# ---------------------------------------------------------------------------
# run / resume / run-ready
# ---------------------------------------------------------------------------


@main.command()
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--instructions", "-i", default=None, help="Extra instructions for generation")
def run(site_id: str, instructions: str | None) -> None:
    """Refresh, pick, generate and publish articles now."""
    _execute(lambda executor: executor.run_now(site_id, instructions), site_id)


@main.command()
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--instructions", "-i", default=None, help="Extra instructions for generation")
def resume(site_id: str, instructions: str | None) -> None:
    """Generate and publish the article left awaiting generation."""
    _execute(lambda executor: executor.resume(site_id, instructions), site_id)


@main.command("run-ready")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--date", "day", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="Day to run (default: today)")
def run_ready(site_id: str, day: datetime | None) -> None:
    """Generate and publish today's calendar runs whose keyword is picked."""
    today = day.date() if day else date.today()
    _execute(lambda executor: executor.run_ready_today(site_id, today), site_id)


@main.command()
def nightly() -> None:
    """Pick keywords for due sites and for today's scheduled runs."""
    from seoiq.config import get_settings
    from seoiq.pipeline.nightly import NightlyTrigger
    from seoiq.remote.client import SeoIQClient
    from seoiq.storage.models import utcnow
    from seoiq.storage.runs import ScheduledRunStore

    settings = get_settings()
    _setup_logging(settings.log_level)
    _check_api_token(settings)
    client = SeoIQClient.from_settings(settings)
    trigger = NightlyTrigger(
        client,
        _site_store(settings),
        ScheduledRunStore(settings.db_path, lease_minutes=settings.run_lease_minutes),
    )

    try:
        with console.status("[bold green]Picking keywords..."):
            report = trigger.run(utcnow())
    finally:
        client.close()

    console.print(f"  [green]Sites picked:[/green] {len(report.sites_picked)}")
    for site_id, error in report.sites_failed.items():
        console.print(f"  [red]{site_id}:[/red] {error}")
    console.print(f"  [green]Scheduled runs picked:[/green] {len(report.runs_picked)}")
    if report.runs_failed:
        console.print(f"  [red]Scheduled runs failed:[/red] {len(report.runs_failed)}")


# ---------------------------------------------------------------------------
# calendar - scheduled runs
# ---------------------------------------------------------------------------


@main.group()
def calendar() -> None:
    """Content calendar of scheduled runs."""


@calendar.command("show")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--month", default=None, help="Month as YYYY-MM (default: this month)")
def calendar_show(site_id: str, month: str | None) -> None:
    """List scheduled runs for a month."""
    month = month or date.today().strftime("%Y-%m")
    rows = _guard(lambda: _scheduler().list_month(site_id, month))
    if not rows:
        console.print(f"[dim]No runs scheduled for {site_id} in {month}.[/dim]")
        return

    table = Table(title=f"{site_id} - {month}")
    table.add_column("Date", width=10)
    table.add_column("Status")
    table.add_column("Keyword")
    table.add_column("Article")
    table.add_column("URL")
    for r in rows:
        style = _RUN_STYLE.get(r.status, "white")
        table.add_row(
            r.scheduled_date.isoformat(),
            f"[{style}]{r.status}[/{style}]",
            r.keyword_text or "",
            r.article_title or (r.error or ""),
            r.published_url or "",
        )
    console.print(table)


@calendar.command("toggle")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--date", "day", type=click.DateTime(["%Y-%m-%d"]), required=True)
def calendar_toggle(site_id: str, day: datetime) -> None:
    """Add a run on an empty day, or remove a pending one."""
    result = _guard(lambda: _scheduler().toggle_day(site_id, day.date(), date.today()))
    console.print(f"{day.date().isoformat()}: {result.value}")


@calendar.command("schedule")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--month", required=True, help="Month as YYYY-MM")
@click.option("--weekdays", "-w", required=True,
              help="Comma-separated weekdays, 0=Sunday .. 6=Saturday (e.g. 1,3,5)")
def calendar_schedule(site_id: str, month: str, weekdays: str) -> None:
    """Schedule runs on the chosen weekdays for the rest of a month."""
    try:
        days = {int(w) for w in weekdays.split(",") if w.strip()}
    except ValueError:
        console.print("[red]Invalid weekdays. Use numbers separated by commas.[/red]")
        raise SystemExit(1)

    created = _guard(lambda: _scheduler().schedule_month(site_id, month, days, date.today()))
    console.print(f"[green]Scheduled {len(created)} new run(s) in {month}.[/green]")
    for r in created:
        console.print(f"  {r.scheduled_date.isoformat()}")


@calendar.command("delete")
@click.option("--site", "site_id", required=True, help="Site ID")
@click.option("--date", "day", type=click.DateTime(["%Y-%m-%d"]), required=True)
def calendar_delete(site_id: str, day: datetime) -> None:
    """Delete a pending scheduled run."""
    from seoiq.config import get_settings
    from seoiq.storage.runs import ScheduledRunStore

    _guard(lambda: _site_store().get_autopilot_config(site_id))
    store = ScheduledRunStore(get_settings().db_path)
    if _guard(lambda: store.delete_pending(site_id, day.date())):
        console.print(f"[green]Deleted run on {day.date().isoformat()}.[/green]")
    else:
        console.print(f"[dim]No run on {day.date().isoformat()}.[/dim]")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _check_api_token(settings: object) -> None:
    """Exit with a helpful message if the API token is not set."""
    if not getattr(settings, "api_token", ""):
        console.print(
            "[bold red]Error:[/bold red] SEOIQ_API_TOKEN not set.\n"
            "Add it to .env or the environment."
        )
        raise SystemExit(1)


def _site_store(settings=None):
    from seoiq.config import get_settings
    from seoiq.storage.sites import SiteStore

    settings = settings or get_settings()
    return SiteStore(
        settings.db_path,
        max_articles_per_run=settings.max_articles_per_run,
        nightly_run_hour=settings.nightly_run_hour,
        lease_minutes=settings.run_lease_minutes,
    )


def _scheduler():
    from seoiq.config import get_settings
    from seoiq.pipeline.calendar import CalendarScheduler
    from seoiq.storage.runs import ScheduledRunStore

    settings = get_settings()
    return CalendarScheduler(
        ScheduledRunStore(settings.db_path, lease_minutes=settings.run_lease_minutes),
        _site_store(settings),
    )


def _guard(action):
    """Run a store action, turning domain errors into a clean exit."""
    try:
        return action()
    except (AutopilotError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)


def _execute(action, site_id: str) -> None:
    """Build an executor, run ``action`` with live step output, print the report."""
    from seoiq.config import get_settings
    from seoiq.pipeline.executor import RunExecutor
    from seoiq.remote.client import SeoIQClient

    settings = get_settings()
    _setup_logging(settings.log_level)
    _check_api_token(settings)
    client = SeoIQClient.from_settings(settings)

    with console.status("[bold green]Starting...") as spinner:

        def on_progress(progress: PipelineProgress) -> None:
            spinner.update(_describe(progress))

        executor = RunExecutor.from_settings(settings, client, on_progress=on_progress)
        try:
            report = action(executor)
        except StepFailedError as e:
            spinner.stop()
            _print_report(e.report)
            _print_steps(executor.orchestrator.progress)
            console.print(f"[bold red]Error:[/bold red] {e}")
            config = executor.sites.get_autopilot_config(site_id)
            if config.awaiting_generation:
                console.print(
                    f"[dim]The keyword is saved. Continue with: seoiq resume --site {site_id}[/dim]"
                )
            raise SystemExit(1)
        except AutopilotError as e:
            spinner.stop()
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise SystemExit(1)
        finally:
            client.close()

    _print_report(report)


def _describe(progress: PipelineProgress) -> str:
    running = [s for s, st in progress.steps.items() if st == StepStatus.RUNNING]
    step = running[0].label if running else "Working"
    prefix = f"[{progress.unit}/{progress.total_units}] " if progress.total_units > 1 else ""
    return f"[bold green]{prefix}{step}...[/bold green]"


def _print_steps(progress: PipelineProgress) -> None:
    for step in PipelineStep:
        st = progress.steps[step]
        style = _STATUS_STYLE[st]
        console.print(f"  {int(step)}. {step.label}: [{style}]{st.value}[/{style}]")


def _print_report(report: RunReport) -> None:
    if report.refresh:
        console.print(
            f"[dim]Refreshed: {report.refresh.queries_synced} queries, "
            f"{report.refresh.opportunities_scored} opportunities scored[/dim]"
        )
    for unit in report.units:
        console.print(
            Panel(
                f"[bold]{unit.article_title}[/bold]\n{unit.published_url}",
                subtitle=f"keyword: {unit.keyword or unit.keyword_id}",
            )
        )
    if report.skipped_runs:
        console.print(f"[dim]Skipped {len(report.skipped_runs)} run(s) claimed elsewhere.[/dim]")
    if not report.units and not report.refresh:
        console.print("[dim]Nothing to do.[/dim]")


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"
