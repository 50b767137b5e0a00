import logging
from typing import Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .cleanup import CleanupEngine
from .config import DEFAULTS, load_cleanup_config, validate_config_value
from .errors import CleanupError, ConfigError
from .models import JobState
from .storage import get_store
from .utils import to_iso

app = typer.Typer(help="jobsweep - reclaims stale jobs and deletes expired ones from the job queue.")

# Sub-app so CLI supports:
#   jobsweep config set max_retention "14 days"
config_app = typer.Typer(help="Stored clean-up defaults.")
app.add_typer(config_app, name="config")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# -----------------------------
# Clean-up
# -----------------------------
@app.command("clean-up")
def clean_up(
    max_retention: Optional[str] = typer.Option(
        None, "--max-retention",
        help=f"Maximum retention time, e.g. '30 days' or '12h' (stored default: {DEFAULTS['max_retention']}).",
    ),
    per_call: Optional[int] = typer.Option(
        None, "--per-call",
        help=f"Maximum number of jobs to delete per call (stored default: {DEFAULTS['per_call']}).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every job decision"),
):
    """Reclaim stale running jobs, then delete jobs which exceed the maximum retention time."""
    _setup_logging(verbose)
    store = get_store()
    try:
        config = load_cleanup_config(store, max_retention=max_retention, per_call=per_call)
    except ConfigError as e:
        raise typer.BadParameter(str(e))

    try:
        report = CleanupEngine(store).run(config)
    except CleanupError as e:
        print(f"[red]Clean-up failed:[/red] {e}")
        raise typer.Exit(1)

    t = Table(title="Clean-up")
    t.add_column("Result")
    t.add_column("Jobs")
    t.add_row("reclaimed", str(report.reclaimed))
    t.add_row("skipped (retried)", str(report.skipped_retried))
    t.add_row("deleted", str(report.deleted))
    t.add_row("deferred (dependencies)", str(report.deferred))
    Console().print(t)


# -----------------------------
# Status & listing
# -----------------------------
@app.command()
def status():
    """Show job state counts."""
    tbl = Table(title="Jobs")
    tbl.add_column("State")
    tbl.add_column("Count")
    for state, count in get_store().counts_by_state():
        tbl.add_row(state, str(count))
    Console().print(tbl)


@app.command("list")
def list_cmd(state: Optional[JobState] = typer.Option(None, "--state", help="Filter by state")):
    """List jobs, optionally by state."""
    rows = get_store().list_jobs(state)
    t = Table(title=f"Jobs{'' if not state else f' ({state.value})'}")
    for c in ["id", "state", "worker", "checked_at", "created_at", "closed_at", "retry_of", "command"]:
        t.add_column(c)
    for job in rows:
        t.add_row(
            str(job.id),
            job.state.value,
            job.worker_name or "",
            to_iso(job.checked_at) or "",
            to_iso(job.created_at),
            to_iso(job.closed_at) or "",
            str(job.original_job_id or ""),
            job.command,
        )
    Console().print(t)


# -----------------------------
# Config
# -----------------------------
@config_app.command("get")
def config_get_cmd(key: str = typer.Argument(..., help="Config key")):
    if key not in DEFAULTS:
        raise typer.BadParameter(f"Allowed keys: {', '.join(sorted(DEFAULTS))}")
    print(get_store().config_get(key, DEFAULTS[key]))


@config_app.command("set")
def config_set_cmd(key: str = typer.Argument(..., help="Config key"), value: str = typer.Argument(..., help="Value")):
    try:
        validate_config_value(key, value)
    except ConfigError as e:
        raise typer.BadParameter(str(e))
    get_store().config_set(key, value)
    print(f"set {key}={value}")
