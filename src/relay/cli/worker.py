"""
CLI: ``relay worker`` - run the queue and scheduler in the foreground.
"""

from __future__ import annotations

import signal
import threading

import typer

from relay.cli.utils import console, make_container

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent runs (default from settings)"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between queue polls"),
    scheduler: bool = typer.Option(True, "--scheduler/--no-scheduler", help="Also fire cron schedules"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Process queued runs (and fire schedules) until interrupted.

    Example::

        relay worker start --workers 4
        relay worker start --database /data/relay.db --no-scheduler
    """
    overrides: dict[str, object] = {}
    if workers is not None:
        overrides["max_concurrent_runs"] = workers
    if poll_interval is not None:
        overrides["queue_poll_interval"] = poll_interval

    stop = threading.Event()
    container = make_container(database, **overrides)
    try:
        container.queue.initialize()
        if scheduler:
            container.scheduler.initialize()
        console.print(
            f"[bold green]relay worker started[/bold green] "
            f"(runs={container.settings.max_concurrent_runs}, scheduler={'on' if scheduler else 'off'})"
        )
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    finally:
        container.close()
