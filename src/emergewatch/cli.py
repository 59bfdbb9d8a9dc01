"""Command line entry point for emergewatch."""

import logging
from queue import Empty

import typer
from textual.logging import TextualHandler

from emergewatch.channel import JobTableChannel
from emergewatch.config import WatcherSettings
from emergewatch.summary import summarize
from emergewatch.tracker import JobTracker

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="emergewatch",
    help="Watch the process table for running Portage build jobs.",
    add_completion=False,
)


def configure_logging(level: str, headless: bool) -> None:
    """
    Set up logging for either output mode.

    The TUI owns the terminal, so its log records go to the Textual console.
    """
    if headless:
        logging.basicConfig(
            level=level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=level.upper(), handlers=[TextualHandler()])


def run_headless(tracker: JobTracker, channel: JobTableChannel) -> int:
    """
    Log a summary every time the job table changes.

    Returns:
        Exit code: 0 when interrupted, 1 when the tracker died.
    """
    tracker.start()
    try:
        while True:
            try:
                jobs = channel.get(timeout=1.0)
            except Empty:
                if not tracker.is_running:
                    logger.error("Job tracker stopped: %s", tracker.exit_error)
                    return 1
                continue

            summary = summarize(jobs)
            if summary.state:
                logger.info("%s | %s", summary.details, summary.state)
            else:
                logger.info("%s", summary.details)
    except KeyboardInterrupt:
        return 0
    finally:
        channel.close()
        tracker.stop()


@app.command()
def main(
    interval: int = typer.Option(None, "--interval", "-i", min=1, help="Seconds between scans."),
    flat: bool = typer.Option(False, "--flat", help="Do not group jobs by emerge invocation."),
    headless: bool = typer.Option(False, "--headless", help="Log job changes instead of showing the UI."),
    log_level: str = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Watch running emerge jobs."""
    settings = WatcherSettings()
    overrides: dict[str, object] = {}
    if interval is not None:
        overrides["poll_interval"] = interval
    if flat:
        overrides["grouped"] = False
    if log_level is not None:
        overrides["log_level"] = log_level
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level, headless)

    channel = JobTableChannel()
    tracker = JobTracker.from_settings(channel, settings)

    if headless:
        raise typer.Exit(code=run_headless(tracker, channel))

    from emergewatch.app import EmergeWatchApp

    tui = EmergeWatchApp(settings=settings, tracker=tracker, channel=channel)
    tui.run()
    raise typer.Exit(code=tui.return_code or 0)


if __name__ == "__main__":
    app()
