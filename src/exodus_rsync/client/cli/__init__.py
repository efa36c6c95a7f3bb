"""Command-line interface for exodus-rsync.

exodus-rsync accepts a subset of rsync's arguments. When DEST is
`<prefix>:<path>` and prefix names a configured environment, SRC is
published to exodus-gw; otherwise the arguments are passed to rsync.
"""

from __future__ import annotations

import signal
import sys
from types import FrameType

import click

from exodus_rsync.client.cli.logs import setup_logging
from exodus_rsync.client.engine import ExitCode, SyncEngine
from exodus_rsync.client.types import CancelScope, SyncArgs

# (option name, rsync flag) for flags forwarded to rsync unchanged
RSYNC_FLAGS = (
    ("archive", "-a"),
    ("recursive", "-r"),
    ("links", "-l"),
    ("times", "-t"),
    ("delete", "--delete"),
    ("dry_run", "--dry-run"),
)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("src")
@click.argument("dest")
@click.option(
    "--exodus-conf",
    "conf",
    default="",
    help="Path to exodus-rsync config file (default: search standard locations).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Abort the run after this many seconds.",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity.")
@click.option("-a", "--archive", is_flag=True, help="Archive mode (rsync only).")
@click.option("-r", "--recursive", is_flag=True, help="Recurse into directories (rsync only).")
@click.option("-l", "--links", is_flag=True, help="Copy symlinks as symlinks (rsync only).")
@click.option("-t", "--times", is_flag=True, help="Preserve modification times (rsync only).")
@click.option("--delete", is_flag=True, help="Delete extraneous files (rsync only).")
@click.option(
    "-n",
    "--dry-run",
    is_flag=True,
    help="Perform a trial run; for exodus destinations, list what would be published.",
)
@click.version_option(package_name="exodus-rsync")
def cli(
    src: str,
    dest: str,
    conf: str,
    timeout: float | None,
    verbose: int,
    **flags: bool,
) -> None:
    """Publish SRC to exodus-gw, or rsync it to DEST."""
    setup_logging(verbose)

    args = SyncArgs(
        src=src,
        dest=dest,
        conf=conf,
        verbose=verbose,
        rsync_flags=[flag for name, flag in RSYNC_FLAGS if flags.get(name)],
    )
    scope = CancelScope(timeout)

    def on_term(signum: int, frame: FrameType | None) -> None:
        scope.cancel()

    previous = signal.signal(signal.SIGTERM, on_term)

    try:
        report = SyncEngine().run(args, scope)
    except KeyboardInterrupt:
        click.echo("Interrupted", err=True)
        sys.exit(ExitCode.CANCELLED)
    finally:
        # None means a handler installed outside Python
        signal.signal(signal.SIGTERM, previous if previous is not None else signal.SIG_DFL)

    if args.dry_run:
        for item in report.items:
            click.echo(f"{item.web_uri} {item.object_key}")

    sys.exit(int(report.exit_code))


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
