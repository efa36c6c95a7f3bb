"""Mirror fallback: hand the transfer to rsync.

Used when the destination doesn't match any configured environment.
"""

from __future__ import annotations

import logging
import shutil
import subprocess

from exodus_rsync.client.types import CancelScope, MirrorError, SyncArgs

logger = logging.getLogger(__name__)

RSYNC = "rsync"

# Seconds between cancellation checks while rsync runs
WAIT_INTERVAL = 0.1


def rsync_command(args: SyncArgs) -> list[str]:
    """Build the rsync command line for a set of arguments.

    Args:
        args: Parsed exodus-rsync arguments.

    Returns:
        rsync argv, with forwarded flags before SRC and DEST.
    """
    command = [RSYNC, *args.rsync_flags]
    if args.verbose:
        command.append("-" + "v" * args.verbose)
    command.extend([args.src, args.dest])
    return command


def run_rsync(args: SyncArgs, scope: CancelScope | None = None) -> int:
    """Run rsync for a set of arguments.

    rsync is terminated if the scope is cancelled while it runs.

    Args:
        args: Parsed exodus-rsync arguments.
        scope: Cancellation scope of the run.

    Returns:
        rsync's exit status.

    Raises:
        MirrorError: If rsync can't be started.
        OperationCancelled: If the run was cancelled while rsync ran.
    """
    scope = scope or CancelScope()
    command = rsync_command(args)
    executable = shutil.which(RSYNC)
    if executable is None:
        raise MirrorError(f"{RSYNC} not found in PATH")

    scope.check()
    logger.debug(f"Running {' '.join(command)}")
    try:
        proc = subprocess.Popen([executable, *command[1:]])
    except OSError as e:
        raise MirrorError(f"can't exec {RSYNC}: {e}") from e

    while True:
        try:
            returncode = proc.wait(timeout=WAIT_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if scope.cancelled:
                logger.warning(f"Terminating {RSYNC} (pid {proc.pid})")
                proc.terminate()
                proc.wait()
                scope.check()

    if returncode != 0:
        logger.warning(f"{RSYNC} exited with status {returncode}")
    return returncode
