"""Run a command as a single-instance daemon guarded by a pidfile."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from collections.abc import Sequence

from daemonkit.control import lockHeld, pidStatus
from daemonkit.daemon import DaemonizeOptions, daemonize
from daemonkit.errors import DaemonKitError
from daemonkit.pidfile import DEFAULT_PERMISSIONS, Contended, defaultPidPath, openPid
from daemonkit.privileges import requireGroup, requireUser

logger = logging.getLogger(__name__)

_FORWARDED = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class AlreadyRunning(DaemonKitError):
    def __init__(self, path: str, pid: int | None):
        self.path = path
        self.pid = pid
        owner = f"pid {pid}" if pid is not None else "an unknown process"
        super().__init__(f"{path} is held by {owner}")


def _supervise(command: Sequence[str]) -> int:
    """Run command, forwarding termination signals. Returns a shell-style status."""
    proc = subprocess.Popen(list(command))
    logger.info("Started %s as pid %d", command[0], proc.pid)

    def _forward(signum, frame):
        proc.send_signal(signum)

    previous = {s: signal.signal(s, _forward) for s in _FORWARDED}
    try:
        rc = proc.wait()
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)
    logger.info("%s exited with %d", command[0], rc)
    # Killed by signal N → 128 + N, as a shell reports it
    return rc if rc >= 0 else 128 - rc


def runDaemon(
    command: Sequence[str],
    pid_path: str | None = None,
    *,
    foreground: bool = False,
    options: DaemonizeOptions | None = None,
    user: str | None = None,
    group: str | None = None,
    permissions: int = DEFAULT_PERMISSIONS,
) -> int:
    """Daemonize (unless foreground), claim pid_path, run command, clean up.

    Identity requirements and a first contention check are applied before
    detaching so that a failure is still reported on the invoking terminal.
    The claim after detaching is the authoritative one. Raises AlreadyRunning
    if the pidfile has a live owner.
    """
    if not command:
        raise ValueError("No command given")
    if group is not None:
        requireGroup(group)
    if user is not None:
        requireUser(user)
    # resolved before daemonize() moves us to /
    path = os.path.abspath(pid_path) if pid_path else defaultPidPath()
    if not foreground:
        # Once detached, contention can no longer reach the invoking shell
        if lockHeld(path):
            raise AlreadyRunning(path, pidStatus(path).pid)
        daemonize(options)

    result = openPid(path, permissions)
    if isinstance(result, Contended):
        raise AlreadyRunning(path, result.pid)
    handle = result.handle
    handle.write()
    try:
        return _supervise(command)
    finally:
        handle.remove()
