"""Inspect and stop whoever owns a pidfile, without contending for it."""

from __future__ import annotations

import fcntl
import logging
import os
import signal
import time

from pydantic import BaseModel

from daemonkit.errors import DaemonKitError, PidFileFormatError
from daemonkit.pidfile import pidMtime, readPid

logger = logging.getLogger(__name__)


class PidStatus(BaseModel):
    path: str
    running: bool
    pid: int | None = None
    stale: bool = False  # pid on disk but nobody holds the lock
    mtime: float = -1


def lockHeld(path: str | os.PathLike[str]) -> bool:
    """True if some process holds the pidfile lock. Missing file → False."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except FileNotFoundError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    finally:
        # closing drops our shared lock as well
        os.close(fd)
    return False


def pidStatus(path: str | os.PathLike[str]) -> PidStatus:
    p = os.fspath(path)
    running = lockHeld(p)
    try:
        pid: int | None = readPid(p)
    except (OSError, PidFileFormatError):
        pid = None
    return PidStatus(
        path=p,
        running=running,
        pid=pid,
        stale=not running and pid is not None,
        mtime=pidMtime(p),
    )


def isRunning(path: str | os.PathLike[str]) -> bool:
    """Check if the pidfile owner is alive."""
    return lockHeld(path)


def stopDaemon(path: str | os.PathLike[str], timeout: float = 10.0) -> bool:
    """Send SIGTERM to the owner and wait for it to let go of the lock.

    Returns False if nothing was running. Raises DaemonKitError if the owner's
    pid cannot be read, or if it is still holding the lock after timeout
    seconds.
    """
    status = pidStatus(path)
    if not status.running:
        return False
    if status.pid is None:
        raise DaemonKitError(f"{status.path} is locked but the owner pid is unknown")
    try:
        os.kill(status.pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    logger.info("Sent SIGTERM to pid %d", status.pid)

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not lockHeld(path):
            return True
        time.sleep(0.1)
    raise DaemonKitError(f"pid {status.pid} still holds {status.path} after {timeout:g}s")
