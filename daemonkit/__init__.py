"""Unix daemonization and locked single-instance pidfiles."""

from daemonkit.daemon import DaemonizeOptions, daemonize
from daemonkit.errors import (
    EXIT_GROUP,
    EXIT_LOCK_LOST,
    EXIT_USER,
    DaemonizeError,
    DaemonKitError,
    PidFileFormatError,
    ProgrammingError,
)
from daemonkit.pidfile import Contended, Owner, PidFileHandle, openPid, pidMtime, readPid
from daemonkit.privileges import requireGroup, requireUser

__all__ = [
    "EXIT_GROUP",
    "EXIT_LOCK_LOST",
    "EXIT_USER",
    "Contended",
    "DaemonKitError",
    "DaemonizeError",
    "DaemonizeOptions",
    "Owner",
    "PidFileFormatError",
    "PidFileHandle",
    "ProgrammingError",
    "daemonize",
    "openPid",
    "pidMtime",
    "readPid",
    "requireGroup",
    "requireUser",
]
