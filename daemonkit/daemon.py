"""Unix daemonization: fork, new session, chdir to /, standard stream rewiring."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from daemonkit.errors import DaemonizeError

logger = logging.getLogger(__name__)

STD_FDS = (0, 1, 2)


class DaemonizeOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Only fill in standard streams that are missing instead of redirecting all three
    skip_close: bool = False
    skip_chdir: bool = False


def parseOptions(options: DaemonizeOptions | None = None, **overrides: Any) -> DaemonizeOptions:
    """Merge overrides onto options. Unknown names raise DaemonizeError."""
    base = options.model_dump() if options is not None else {}
    try:
        return DaemonizeOptions(**{**base, **overrides})
    except ValidationError as e:
        bad = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise DaemonizeError(f"Invalid daemonize option(s): {bad}") from e


def missingStdStreams() -> list[int]:
    """Standard descriptors that are not backed by a live file, socket or device."""
    missing = []
    for fd in STD_FDS:
        try:
            os.fstat(fd)
        except OSError:
            missing.append(fd)
    return missing


def _attachDevnull(fds: list[int] | tuple[int, ...]) -> None:
    if not fds:
        return
    null = os.open(os.devnull, os.O_RDWR)
    for fd in fds:
        if fd != null:
            os.dup2(null, fd)
    # A missing stdin means os.open may have handed back fd 0 itself
    if null not in fds:
        os.close(null)


def daemonize(options: DaemonizeOptions | None = None, **overrides: Any) -> None:
    """Turn the calling process into a background daemon.

    Only the child returns; the parent exits with status 0. Options are
    validated, and fork failures reported, before anything is committed:

    1. fork, parent exits
    2. setsid() so the child leads a new session and process group
    3. chdir("/") unless skip_chdir
    4. point stdin/stdout/stderr at the null device, or with skip_close
       only those of them that are not open at all
    """
    opts = parseOptions(options, **overrides)
    if not hasattr(os, "fork"):
        raise DaemonizeError(f"daemonize is not supported on {sys.platform}")

    for stream in (sys.stdout, sys.stderr):
        if stream is not None:
            stream.flush()

    try:
        pid = os.fork()
    except OSError as e:
        raise DaemonizeError(f"fork failed: {e.errno} ({e.strerror})") from e
    if pid > 0:
        sys.exit(0)

    os.setsid()

    if not opts.skip_chdir:
        os.chdir("/")

    if opts.skip_close:
        _attachDevnull(missingStdStreams())
    else:
        _attachDevnull(STD_FDS)

    logger.debug("Daemonized as pid %d (%s)", os.getpid(), opts)
