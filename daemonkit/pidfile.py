"""Claiming, writing and releasing locked pidfiles.

A pidfile is owned by whoever holds a non-blocking exclusive ``flock`` on it.
The lock lives and dies with the open descriptor (and therefore with the
process), while the file content, a decimal pid plus newline, can outlive a
crash. Callers must treat lock failure, not file presence, as proof that
another instance is alive.
"""

from __future__ import annotations

import fcntl
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from daemonkit.config import loadConfig
from daemonkit.errors import EXIT_LOCK_LOST, PidFileFormatError, ProgrammingError, fatal

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS = 0o600

_LEADING_PID = re.compile(rb"\s*(\d+)")


# ── Paths & parsing ──────────────────────────────────────────


def programName() -> str:
    """Name the running program was invoked as, without a .py suffix."""
    name = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else ""
    return name.removesuffix(".py") or "daemonkit"


def defaultPidPath(run_dir: str | None = None) -> str:
    """<run_dir>/<program-name>.pid, run_dir defaulting to the configured one."""
    base = run_dir or loadConfig().run_dir
    return str(Path(base) / f"{programName()}.pid")


def parsePid(raw: bytes) -> int:
    """Parse the leading decimal integer of pidfile content."""
    m = _LEADING_PID.match(raw)
    if not m:
        raise PidFileFormatError(f"Not a pid: {raw[:32]!r}")
    return int(m.group(1))


def _readAll(fd: int) -> bytes:
    os.lseek(fd, 0, os.SEEK_SET)
    chunks: list[bytes] = []
    while chunk := os.read(fd, 4096):
        chunks.append(chunk)
    return b"".join(chunks)


# ── Handle ───────────────────────────────────────────────────


@dataclass
class PidFileHandle:
    """An open, locked pidfile. Created only by a successful openPid()."""

    path: str
    fd: int
    device: int
    inode: int
    lock_held: bool = True

    @property
    def closed(self) -> bool:
        return self.fd < 0

    def __enter__(self) -> PidFileHandle:
        return self

    def __exit__(self, *exc: Any) -> None:
        if not self.closed:
            self.close()

    def verify(self) -> None:
        """Assert the descriptor and the path still name the claimed file.

        A mismatch means the file was deleted or replaced behind an open
        handle. That is a caller bug, never a lock race.
        """
        if self.closed:
            raise ProgrammingError(f"Pidfile {self.path} is no longer open")
        try:
            fd_st = os.fstat(self.fd)
            path_st = os.stat(self.path)
        except OSError as e:
            raise ProgrammingError(f"Cannot stat claimed pidfile {self.path}: {e}") from e
        claimed = (self.device, self.inode)
        if (fd_st.st_dev, fd_st.st_ino) != claimed or (path_st.st_dev, path_st.st_ino) != claimed:
            raise ProgrammingError(
                f"Pidfile {self.path} changed identity: claimed dev/ino {claimed}, "
                f"descriptor {(fd_st.st_dev, fd_st.st_ino)}, path {(path_st.st_dev, path_st.st_ino)}"
            )

    def write(self) -> None:
        """Record our own pid. Exits with EXIT_LOCK_LOST if the lock is gone."""
        self.verify()
        try:
            fcntl.flock(self.fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            self.lock_held = False
            fatal(f"lost lock on pidfile {self.path}: {e}", EXIT_LOCK_LOST)
        os.ftruncate(self.fd, 0)
        os.lseek(self.fd, 0, os.SEEK_SET)
        os.write(self.fd, f"{os.getpid()}\n".encode("ascii"))
        os.fsync(self.fd)
        logger.debug("Wrote pid %d to %s", os.getpid(), self.path)

    def mtime(self) -> float:
        return pidMtime(self.path)

    def close(self) -> None:
        """Release the descriptor and with it the lock. The file stays.

        If the file was deleted or replaced, the descriptor is still released
        before the ProgrammingError propagates.
        """
        if self.closed:
            raise ProgrammingError(f"Pidfile {self.path} is no longer open")
        try:
            self.verify()
        finally:
            os.close(self.fd)
            self._forget()
        logger.debug("Closed pidfile %s", self.path)

    def remove(self) -> None:
        """Unlink the file, then unlock, then close."""
        self.verify()
        os.unlink(self.path)
        fcntl.flock(self.fd, fcntl.LOCK_UN)
        os.close(self.fd)
        self._forget()
        logger.info("Removed pidfile %s", self.path)

    def _forget(self) -> None:
        self.fd = -1
        self.lock_held = False


# ── Ownership results ────────────────────────────────────────


@dataclass(frozen=True)
class Owner:
    """The caller now owns the pidfile."""

    handle: PidFileHandle

    @property
    def code(self) -> int:
        return 0


@dataclass(frozen=True)
class Contended:
    """Another process holds the lock. pid is None when its content is unreadable."""

    pid: int | None

    @property
    def code(self) -> int:
        return self.pid if self.pid is not None else -1


OwnershipResult = Union[Owner, Contended]


# ── Operations ───────────────────────────────────────────────


def openPid(
    path: str | os.PathLike[str] | None = None,
    permissions: int = DEFAULT_PERMISSIONS,
) -> OwnershipResult:
    """Try once to claim the pidfile at path (created if absent).

    Returns Owner with a locked handle, or Contended with the pid recorded by
    whoever holds the lock. Failures to open or create the file propagate.
    """
    p = os.path.abspath(path) if path else defaultPidPath()
    fd = os.open(p, os.O_RDWR | os.O_CREAT, permissions)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return _contended(fd, p)
    except OSError:
        os.close(fd)
        raise
    st = os.fstat(fd)
    logger.debug("Claimed pidfile %s (dev=%d ino=%d)", p, st.st_dev, st.st_ino)
    return Owner(PidFileHandle(path=p, fd=fd, device=st.st_dev, inode=st.st_ino))


def _contended(fd: int, path: str) -> Contended:
    try:
        raw = _readAll(fd)
    finally:
        os.close(fd)
    try:
        pid = parsePid(raw)
    except PidFileFormatError:
        # Owner may not have written yet, or the file is junk
        logger.warning("Pidfile %s is locked but holds no pid: %r", path, raw[:32])
        return Contended(None)
    logger.info("Pidfile %s is held by pid %d", path, pid)
    return Contended(pid)


def readPid(path: str | os.PathLike[str]) -> int:
    """Read the pid recorded in path without touching its lock."""
    with open(path, "rb") as f:
        raw = f.read()
    return parsePid(raw)


def pidMtime(path: str | os.PathLike[str]) -> float:
    """Last-modified time of path, or -1 if it cannot be stat'ed."""
    try:
        return os.stat(path).st_mtime
    except OSError:
        return -1
