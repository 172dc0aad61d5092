"""Error taxonomy and fatal exit statuses."""

from __future__ import annotations

import logging
from typing import NoReturn

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)

# Distinguished process exit statuses
EXIT_GROUP = 254  # required group identity unattainable
EXIT_USER = 253  # required user identity unattainable
EXIT_LOCK_LOST = 252  # pidfile lock lost between claim and write

_stderr = Console(stderr=True, highlight=False)


class DaemonKitError(Exception):
    """Base class for daemonkit errors."""


class ProgrammingError(DaemonKitError):
    """Lifecycle misuse: stale handle, replaced file, out-of-order call."""


class PidFileFormatError(DaemonKitError, ValueError):
    """Pidfile content is not a decimal process id."""


class DaemonizeError(DaemonKitError):
    """Daemonization could not start. Raised before any fork is committed."""


def fatal(message: str, code: int) -> NoReturn:
    """Print a diagnostic to stderr and terminate with ``code``."""
    logger.error("%s (exit %d)", message, code)
    _stderr.print(f"[bold red]fatal:[/bold red] {escape(message)}")
    raise SystemExit(code)
