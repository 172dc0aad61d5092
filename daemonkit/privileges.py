"""Run-as identity requirements. Exit with EXIT_GROUP / EXIT_USER when unattainable."""

from __future__ import annotations

import grp
import logging
import os
import pwd

from daemonkit.errors import EXIT_GROUP, EXIT_USER, fatal

logger = logging.getLogger(__name__)


def _resolveGid(group: str | int) -> int:
    if isinstance(group, int):
        return group
    if group.isdigit():
        return int(group)
    return grp.getgrnam(group).gr_gid


def _resolveUid(user: str | int) -> int:
    if isinstance(user, int):
        return user
    if user.isdigit():
        return int(user)
    return pwd.getpwnam(user).pw_uid


def requireGroup(group: str | int) -> None:
    """Make sure we run as group, switching to it if we can."""
    try:
        gid = _resolveGid(group)
    except KeyError:
        fatal(f"unknown group {group!r}", EXIT_GROUP)
    if os.getegid() == gid:
        return
    try:
        os.setgid(gid)
    except OSError as e:
        fatal(f"cannot run as group {group!r} (gid {gid}): {e.strerror}", EXIT_GROUP)
    logger.info("Switched to group %s (gid %d)", group, gid)


def requireUser(user: str | int) -> None:
    """Make sure we run as user, switching to it if we can.

    Call requireGroup() first: once the uid is dropped the gid can no longer
    be changed.
    """
    try:
        uid = _resolveUid(user)
    except KeyError:
        fatal(f"unknown user {user!r}", EXIT_USER)
    if os.geteuid() == uid:
        return
    try:
        os.setuid(uid)
    except OSError as e:
        fatal(f"cannot run as user {user!r} (uid {uid}): {e.strerror}", EXIT_USER)
    logger.info("Switched to user %s (uid %d)", user, uid)
