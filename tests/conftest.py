"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import patch

import pytest

TESTS_DIR = Path(__file__).resolve().parent
ROOT_DIR = TESTS_DIR.parent

PIDFILE_HELPER = TESTS_DIR / "pidfile_helper.py"
DAEMON_HELPER = TESTS_DIR / "daemon_helper.py"


def helperEnv() -> dict[str, str]:
    """Environment for helper subprocesses: daemonkit importable from the checkout."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(ROOT_DIR), env.get("PYTHONPATH")) if p)
    return env


def waitForFile(path: Path, timeout: float = 10.0) -> dict:
    """Poll until a helper has published its JSON report at path."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            return json.loads(path.read_text())
        time.sleep(0.02)
    raise AssertionError(f"helper never wrote {path}")


class Helper:
    """A running pidfile_helper.py; holds whatever it claimed until release()."""

    def __init__(self, mode: str, pid_path: str):
        self.proc = subprocess.Popen(
            [sys.executable, str(PIDFILE_HELPER), mode, pid_path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            env=helperEnv(),
            text=True,
        )

    @property
    def pid(self) -> int:
        return self.proc.pid

    def report(self) -> dict:
        line = self.proc.stdout.readline()
        assert line, f"helper {self.pid} exited without reporting"
        return json.loads(line)

    def release(self) -> int:
        if self.proc.poll() is None and self.proc.stdin and not self.proc.stdin.closed:
            self.proc.stdin.close()
        try:
            return self.proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            self.proc.kill()
            return self.proc.wait()


@pytest.fixture
def spawn_helper():
    """Start pidfile helpers; every helper is released at teardown."""
    helpers: list[Helper] = []

    def _spawn(mode: str, pid_path: str | Path) -> Helper:
        h = Helper(mode, str(pid_path))
        helpers.append(h)
        return h

    yield _spawn
    for h in helpers:
        if h.proc.stdin and not h.proc.stdin.closed:
            h.proc.stdin.close()
        if h.proc.poll() is None:
            h.proc.kill()
        h.proc.wait()
        if h.proc.stdout:
            h.proc.stdout.close()


@pytest.fixture
def pid_path(tmp_path: Path) -> str:
    return str(tmp_path / "test.pid")


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Redirect CONFIG_DIR / CONFIG_PATH to tmp_path and drop DAEMONKIT_* env vars."""
    for key in list(os.environ):
        if key.startswith("DAEMONKIT_"):
            monkeypatch.delenv(key)
    cfg_dir = tmp_path / ".daemonkit"
    cfg_path = cfg_dir / "config.json"
    with (
        patch("daemonkit.config.CONFIG_DIR", cfg_dir),
        patch("daemonkit.config.CONFIG_PATH", cfg_path),
    ):
        yield
