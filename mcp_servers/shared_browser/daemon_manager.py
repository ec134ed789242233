"""Client side of the shared daemon: start it if needed, stop it, report on it."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any

from .cdp_targets import is_reachable
from .config import DEFAULT_CDP_PORT, DaemonConfig, daemon_lock_path, daemon_log_path, default_cdp_endpoint
from .file_locks import PidFile, pid_alive

_LOGGER = logging.getLogger("mcp.shared_browser.daemon_manager")

START_POLL_ATTEMPTS = 60
START_POLL_INTERVAL = 0.5
DAEMON_MODULE = "mcp_servers.shared_browser.daemon"


class DaemonStartTimeout(TimeoutError):
    """The daemon was spawned but its debug endpoint never came up (or it died first)."""


def cdp_endpoint(port: int = DEFAULT_CDP_PORT) -> str:
    return default_cdp_endpoint(port)


@dataclass(frozen=True, slots=True)
class DaemonStatusReport:
    running: bool
    pid: int | None
    reachable: bool
    endpoint: str
    lock_path: str
    log_path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pid": self.pid,
            "reachable": self.reachable,
            "endpoint": self.endpoint,
            "lockPath": self.lock_path,
            "logPath": self.log_path,
        }


def spawn_daemon(config: DaemonConfig) -> subprocess.Popen:
    """Start a daemon fully detached from this process and its terminal."""
    cmd = [sys.executable, "-m", DAEMON_MODULE, "--config", config.to_json()]
    _LOGGER.info("daemon_spawn port=%s", config.cdp_port)
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


def ensure_daemon_running(
    config: DaemonConfig | None = None,
    *,
    attempts: int = START_POLL_ATTEMPTS,
    interval: float = START_POLL_INTERVAL,
) -> str:
    """Return the shared debug endpoint, starting the daemon first if none is alive."""
    config = config or DaemonConfig.from_env()
    endpoint = cdp_endpoint(config.cdp_port)
    if PidFile(daemon_lock_path()).is_running():
        return endpoint

    proc = spawn_daemon(config)
    for _ in range(attempts):
        if is_reachable(endpoint, timeout=1.0):
            _LOGGER.info("daemon_ready endpoint=%s", endpoint)
            return endpoint
        # Exit 0 means another daemon already holds the lock; keep waiting for it.
        code = proc.poll()
        if code not in (None, 0):
            _LOGGER.error("daemon_exited code=%s log=%s", code, daemon_log_path())
            raise DaemonStartTimeout(f"Chrome daemon exited with code {code} before it was ready; see {daemon_log_path()}")
        time.sleep(interval)
    raise DaemonStartTimeout(f"Chrome daemon failed to start within {attempts * interval:g} seconds")


def daemon_status(port: int = DEFAULT_CDP_PORT) -> DaemonStatusReport:
    lock = PidFile(daemon_lock_path())
    pid = lock.owner()
    running = pid is not None and pid_alive(pid)
    endpoint = cdp_endpoint(port)
    return DaemonStatusReport(
        running=running,
        pid=pid if running else None,
        reachable=is_reachable(endpoint, timeout=1.0),
        endpoint=endpoint,
        lock_path=str(lock.path),
        log_path=str(daemon_log_path()),
    )


def stop_daemon(*, timeout: float = 10.0) -> bool:
    """SIGTERM the recorded daemon and wait for it to go away; False if none was running."""
    lock = PidFile(daemon_lock_path())
    pid = lock.owner()
    if pid is None or not pid_alive(pid):
        return False
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            _LOGGER.info("daemon_stopped pid=%s", pid)
            return True
        time.sleep(0.1)
    _LOGGER.warning("daemon_stop_timeout pid=%s", pid)
    return False


__all__ = [
    "DaemonStartTimeout",
    "DaemonStatusReport",
    "cdp_endpoint",
    "daemon_status",
    "ensure_daemon_running",
    "spawn_daemon",
    "stop_daemon",
]
