"""Singleton supervisor for the shared Chrome instance.

Run detached by `daemon_manager.ensure_daemon_running`:

    python -m mcp_servers.shared_browser.daemon --config '<DaemonConfig JSON>'

The PID lock file is the only "is it running" signal; a second copy exits 0.
"""

from __future__ import annotations

import argparse
import enum
import logging
import signal
import sys
import threading
from pathlib import Path

from .config import DaemonConfig, daemon_lock_path, daemon_log_path
from .file_locks import PidFile
from .launcher import BrowserLauncher, BrowserNotFoundError

_LOGGER = logging.getLogger("mcp.shared_browser.daemon")

HEALTH_INTERVAL = 5.0
READY_ATTEMPTS = 30
READY_INTERVAL = 0.5
# Consecutive failed probes (process still alive) before the browser is considered hung.
MAX_PROBE_FAILURES = 3


class DaemonStatus(enum.Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class ChromeDaemon:
    def __init__(
        self,
        config: DaemonConfig,
        *,
        pid_file: PidFile | None = None,
        launcher: BrowserLauncher | None = None,
        log_path: Path | None = None,
        health_interval: float = HEALTH_INTERVAL,
        ready_attempts: int = READY_ATTEMPTS,
        ready_interval: float = READY_INTERVAL,
        max_probe_failures: int = MAX_PROBE_FAILURES,
    ) -> None:
        self.config = config
        self.pid_file = pid_file or PidFile(daemon_lock_path())
        self.launcher = launcher or BrowserLauncher(config)
        self.log_path = log_path
        self.health_interval = health_interval
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval
        self.max_probe_failures = max_probe_failures
        self.status = DaemonStatus.NOT_RUNNING
        self.exit_code = 0
        self.restarts = 0
        self._probe_failures = 0
        self._stop = threading.Event()

    def _set_status(self, status: DaemonStatus, reason: str = "") -> None:
        if status is not self.status:
            _LOGGER.info("daemon_status %s -> %s %s", self.status.value, status.value, reason)
        self.status = status

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self) -> bool:
        """Spawn the browser and wait for its debug endpoint. Raises BrowserNotFoundError."""
        self._set_status(DaemonStatus.STARTING)
        self._probe_failures = 0
        result = self.launcher.spawn(self.log_path)
        if not result.started:
            _LOGGER.error("browser_spawn_failed error=%s", result.message)
            return False
        for _ in range(self.ready_attempts):
            if self.launcher.cdp_ready():
                self._set_status(DaemonStatus.RUNNING, f"pid={result.pid} port={self.config.cdp_port}")
                return True
            if not self.launcher.is_alive() or self._stop.wait(self.ready_interval):
                break
        _LOGGER.warning("browser_not_ready pid=%s (health loop will retry)", result.pid)
        return False

    def _respawn(self, reason: str) -> None:
        _LOGGER.warning("browser_restart reason=%s", reason)
        self.launcher.stop()
        self.restarts += 1
        self.start()

    def tick(self) -> None:
        """One health check; respawns on process exit or a hung endpoint."""
        if self.stopping:
            return
        if not self.launcher.is_alive():
            self._respawn(f"exited code={self.launcher.exit_code()}")
            return
        if self.launcher.cdp_ready():
            self._probe_failures = 0
            self._set_status(DaemonStatus.RUNNING)
            return
        self._probe_failures += 1
        _LOGGER.warning("health_probe_failed count=%d", self._probe_failures)
        if self._probe_failures >= self.max_probe_failures:
            self._respawn(f"unresponsive probes={self._probe_failures}")

    def shutdown(self) -> None:
        self._set_status(DaemonStatus.SHUTTING_DOWN)
        self.launcher.stop()
        self.pid_file.remove()
        self._set_status(DaemonStatus.NOT_RUNNING)

    def run(self) -> int:
        if not self.pid_file.acquire():
            _LOGGER.info("daemon_already_running pid=%s", self.pid_file.owner())
            return 0
        _LOGGER.info("daemon_started pid=%s lock=%s", self.pid_file.owner(), self.pid_file.path)
        try:
            self.start()
            while not self._stop.wait(self.health_interval):
                self.tick()
        except BrowserNotFoundError as exc:
            _LOGGER.error("browser_not_found %s", exc)
            self.exit_code = 1
        finally:
            self.shutdown()
        return self.exit_code


def configure_logging(log_path: Path) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    except OSError as exc:
        print(f"daemon log unavailable: {exc}", file=sys.stderr)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s", handlers=handlers)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="shared-browser-daemon", description="Shared Chrome supervisor")
    parser.add_argument("--config", default="{}", help="DaemonConfig as JSON")
    args = parser.parse_args(argv)
    try:
        config = DaemonConfig.from_json(args.config)
    except ValueError as exc:
        parser.error(f"invalid --config: {exc}")

    log_path = daemon_log_path()
    configure_logging(log_path)
    daemon = ChromeDaemon(config, log_path=log_path)
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: daemon.request_stop())
    return daemon.run()


if __name__ == "__main__":
    sys.exit(main())
