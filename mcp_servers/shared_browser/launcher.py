from __future__ import annotations

import contextlib
import json
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from .cdp_targets import is_reachable
from .config import DaemonConfig, default_cdp_endpoint, detect_binary, expand_path

_LOGGER = logging.getLogger("mcp.shared_browser.launcher")


class BrowserNotFoundError(FileNotFoundError):
    """No usable Chrome/Chromium executable."""


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str
    pid: int | None = None


def enable_developer_mode(profile_path: str) -> bool:
    """Pre-enable unpacked extensions; Chrome only reads Preferences at startup."""
    prefs_path = Path(expand_path(profile_path)) / "Default" / "Preferences"
    try:
        prefs_path.parent.mkdir(parents=True, exist_ok=True)
        prefs: dict = {}
        if prefs_path.exists():
            loaded = json.loads(prefs_path.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                prefs = loaded
        ui = prefs.setdefault("extensions", {}).setdefault("ui", {})
        if ui.get("developer_mode") is True:
            return True
        ui["developer_mode"] = True
        prefs_path.write_text(json.dumps(prefs), encoding="utf-8")
    except (OSError, ValueError, AttributeError) as exc:
        _LOGGER.warning("developer_mode_patch_failed path=%s error=%s", prefs_path, exc)
        return False
    _LOGGER.info("developer_mode_enabled path=%s", prefs_path)
    return True


class BrowserLauncher:
    """Owns one browser child process for the daemon."""

    def __init__(self, config: DaemonConfig | None = None) -> None:
        self.config = config or DaemonConfig.from_env()
        self.process: subprocess.Popen | None = None

    @property
    def endpoint(self) -> str:
        return default_cdp_endpoint(self.config.cdp_port)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    def resolve_executable(self) -> str:
        if self.config.executable:
            path = Path(expand_path(self.config.executable))
            if not path.exists():
                raise BrowserNotFoundError(f"Browser executable not found: {path}")
            return str(path)
        found = detect_binary()
        if not found:
            raise BrowserNotFoundError("Chrome/Chromium not found; set MCP_BROWSER_BINARY")
        return found

    def local_extensions(self) -> list[str]:
        out: list[str] = []
        for raw in self.config.extensions:
            path = Path(expand_path(raw))
            if path.is_dir():
                out.append(str(path.resolve()))
            else:
                _LOGGER.warning("extension_path_missing path=%s", path)
        return out

    def _build_common_flags(self) -> list[str]:
        downloads = self.config.download_dir or str(Path.home() / "Downloads")
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={self.config.profile_path}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--no-startup-window",
            "--disable-background-networking",
            "--disable-background-timer-throttling",
            "--disable-backgrounding-occluded-windows",
            "--disable-renderer-backgrounding",
            f"--download-default-directory={expand_path(downloads)}",
        ]
        extensions = self.local_extensions()
        if extensions:
            flags.append(f"--load-extension={','.join(extensions)}")
        return flags

    def build_launch_command(self) -> list[str]:
        return [self.resolve_executable(), *self._build_common_flags(), *self.config.extra_flags]

    def cdp_ready(self, timeout: float = 1.0) -> bool:
        return is_reachable(self.endpoint, timeout=timeout)

    def is_alive(self) -> bool:
        proc = self.process
        return proc is not None and proc.poll() is None

    def exit_code(self) -> int | None:
        proc = self.process
        return proc.poll() if proc is not None else None

    def spawn(self, log_path: Path | None = None) -> LaunchResult:
        """Start the browser; raises BrowserNotFoundError if there is nothing to start."""
        if self.config.extensions:
            enable_developer_mode(self.config.profile_path)
        cmd = self.build_launch_command()
        Path(self.config.profile_path).mkdir(parents=True, exist_ok=True)

        log_fh = open(log_path, "ab") if log_path is not None else None  # noqa: SIM115
        try:
            self.process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log_fh or subprocess.DEVNULL,
                stderr=log_fh or subprocess.DEVNULL,
            )
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc))
        finally:
            if log_fh is not None:
                log_fh.close()
        _LOGGER.info("browser_spawned pid=%s port=%s", self.process.pid, self.config.cdp_port)
        return LaunchResult(cmd, True, "Chrome launched", pid=self.process.pid)

    def stop(self, *, timeout: float = 5.0) -> bool:
        """Terminate the owned browser, escalating to kill."""
        proc = self.process
        self.process = None
        if proc is None:
            return False
        if proc.poll() is not None:
            return True

        with contextlib.suppress(OSError):
            proc.terminate()
        deadline = time.monotonic() + max(0.1, float(timeout))
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                return True
            time.sleep(0.05)

        with contextlib.suppress(OSError):
            proc.kill()
        with contextlib.suppress(subprocess.TimeoutExpired):
            proc.wait(timeout=2.0)
        return True


__all__ = ["BrowserLauncher", "BrowserNotFoundError", "LaunchResult", "enable_developer_mode"]
