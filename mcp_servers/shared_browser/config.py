from __future__ import annotations

import glob
import json
import os
import shutil
import sys
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

# Dedicated port so the shared instance never collides with a user's own Chrome on 9222.
DEFAULT_CDP_PORT = 9223


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def data_dir() -> Path:
    raw = os.environ.get("MCP_SHARED_BROWSER_DIR")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".shared-browser-mcp"


def registry_path() -> Path:
    return data_dir() / "tab-groups.json"


def default_profile_path() -> str:
    return str(data_dir() / "chrome-profile")


def daemon_lock_path() -> Path:
    raw = os.environ.get("MCP_DAEMON_LOCK")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path(tempfile.gettempdir()) / "shared-browser-mcp-daemon.lock"


def daemon_log_path() -> Path:
    raw = os.environ.get("MCP_DAEMON_LOG")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path(tempfile.gettempdir()) / "shared-browser-mcp-daemon.log"


def default_cdp_endpoint(port: int = DEFAULT_CDP_PORT) -> str:
    return f"http://127.0.0.1:{int(port)}"


def _binary_candidates() -> list[str]:
    home = str(Path.home())
    if sys.platform == "darwin":
        return [
            # Chrome for Testing first: branded Chrome 137+ ignores --load-extension.
            f"{home}/.cache/puppeteer/chrome/mac_arm-*/chrome-mac*/Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing",
            f"{home}/.cache/puppeteer/chrome/mac-*/chrome-mac*/Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing",
            f"{home}/Library/Caches/ms-playwright/chromium-*/chrome-mac/Chromium.app/Contents/MacOS/Chromium",
            "/Applications/Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        ]
    if sys.platform == "win32":
        return [
            f"{home}\\.cache\\puppeteer\\chrome\\win64-*\\chrome-win64\\chrome.exe",
            f"{home}\\.cache\\ms-playwright\\chromium-*\\chrome-win\\chrome.exe",
            "C:\\Program Files\\Chromium\\Application\\chrome.exe",
            "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
            "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
        ]
    return [
        f"{home}/.cache/puppeteer/chrome/linux-*/chrome-linux*/chrome",
        f"{home}/.cache/ms-playwright/chromium-*/chrome-linux/chrome",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/local/bin/chromium",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/opt/google/chrome/chrome",
        # Snap last: it ignores --user-data-dir.
        "/snap/bin/chromium",
    ]


def detect_binary() -> str | None:
    """Return the first executable Chrome/Chromium found, or None."""
    env_path = os.environ.get("MCP_BROWSER_BINARY")
    if env_path:
        return expand_path(env_path)
    for pattern in _binary_candidates():
        if "*" in pattern:
            # Newest cached build sorts last.
            matches = sorted(glob.glob(pattern), reverse=True)
        else:
            matches = [pattern]
        for candidate in matches:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
    for name in ("chromium", "chromium-browser", "google-chrome"):
        found = shutil.which(name)
        if found:
            return found
    return None


def _split_list(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


@dataclass
class DaemonConfig:
    """Browser process settings, serialized as JSON for the detached daemon."""

    user_data_dir: str | None = None
    extensions: list[str] = field(default_factory=list)
    executable: str | None = None
    download_dir: str | None = None
    cdp_port: int = DEFAULT_CDP_PORT
    extra_flags: list[str] = field(default_factory=list)

    @property
    def profile_path(self) -> str:
        return expand_path(self.user_data_dir or default_profile_path())

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DaemonConfig:
        def _str_or_none(key: str) -> str | None:
            value = data.get(key)
            return str(value) if isinstance(value, str) and value.strip() else None

        def _str_list(key: str) -> list[str]:
            value = data.get(key)
            if not isinstance(value, list):
                return []
            return [str(v) for v in value if isinstance(v, str) and v.strip()]

        try:
            port = int(data.get("cdp_port") or DEFAULT_CDP_PORT)
        except (TypeError, ValueError):
            port = DEFAULT_CDP_PORT
        return cls(
            user_data_dir=_str_or_none("user_data_dir"),
            extensions=_str_list("extensions"),
            executable=_str_or_none("executable"),
            download_dir=_str_or_none("download_dir"),
            cdp_port=port,
            extra_flags=_str_list("extra_flags"),
        )

    @classmethod
    def from_json(cls, raw: str) -> DaemonConfig:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("daemon config must be a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> DaemonConfig:
        profile = os.environ.get("MCP_BROWSER_PROFILE")
        binary = os.environ.get("MCP_BROWSER_BINARY")
        downloads = os.environ.get("MCP_DOWNLOAD_DIR")
        return cls(
            user_data_dir=expand_path(profile) if profile else None,
            extensions=[expand_path(p) for p in _split_list(os.environ.get("MCP_BROWSER_EXTENSIONS"))],
            executable=expand_path(binary) if binary else None,
            download_dir=expand_path(downloads) if downloads else None,
            extra_flags=_split_list(os.environ.get("MCP_BROWSER_FLAGS")),
        )


@dataclass
class ServerConfig:
    # None means "start or reuse the shared daemon on the default port".
    cdp_endpoint: str | None = None
    agent_id: str | None = None
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    rpc_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> ServerConfig:
        endpoint = (os.environ.get("MCP_CDP_ENDPOINT") or "").strip() or None
        agent_id = (os.environ.get("MCP_AGENT_ID") or "").strip() or None
        try:
            timeout = float(os.environ.get("MCP_EXTENSION_RPC_TIMEOUT") or 10.0)
        except ValueError:
            timeout = 10.0
        return cls(
            cdp_endpoint=endpoint,
            agent_id=agent_id,
            daemon=DaemonConfig.from_env(),
            rpc_timeout=max(1.0, min(timeout, 60.0)),
        )
