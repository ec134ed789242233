"""Tab group ownership registry.

Per-session tab isolation via named groups. State lives in one JSON file shared by
every MCP stdio process on the machine; each read-modify-write runs under the
sentinel lock in `file_locks`.

The file is disposable soft state: a missing or corrupt file reads as an empty
registry, and tab entries are reconciled against the live browser with
`prune_stale`, which callers run before enumerating.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import secrets
import time
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from .config import registry_path
from .file_locks import RegistryLock

_LOGGER = logging.getLogger("mcp.shared_browser.tab_groups")

T = TypeVar("T")

VALID_COLORS: tuple[str, ...] = ("grey", "blue", "red", "yellow", "green", "pink", "purple", "cyan")

LOCK_SUFFIX = ".lock"


def is_valid_color(color: Any) -> bool:
    return isinstance(color, str) and color in VALID_COLORS


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_group_id() -> str:
    return "g_" + secrets.token_hex(8)


class TabGroupNotFoundError(LookupError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Tab group not found: {group_id}")
        self.group_id = group_id


@dataclass(slots=True)
class TabGroup:
    group_id: str
    name: str
    created_at: int
    color: str | None = None
    # Native Chrome group id; written once by the first successful visual grouping.
    chrome_group_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"groupId": self.group_id, "name": self.name, "createdAt": self.created_at}
        if self.color is not None:
            out["color"] = self.color
        if self.chrome_group_id is not None:
            out["chromeGroupId"] = self.chrome_group_id
        return out

    @classmethod
    def from_dict(cls, group_id: str, data: dict[str, Any]) -> TabGroup:
        color = data.get("color")
        chrome_group_id = data.get("chromeGroupId")
        return cls(
            group_id=group_id,
            name=str(data.get("name") or "unnamed"),
            created_at=int(data.get("createdAt") or 0),
            color=color if is_valid_color(color) else None,
            chrome_group_id=chrome_group_id if isinstance(chrome_group_id, int) else None,
        )


@dataclass(slots=True)
class TabEntry:
    group_id: str
    added_at: int
    chrome_tab_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"groupId": self.group_id, "addedAt": self.added_at}
        if self.chrome_tab_id is not None:
            out["chromeTabId"] = self.chrome_tab_id
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TabEntry:
        chrome_tab_id = data.get("chromeTabId")
        return cls(
            group_id=str(data["groupId"]),
            added_at=int(data.get("addedAt") or 0),
            chrome_tab_id=chrome_tab_id if isinstance(chrome_tab_id, int) else None,
        )


@dataclass(slots=True)
class Registry:
    groups: dict[str, TabGroup] = field(default_factory=dict)
    # keyed by CDP targetId
    tabs: dict[str, TabEntry] = field(default_factory=dict)
    extension_id: str | None = None

    def tabs_in(self, group_id: str) -> list[str]:
        return [target_id for target_id, entry in self.tabs.items() if entry.group_id == group_id]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "groups": {gid: g.to_dict() for gid, g in self.groups.items()},
            "tabs": {tid: t.to_dict() for tid, t in self.tabs.items()},
        }
        if self.extension_id:
            out["extensionId"] = self.extension_id
        return out

    @classmethod
    def from_dict(cls, obj: Any) -> Registry:
        reg = cls()
        if not isinstance(obj, dict):
            return reg
        groups = obj.get("groups")
        if isinstance(groups, dict):
            for gid, raw in groups.items():
                if isinstance(gid, str) and gid and isinstance(raw, dict):
                    with contextlib.suppress(TypeError, ValueError):
                        reg.groups[gid] = TabGroup.from_dict(gid, raw)
        tabs = obj.get("tabs")
        if isinstance(tabs, dict):
            for tid, raw in tabs.items():
                if isinstance(tid, str) and tid and isinstance(raw, dict):
                    with contextlib.suppress(KeyError, TypeError, ValueError):
                        reg.tabs[tid] = TabEntry.from_dict(raw)
        ext_id = obj.get("extensionId")
        if isinstance(ext_id, str) and ext_id.strip():
            reg.extension_id = ext_id.strip()
        return reg


@dataclass(frozen=True, slots=True)
class GroupSummary:
    group: TabGroup
    tab_count: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.group.to_dict(), "tabCount": self.tab_count}


class TabGroupStore:
    """File-backed registry; every public method is one critical section."""

    def __init__(self, path: Path | None = None, *, lock_timeout: float = 3.0) -> None:
        self.path = Path(path) if path is not None else registry_path()
        self.lock = RegistryLock(self.path.with_name(self.path.name + LOCK_SUFFIX), max_wait=lock_timeout)

    # ── I/O ────────────────────────────────────────────────────────────────

    def _read(self) -> Registry:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Registry()
        except OSError as exc:
            _LOGGER.warning("registry_unreadable path=%s error=%s", self.path, exc)
            return Registry()
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            _LOGGER.warning("registry_corrupt path=%s (treating as empty)", self.path)
            return Registry()
        return Registry.from_dict(obj)

    def _write(self, reg: Registry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(reg.to_dict(), ensure_ascii=False, indent=2)
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, self.path)

    @contextlib.contextmanager
    def exclusive(self) -> Generator[Registry, None, None]:
        """Lock, read, yield a mutable registry, persist on clean exit, unlock.

        If the body raises, nothing is written.
        """
        self.lock.acquire()
        try:
            reg = self._read()
            yield reg
            self._write(reg)
        finally:
            self.lock.release()

    @contextlib.contextmanager
    def snapshot(self) -> Generator[Registry, None, None]:
        """Lock-guarded consistent read without a write-back."""
        self.lock.acquire()
        try:
            yield self._read()
        finally:
            self.lock.release()

    def with_registry(self, fn: Callable[[Registry], T]) -> T:
        with self.exclusive() as reg:
            return fn(reg)

    # ── Groups ─────────────────────────────────────────────────────────────

    def create_group(self, name: str, color: str | None = None) -> TabGroup:
        group = TabGroup(
            group_id=generate_group_id(),
            name=(name or "").strip() or "unnamed",
            created_at=_now_ms(),
            color=color if is_valid_color(color) else None,
        )
        with self.exclusive() as reg:
            reg.groups[group.group_id] = group
        return group

    def list_groups(self) -> list[GroupSummary]:
        with self.snapshot() as reg:
            return [GroupSummary(group=g, tab_count=len(reg.tabs_in(gid))) for gid, g in reg.groups.items()]

    def get_group(self, group_id: str) -> TabGroup | None:
        with self.snapshot() as reg:
            return reg.groups.get(group_id)

    def delete_group(self, group_id: str) -> list[str]:
        """Remove a group and its tab entries; returns the removed target ids.

        Closing the tabs themselves is up to the caller.
        """
        return list(self.pop_group(group_id))

    def pop_group(self, group_id: str) -> dict[str, TabEntry]:
        """Like `delete_group`, but returns the removed entries keyed by target id."""
        with self.exclusive() as reg:
            if group_id not in reg.groups:
                raise TabGroupNotFoundError(group_id)
            del reg.groups[group_id]
            return {target_id: reg.tabs.pop(target_id) for target_id in reg.tabs_in(group_id)}

    def set_chrome_group_id(self, group_id: str, chrome_group_id: int) -> bool:
        with self.exclusive() as reg:
            group = reg.groups.get(group_id)
            if group is None or group.chrome_group_id is not None:
                return False
            group.chrome_group_id = int(chrome_group_id)
            return True

    # ── Tabs ───────────────────────────────────────────────────────────────

    def add_tab(self, target_id: str, group_id: str, chrome_tab_id: int | None = None) -> None:
        with self.exclusive() as reg:
            if group_id not in reg.groups:
                raise TabGroupNotFoundError(group_id)
            reg.tabs[target_id] = TabEntry(group_id=group_id, added_at=_now_ms(), chrome_tab_id=chrome_tab_id)

    def remove_tab(self, target_id: str) -> None:
        with self.exclusive() as reg:
            reg.tabs.pop(target_id, None)

    def get_group_for_tab(self, target_id: str) -> str | None:
        with self.snapshot() as reg:
            entry = reg.tabs.get(target_id)
            return entry.group_id if entry else None

    def get_tabs_in_group(self, group_id: str) -> list[str]:
        with self.snapshot() as reg:
            return reg.tabs_in(group_id)

    def get_chrome_tab_id(self, target_id: str) -> int | None:
        with self.snapshot() as reg:
            entry = reg.tabs.get(target_id)
            return entry.chrome_tab_id if entry else None

    def prune_stale(self, live_target_ids: Iterable[str]) -> int:
        """Drop tab entries whose target is no longer in the browser."""
        live = set(live_target_ids)
        with self.exclusive() as reg:
            stale = [tid for tid in reg.tabs if tid not in live]
            for tid in stale:
                del reg.tabs[tid]
        if stale:
            _LOGGER.info("registry_pruned count=%d", len(stale))
        return len(stale)

    # ── Companion extension ────────────────────────────────────────────────

    def get_extension_id(self) -> str | None:
        with self.snapshot() as reg:
            return reg.extension_id

    def set_extension_id(self, extension_id: str) -> None:
        with self.exclusive() as reg:
            reg.extension_id = extension_id


__all__ = [
    "VALID_COLORS",
    "GroupSummary",
    "Registry",
    "TabEntry",
    "TabGroup",
    "TabGroupNotFoundError",
    "TabGroupStore",
    "generate_group_id",
    "is_valid_color",
]
