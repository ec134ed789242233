"""Cross-process locks built on plain files.

- `RegistryLock`: exclusive sentinel file created with O_CREAT|O_EXCL, holding the
  owner pid. Stale sentinels (dead owner) are removed; after `max_wait` the lock is
  force-broken, so a live owner stalled past the bound can lose its update.
- `PidFile`: "is the daemon running" marker; presence plus a live pid. Claimed with
  the same O_CREAT|O_EXCL create under an flock guard, so at most one daemon owns it.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path

_LOGGER = logging.getLogger("mcp.shared_browser.file_locks")


def pid_alive(pid: int) -> bool:
    """Non-destructive liveness probe (signal 0)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user.
        return True
    except OSError:
        return False
    return True


def read_pid(path: Path) -> int | None:
    """Return the pid recorded in `path`; raises FileNotFoundError if it is gone."""
    raw = path.read_text(encoding="utf-8", errors="replace").strip()
    try:
        pid = int(raw)
    except ValueError:
        return None
    return pid if pid > 0 else None


@dataclass(slots=True)
class RegistryLock:
    path: Path
    max_wait: float = 3.0
    _held: bool = False

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.max_wait
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                pass
            else:
                with os.fdopen(fd, "w", encoding="utf-8") as fp:
                    fp.write(str(os.getpid()))
                self._held = True
                return

            try:
                owner = read_pid(self.path)
            except FileNotFoundError:
                # Released between our create and read.
                continue
            except OSError:
                owner = None

            if owner is not None and not pid_alive(owner):
                _LOGGER.debug("registry_lock stale owner=%s path=%s", owner, self.path)
                with contextlib.suppress(FileNotFoundError):
                    self.path.unlink()
                continue

            if time.monotonic() >= deadline:
                _LOGGER.warning("registry_lock force_break owner=%s waited=%.1fs", owner, self.max_wait)
                with contextlib.suppress(FileNotFoundError):
                    self.path.unlink()
                deadline = time.monotonic() + self.max_wait
                continue

            time.sleep(0.02 + random.random() * 0.03)

    def release(self) -> None:
        self._held = False
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> RegistryLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


@dataclass(slots=True)
class PidFile:
    path: Path

    def owner(self) -> int | None:
        try:
            return read_pid(self.path)
        except OSError:
            return None

    def is_running(self) -> bool:
        """True if a live process owns the file.

        Read-only: a stale file is left for `acquire` to replace, since removing it
        here could delete a claim made between the read and the unlink.
        """
        pid = self.owner()
        return pid is not None and pid_alive(pid)

    def acquire(self) -> bool:
        """Claim the file for this process; False if a live owner holds it.

        Claimants are serialized by an flock on a `.guard` sidecar that is never
        unlinked, so replacing a dead (or never written) owner's file cannot delete
        a claim another process has just made.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        guard_path = self.path.with_name(self.path.name + ".guard")
        with open(guard_path, "a", encoding="utf-8") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                return self._claim()
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def _claim(self) -> bool:
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pass
            else:
                with os.fdopen(fd, "w", encoding="utf-8") as fp:
                    fp.write(str(os.getpid()))
                return True

            try:
                owner = read_pid(self.path)
            except FileNotFoundError:
                continue
            except OSError:
                owner = None

            if owner is not None and pid_alive(owner):
                return False
            _LOGGER.info("pid_file stale pid=%s path=%s", owner, self.path)
            with contextlib.suppress(FileNotFoundError):
                self.path.unlink()

    def remove(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


__all__ = ["PidFile", "RegistryLock", "pid_alive", "read_pid"]
