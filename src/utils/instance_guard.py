"""
Single-writer guard for the reconciler's local state directory.

The lock file records who holds it, so a refused run can say which process
to wait for.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO


@dataclass(frozen=True)
class LockHolder:
    pid: Optional[int]
    started_at: str = ""
    command: str = ""

    def describe(self) -> str:
        parts = [f"pid {self.pid}" if self.pid is not None else "unknown pid"]
        if self.started_at:
            parts.append(f"since {self.started_at}")
        if self.command:
            parts.append(f"running {self.command!r}")
        return ", ".join(parts)

    def to_text(self) -> str:
        return f"pid={self.pid}\nstarted_at={self.started_at}\ncommand={self.command}\n"

    @classmethod
    def from_text(cls, text: str) -> "LockHolder":
        fields = {}
        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                fields[key.strip()] = value.strip()
        try:
            pid: Optional[int] = int(fields.get("pid", ""))
        except ValueError:
            pid = None
        return cls(pid=pid, started_at=fields.get("started_at", ""), command=fields.get("command", ""))


class InstanceLockError(RuntimeError):
    """Raised when another reconciler process holds the state lock."""

    def __init__(self, lock_path: Path, holder: Optional[LockHolder] = None) -> None:
        self.lock_path = lock_path
        self.holder = holder
        detail = holder.describe() if holder else "holder unknown"
        super().__init__(f"State lock {lock_path} is held by another reconciler ({detail})")


@dataclass(frozen=True)
class InstanceLock:
    handle: TextIO
    path: Path
    holder: LockHolder

    def release(self) -> None:
        try:
            _unlock(self.handle)
        finally:
            self.handle.close()


def _try_lock(handle: TextIO) -> bool:
    if os.name == "nt":
        import msvcrt

        try:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def read_lock_holder(lock_path: Path) -> Optional[LockHolder]:
    try:
        text = lock_path.read_text(encoding="utf-8")
    except OSError:
        return None
    return LockHolder.from_text(text) if text.strip() else None


def acquire_instance_lock(lock_path: Path, command: Optional[str] = None) -> InstanceLock:
    """Take the state lock without blocking, recording this process as the holder."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    if not _try_lock(handle):
        handle.close()
        raise InstanceLockError(lock_path, read_lock_holder(lock_path))
    holder = LockHolder(
        pid=os.getpid(),
        started_at=datetime.utcnow().isoformat(timespec="seconds"),
        command=command if command is not None else " ".join(sys.argv),
    )
    try:
        handle.seek(0)
        handle.truncate()
        handle.write(holder.to_text())
        handle.flush()
    except OSError:
        _unlock(handle)
        handle.close()
        raise
    return InstanceLock(handle=handle, path=lock_path, holder=holder)
