"""Filesystem-backed state and leases.

``DirectoryLeaseBackend`` relies on ``mkdir`` being atomic on the shared
volume: exactly one node can create ``<lock_dir>/<resource>.lock``. The
directory's modification time is the lease timestamp used for staleness;
a holder file inside records who owns it and the release token.

A stale lock is reclaimed by renaming it aside and then re-checking what was
moved: if it turns out to be fresh or held under a different token, another
node won the reclaim in between and the lock is put back.
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..logger import get_logger
from .base import Lease

if TYPE_CHECKING:
    from ..core.clock import Clock

logger = get_logger(__name__)

_HOLDER_FILE = "holder.json"


def write_atomic(path: Path, content: str, *, mode: int = 0o600) -> None:
    """Write via temp file + rename so readers never observe a partial file."""
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    dir_fd = os.open(path.parent, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class FileStateStore:
    """One small file per key under a node-local directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise ValueError(f"Invalid state key: {key!r}")
        return self._directory / key

    async def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    async def set(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        write_atomic(self._path(key), f"{value}\n")

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class DirectoryLeaseBackend:
    def __init__(self, lock_dir: Path, clock: Clock) -> None:
        self._lock_dir = lock_dir
        self._clock = clock

    def _path(self, resource: str) -> Path:
        return self._lock_dir / f"{resource}.lock"

    def _age(self, path: Path) -> float | None:
        try:
            return self._clock.now() - path.stat().st_mtime
        except FileNotFoundError:
            return None

    @staticmethod
    def _holder_token(path: Path) -> str | None:
        try:
            return Lease.model_validate_json((path / _HOLDER_FILE).read_text(encoding="utf-8")).token
        except (FileNotFoundError, NotADirectoryError, ValidationError):
            return None

    def _reclaim_if_stale(self, path: Path, ttl: float) -> None:
        token = self._holder_token(path)
        age = self._age(path)
        if age is None or age <= ttl:
            return

        graveyard = path.with_name(f"{path.name}.stale.{uuid.uuid4().hex[:8]}")
        try:
            path.rename(graveyard)
        except FileNotFoundError:
            return

        # the rename may have caught a lock another node created after our age check
        moved_age = self._age(graveyard)
        if self._holder_token(graveyard) != token or (moved_age is not None and moved_age <= ttl):
            self._restore(graveyard, path)
            return

        logger.warning("Reclaimed stale lease", path=str(path), age_s=round(age, 1), ttl_s=ttl)
        shutil.rmtree(graveyard, ignore_errors=True)

    @staticmethod
    def _restore(graveyard: Path, path: Path) -> None:
        if path.exists():
            logger.error("Lease replaced while restoring a live lock", path=str(path), moved_to=str(graveyard))
            return
        graveyard.rename(path)
        logger.warning("Lease renewed by another node during reclaim; restored", path=str(path))

    def _acquire(self, resource: str, holder: str, ttl: float) -> Lease | None:
        self._lock_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(resource)
        self._reclaim_if_stale(path, ttl)

        try:
            path.mkdir()
        except FileExistsError:
            return None

        lease = Lease(resource=resource, holder=holder, acquired_at=self._clock.now(), ttl=ttl)
        write_atomic(path / _HOLDER_FILE, lease.model_dump_json())
        return lease

    async def try_acquire(self, resource: str, holder: str, ttl: float) -> Lease | None:
        return self._acquire(resource, holder, ttl)

    async def release(self, lease: Lease) -> bool:
        path = self._path(lease.resource)
        current = await self.current(lease.resource)
        if current is None or current.token != lease.token:
            return False
        shutil.rmtree(path, ignore_errors=True)
        return True

    async def current(self, resource: str) -> Lease | None:
        try:
            return Lease.model_validate_json((self._path(resource) / _HOLDER_FILE).read_text(encoding="utf-8"))
        except (FileNotFoundError, NotADirectoryError, ValidationError):
            return None

    async def is_expired(self, resource: str, ttl: float | None = None) -> bool:
        path = self._path(resource)
        age = self._age(path)
        if age is None:
            return True
        if ttl is None:
            current = await self.current(resource)
            if current is None:
                return False
            ttl = current.ttl
        return age > ttl
