"""
Named, machine-wide lock guarding the durable token store.

The SQLite token file is not safe for concurrent multi-process mutation, so
every acquisition attempt holds this lock for its whole duration. Backed by a
lock file in a shared directory with mode 0o666 so any local user can take it.
Threads of one process are serialized by a per-name threading.Lock first.
"""
import asyncio
import errno
import logging
import os
import re
import sys
import threading
from pathlib import Path

from token_engine.config import LOCK_DIR

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_thread_locks: dict[str, threading.Lock] = {}

# msvcrt.locking errors that mean "still held by someone else"
_CONTENDED = (errno.EDEADLOCK, errno.EACCES)


def _thread_lock_for(name: str) -> threading.Lock:
    with _registry_guard:
        lock = _thread_locks.get(name)
        if lock is None:
            lock = _thread_locks[name] = threading.Lock()
        return lock


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "lock"


def _lock_fd(fd: int) -> None:
    if sys.platform == "win32":
        # LK_LOCK gives up after ~10 seconds; keep waiting, there is no timeout here
        while True:
            try:
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
                return
            except OSError as exc:
                if exc.errno not in _CONTENDED:
                    raise
    fcntl.flock(fd, fcntl.LOCK_EX)


def _unlock_fd(fd: int) -> None:
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class ProcessLock:
    """
    Blocking, timeout-free mutual exclusion for one name across all local processes.
    Use as `with lock:` or `async with lock:`; release is a no-op when not held.
    """

    def __init__(self, name: str, lock_dir: str | None = None):
        self.name = name
        self.path = Path(lock_dir or LOCK_DIR) / f"{_safe_filename(name)}.lock"
        self._thread_lock = _thread_lock_for(str(self.path))
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _open(self) -> int:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o666)
        # umask usually strips group/other write; chmod is not subject to it
        try:
            os.chmod(self.path, 0o666)
        except OSError:
            # File created by another user; they already opened it up
            pass
        return fd

    def acquire(self) -> None:
        """Block until this process owns the lock."""
        self._thread_lock.acquire()
        try:
            fd = self._open()
            try:
                _lock_fd(fd)
            except BaseException:
                os.close(fd)
                raise
        except BaseException:
            self._thread_lock.release()
            raise
        self._fd = fd
        logger.debug("Acquired process lock %s", self.name)

    def release(self) -> None:
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        try:
            _unlock_fd(fd)
        finally:
            os.close(fd)
            self._thread_lock.release()
        logger.debug("Released process lock %s", self.name)

    def __enter__(self) -> "ProcessLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    async def __aenter__(self) -> "ProcessLock":
        # Blocking wait runs in a worker thread so the event loop keeps serving
        waiter = asyncio.ensure_future(asyncio.to_thread(self.acquire))
        try:
            await asyncio.shield(waiter)
        except asyncio.CancelledError:
            waiter.add_done_callback(self._release_if_acquired)
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _release_if_acquired(self, waiter: asyncio.Future) -> None:
        if not waiter.cancelled() and waiter.exception() is None:
            self.release()
