"""
Process Lock Utilities
======================

File-based lock that keeps two ingestion runs from mutating the archive at
the same time (e.g. a scheduled run overlapping a manual one).
"""

import fcntl
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from .exceptions import RunLockedError

logger = logging.getLogger(__name__)


class ProcessLock:
    """File-based process lock to prevent multiple instances."""

    def __init__(self, lock_name: str, lock_dir: Optional[str] = None):
        """
        Initialize process lock.

        Args:
            lock_name: Name for the lock file (without extension)
            lock_dir: Directory for lock files (defaults to /tmp)
        """
        if lock_dir is None:
            lock_dir = "/tmp"

        self.lock_file = Path(lock_dir) / f"{lock_name}.lock"
        self.lock_fd: Optional[int] = None
        self.acquired = False

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True if lock was acquired successfully, False if already locked
        """
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY)

            # Non-blocking exclusive lock
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)

            # Truncate only once we own the lock so the holder's PID survives
            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, f"{os.getpid()}\n".encode())
            os.fsync(self.lock_fd)

            self.acquired = True
            logger.info(f"Process lock acquired: {self.lock_file}")
            return True

        except OSError:
            if self.lock_fd is not None:
                os.close(self.lock_fd)
                self.lock_fd = None

            existing_pid = self.holder_pid()
            if existing_pid:
                logger.warning(f"Process lock already held by PID {existing_pid}: {self.lock_file}")
            else:
                logger.warning(f"Process lock unavailable: {self.lock_file}")

            return False

    def release(self) -> None:
        """Release the lock."""
        if self.lock_fd is not None and self.acquired:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
                self.lock_file.unlink(missing_ok=True)
                logger.info(f"Process lock released: {self.lock_file}")
            except OSError as e:
                logger.warning(f"Error releasing lock: {e}")
            finally:
                self.lock_fd = None
                self.acquired = False

    def holder_pid(self) -> Optional[int]:
        """Get PID of the process holding the lock."""
        try:
            if self.lock_file.exists():
                return int(self.lock_file.read_text().strip())
        except (ValueError, OSError):
            return None
        return None

    def __enter__(self):
        """Context manager entry."""
        if not self.acquire():
            pid = self.holder_pid()
            holder = f" (PID {pid})" if pid else ""
            raise RunLockedError(
                f"Another ingestion run holds {self.lock_file}{holder}",
                context={"lock_file": str(self.lock_file), "pid": pid},
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()


def ingestion_lock(lock_dir: Optional[str] = None, data_dir: str = "data") -> ProcessLock:
    """Lock shared by every run writing to ``data_dir``."""
    resolved = str(Path(data_dir).resolve())
    suffix = hashlib.sha256(resolved.encode()).hexdigest()[:12]
    return ProcessLock(f"papertrails-ingest-{suffix}", lock_dir)
