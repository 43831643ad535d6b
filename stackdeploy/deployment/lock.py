"""
Host-level deployment lock.
"""
import asyncio
import time
from pathlib import Path
import logging
import os
import fcntl


class DeploymentLockManager:
    """
    Serializes deployment attempts on one host.

    Uses an flock'd lock file, so a crashed orchestrator never leaves a stale
    lock behind. Exactly one orchestrator may mutate a given stack at a time.
    """

    def __init__(self, lock_path: str, timeout: int = 60, poll_interval: float = 0.5):
        """
        Initialize deployment lock manager.

        Args:
            lock_path: Path of the lock file
            timeout: Lock acquisition timeout in seconds
            poll_interval: Seconds between acquisition attempts
        """
        self.lock_file_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.lock_file = None
        self.logger = logging.getLogger(__name__)

        # Ensure directory exists
        self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)

    async def __aenter__(self):
        """Acquire lock (async context manager)"""
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release lock (async context manager)"""
        await self.release()
        return False

    @property
    def held(self) -> bool:
        return self.lock_file is not None

    async def acquire(self):
        """
        Acquire deployment lock with timeout.

        Raises:
            TimeoutError: If lock cannot be acquired within timeout
        """
        start_time = time.monotonic()

        self.logger.debug(f"Attempting to acquire deployment lock: {self.lock_file_path}")

        while True:
            # 'a' so a waiting process never truncates the holder's PID
            lock_file = open(self.lock_file_path, 'a+')
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                lock_file.close()
                elapsed = time.monotonic() - start_time

                if elapsed >= self.timeout:
                    self.logger.error(
                        f"Failed to acquire deployment lock after {self.timeout}s timeout"
                    )
                    raise TimeoutError(
                        f"Could not acquire deployment lock {self.lock_file_path} within {self.timeout}s. "
                        "Another deployment may be in progress."
                    )

                self.logger.debug(
                    f"Deployment lock held by another process, retrying... "
                    f"({elapsed:.1f}s / {self.timeout}s)"
                )
                await asyncio.sleep(self.poll_interval)
                continue
            except Exception:
                lock_file.close()
                raise

            # Write PID to lock file
            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()

            self.lock_file = lock_file
            self.logger.info("Deployment lock acquired")
            return

    async def release(self):
        """Release deployment lock"""
        if not self.lock_file:
            return

        try:
            self.lock_file.seek(0)
            self.lock_file.truncate()
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self.lock_file.close()
            self.lock_file = None

        self.logger.info("Deployment lock released")

    def is_locked(self) -> bool:
        """
        Check if a deployment is currently running (non-blocking check).

        Returns:
            True if locked
        """
        if self.lock_file is not None:
            return True
        if not self.lock_file_path.exists():
            return False

        with open(self.lock_file_path, 'r') as test_file:
            try:
                fcntl.flock(test_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(test_file.fileno(), fcntl.LOCK_UN)
            return False
