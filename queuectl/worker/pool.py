"""
Worker pool supervisor.

Spawns worker processes, records their pids in a JSON PID file and stops
them by broadcasting SIGTERM. Each worker finishes its in-flight job before
exiting, so stopping never interrupts a command.
"""

import json
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any

from queuectl.config import Settings, get_settings
from queuectl.constants import WORKER_ID_ENV
from queuectl.errors import ValidationError
from queuectl.utils import iso, utc_now

logger = logging.getLogger(__name__)


def read_pid_file(pid_file: str | Path) -> dict[str, Any] | None:
    """
    Read the PID file.

    Returns:
        ``{"started_at": ..., "pids": [...]}``, or None if the file is
        missing or unreadable.
    """
    path = Path(pid_file)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable PID file: {e}", extra={"pid_file": str(path)})
        return None

    if not isinstance(data, dict) or not isinstance(data.get("pids"), list):
        logger.warning("Ignoring malformed PID file", extra={"pid_file": str(path)})
        return None
    return data


def write_pid_file(pid_file: str | Path, pids: list[int]) -> None:
    """Write the PID file for a freshly started pool."""
    Path(pid_file).write_text(json.dumps({"started_at": iso(utc_now()), "pids": pids}))


def remove_pid_file(pid_file: str | Path) -> None:
    Path(pid_file).unlink(missing_ok=True)


def _signal(pid: int, sig: int = signal.SIGTERM) -> bool:
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.warning("Not allowed to signal worker", extra={"pid": pid})
        return False
    return True


def stop_from_pid_file(pid_file: str | Path) -> int:
    """
    Stop workers recorded in the PID file and remove it.

    Used by ``queuectl worker stop`` from a different process than the one
    that started the pool.

    Returns:
        Number of workers signalled. 0 when there is no PID file.
    """
    data = read_pid_file(pid_file)
    if data is None:
        remove_pid_file(pid_file)
        return 0

    count = sum(1 for pid in data["pids"] if isinstance(pid, int) and _signal(pid))
    remove_pid_file(pid_file)
    logger.info(f"Sent SIGTERM to {count} workers", extra={"pid_file": str(pid_file)})
    return count


class WorkerPool:
    """
    Starts and stops N worker processes.

    Workers are separate OS processes running ``python -m queuectl.worker.main``;
    they coordinate only through the store's atomic claim.
    """

    def __init__(
        self,
        database_url: str | None = None,
        pid_file: str | Path | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the pool.

        Args:
            database_url: Store URL passed to every worker. Defaults to
                ``Settings.database_url``.
            pid_file: PID file path. Defaults to ``Settings.pid_file``.
            settings: Optional settings override.
        """
        settings = settings or get_settings()
        self.database_url = database_url or settings.database_url
        self.pid_file = Path(pid_file or settings.pid_file)
        self._processes: list[subprocess.Popen] = []

    @property
    def pids(self) -> list[int]:
        return [process.pid for process in self._processes]

    def worker_env(self) -> dict[str, str]:
        """
        Environment for spawned workers.

        A fixed worker id is dropped so every pooled worker owns its claims
        under its own ``w-<pid>``. ``PROMETHEUS_MULTIPROC_DIR`` is inherited.
        """
        env = {key: value for key, value in os.environ.items() if key != WORKER_ID_ENV}
        env["QUEUECTL_DATABASE_URL"] = self.database_url
        return env

    def start(self, count: int, detach: bool = False) -> list[int]:
        """
        Spawn ``count`` worker processes and write the PID file.

        Args:
            count: Number of workers, at least 1.
            detach: Start workers in their own session so they outlive the
                terminal that started them.

        Returns:
            The worker pids.
        """
        if count < 1:
            raise ValidationError("Worker count must be at least 1")

        env = self.worker_env()

        for _ in range(count):
            process = subprocess.Popen(
                [sys.executable, "-m", "queuectl.worker.main"],
                env=env,
                start_new_session=detach,
            )
            self._processes.append(process)
            logger.info("Started worker", extra={"pid": process.pid})

        write_pid_file(self.pid_file, self.pids)
        return self.pids

    def stop(self) -> int:
        """
        Broadcast SIGTERM to every worker. Does not wait.

        Falls back to the PID file when this pool did not start the workers.

        Returns:
            Number of workers signalled.
        """
        if not self._processes:
            return stop_from_pid_file(self.pid_file)

        count = 0
        for process in self._processes:
            if process.poll() is None and _signal(process.pid):
                count += 1

        remove_pid_file(self.pid_file)
        logger.info(f"Sent SIGTERM to {count} workers")
        return count

    def wait(self) -> list[int]:
        """
        Wait for every owned worker to exit.

        Returns:
            The workers' exit codes.
        """
        codes = [process.wait() for process in self._processes]
        remove_pid_file(self.pid_file)
        logger.info("All workers exited", extra={"exit_codes": codes})
        return codes
