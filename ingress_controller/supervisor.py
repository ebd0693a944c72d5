"""Lifecycle management of the data-plane proxy process."""

import signal
import subprocess
import time
from typing import List, Optional

from .exceptions import ProcessError
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import DataPlaneConfig, ProcessState

logger = get_logger(__name__)


class ProcessSupervisor:
    """Runs one data-plane process pointed at the published config.

    States move NOT_STARTED -> RUNNING on ``start``, stay RUNNING across
    ``reload`` and go RUNNING -> STOPPED on ``stop``. A STOPPED supervisor
    can be started again when a new ingress shows up.
    """

    def __init__(self, data_plane: DataPlaneConfig, config_path: str):
        self.data_plane = data_plane
        self.config_path = config_path
        self.state = ProcessState.NOT_STARTED
        self.owner: Optional[str] = None
        self._process: Optional[subprocess.Popen] = None

    @property
    def command(self) -> List[str]:
        return list(self.data_plane.command) + [self.config_path]

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self, owner: Optional[str] = None) -> None:
        """Launch the process, retrying with exponential backoff.

        Raises:
            ProcessError: If every attempt failed. The state is left unchanged.
        """
        log_function_entry(logger, "start", owner=owner, state=self.state.value)
        if self.state is ProcessState.RUNNING and self.is_alive():
            logger.debug("Data plane already running", pid=self.pid)
            return

        delay = self.data_plane.start_backoff
        last_error: Optional[Exception] = None
        for attempt in range(1, self.data_plane.start_attempts + 1):
            try:
                self._process = subprocess.Popen(self.command, cwd=self.data_plane.working_dir)
            except OSError as e:
                last_error = e
                logger.warning("Data plane start failed", attempt=attempt,
                               attempts=self.data_plane.start_attempts, command=self.command, error=str(e))
                if attempt < self.data_plane.start_attempts:
                    time.sleep(delay)
                    delay *= 2
                continue

            self.state = ProcessState.RUNNING
            if owner is not None:
                self.owner = owner
            logger.info("Data plane started", pid=self._process.pid, command=self.command,
                        working_dir=self.data_plane.working_dir, owner=self.owner)
            log_function_exit(logger, "start", status="running", pid=self._process.pid)
            return

        log_function_exit(logger, "start", status="error", error=str(last_error))
        raise ProcessError(f"data plane failed to start after {self.data_plane.start_attempts} attempts: {last_error}")

    def reload(self) -> None:
        """Ask the running process to re-read its config.

        A process that is not running (never started, or died) is started
        instead.

        Raises:
            ProcessError: If signalling or restarting failed.
        """
        if not self.is_alive():
            if self.state is ProcessState.RUNNING:
                logger.warning("Data plane exited unexpectedly, restarting", returncode=self._returncode())
            self.start()
            return

        reload_signal = getattr(signal, self.data_plane.reload_signal)
        try:
            self._process.send_signal(reload_signal)
        except OSError as e:
            raise ProcessError(f"cannot signal data plane pid {self.pid}: {e}") from e
        logger.info("Data plane reload requested", pid=self.pid, signal=self.data_plane.reload_signal)

    def stop(self) -> None:
        """Terminate the process gracefully, escalating to SIGKILL after ``stop_timeout``."""
        log_function_entry(logger, "stop", state=self.state.value, pid=self.pid)
        process = self._process
        if process is not None and process.poll() is None:
            try:
                process.terminate()
                process.wait(timeout=self.data_plane.stop_timeout)
            except subprocess.TimeoutExpired:
                logger.warning("Data plane did not exit in time, killing",
                               pid=process.pid, timeout=self.data_plane.stop_timeout)
                process.kill()
                try:
                    process.wait(timeout=self.data_plane.stop_timeout)
                except subprocess.TimeoutExpired:
                    logger.error("Data plane survived SIGKILL", pid=process.pid)
            except ProcessLookupError:
                pass
            logger.info("Data plane stopped", pid=process.pid, returncode=process.returncode)

        if self.state is not ProcessState.NOT_STARTED:
            self.state = ProcessState.STOPPED
        self._process = None
        log_function_exit(logger, "stop", state=self.state.value)

    def ensure_running(self) -> bool:
        """Restart the process if it died while RUNNING.

        Returns:
            True if a restart happened.

        Raises:
            ProcessError: If the restart failed.
        """
        if self.state is not ProcessState.RUNNING or self.is_alive():
            return False
        logger.warning("Data plane exited unexpectedly, restarting", returncode=self._returncode())
        self.start()
        return True

    def _returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None
