"""Process management for external programs driven by awsx."""

import shutil
import subprocess
from pathlib import Path
from types import TracebackType
from typing import IO, Literal

import psutil

from .exceptions import CommandError, ExternalToolMissing
from .logging import get_logger

logger = get_logger(__name__)


def require_tool(name: str, hint: str | None = None) -> str:
    """Return the absolute path of an executable or raise ExternalToolMissing."""
    path = shutil.which(name)
    if path is None:
        raise ExternalToolMissing(name, hint)
    return path


def run_command(
    args: list[str],
    timeout: float = 30.0,
    check: bool = True,
    input: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a short-lived command and capture its output.

    Args:
        args: Command and arguments
        timeout: Seconds before the command is killed
        check: Raise CommandError on non-zero exit
        input: Optional text fed to stdin

    Raises:
        ExternalToolMissing: If the executable does not exist
        CommandError: If check is set and the command fails or times out
    """
    logger.debug("Running command", command=args[0], argc=len(args))
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
            check=False,
        )
    except FileNotFoundError as e:
        raise ExternalToolMissing(args[0]) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(args, -1, f"timed out after {timeout:g}s") from e

    if check and result.returncode != 0:
        raise CommandError(args, result.returncode, result.stderr)
    return result


def pid_alive(pid: int | None) -> bool:
    """Check whether a process exists and is not a zombie."""
    if not pid:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def terminate_pid(pid: int, timeout: float = 5.0) -> bool:
    """Terminate a process and its children, escalating to SIGKILL.

    Returns:
        True if the process existed, False if it was already gone

    Raises:
        psutil.AccessDenied: If the process belongs to another user
    """
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        logger.debug("Process already gone", pid=pid)
        return False

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        logger.warning("Process did not terminate gracefully, force killing", pid=proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    return True


class ProcessManager:
    """Launches a long-lived external program that outlives its launcher."""

    def __init__(self, args: list[str], log_path: Path | None = None):
        """Initialize ProcessManager with the command line to run.

        Args:
            args: Command and arguments; the executable must be on PATH
            log_path: Optional file receiving the process's stdout/stderr

        Raises:
            ExternalToolMissing: If the executable is not found
            ValueError: If args is empty
        """
        if not args:
            raise ValueError("Command cannot be empty")
        self.args = args
        self.log_path = log_path
        self._process: subprocess.Popen[bytes] | None = None
        self._validate_executable()

    def _validate_executable(self) -> None:
        executable = self.args[0]
        if Path(executable).is_absolute():
            if not Path(executable).is_file():
                raise ExternalToolMissing(executable)
        else:
            self.args = [require_tool(executable), *self.args[1:]]

    def start(self) -> int:
        """Start the process in its own session.

        Returns:
            Process ID of the started process

        Raises:
            OSError: If the process fails to spawn
        """
        if self.is_running() and self._process is not None:
            logger.debug("Process already running", pid=self._process.pid)
            return self._process.pid

        output: IO[bytes] | int = subprocess.DEVNULL
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            output = open(self.log_path, "ab")

        try:
            self._process = subprocess.Popen(
                self.args,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        finally:
            if output is not subprocess.DEVNULL:
                output.close()  # type: ignore[union-attr]

        logger.info("Process started", command=self.args[0], pid=self._process.pid)
        return self._process.pid

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop the process and its children.

        Returns:
            True if a running process was stopped
        """
        if self._process is None:
            return False
        stopped = terminate_pid(self._process.pid, timeout=timeout)
        try:
            self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("Failed to reap process", pid=self._process.pid)
        self._process = None
        return stopped

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False
        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self.is_running() and self._process:
            return self._process.pid
        return None

    @property
    def returncode(self) -> int | None:
        if self._process is None:
            return None
        return self._process.poll()

    def __enter__(self) -> "ProcessManager":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.stop()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False
