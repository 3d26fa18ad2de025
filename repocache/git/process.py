"""Run git subprocesses with a deadline and graceful-then-forceful termination."""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL once the deadline has passed
TERMINATION_GRACE_PERIOD = 5.0

# Keep the tail of captured streams bounded
MAX_OUTPUT_CHARS = 64 * 1024

GIT_ENV = {
    # Never block on an interactive credential prompt
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "echo",
}


class GitCommandError(Exception):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, args: List[str], returncode: int, stderr: str = ""):
        self.command = args
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(
            f"'{' '.join(args)}' failed with exit code {returncode}: {detail}"
        )


class GitTimeoutError(GitCommandError):
    """Raised when a git command did not finish before its deadline."""

    def __init__(self, args: List[str], timeout: float):
        self.timeout = timeout
        super().__init__(args, -1, f"timed out after {timeout}s")


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


def _bounded(text: str) -> str:
    if len(text) > MAX_OUTPUT_CHARS:
        return text[-MAX_OUTPUT_CHARS:]
    return text


def _terminate(process: subprocess.Popen) -> None:
    """Send SIGTERM to the process group, SIGKILL after the grace period."""
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        try:
            process.wait(timeout=TERMINATION_GRACE_PERIOD)
            logger.debug("Process terminated gracefully.")
        except subprocess.TimeoutExpired:
            logger.warning("Process did not terminate gracefully, forcing kill...")
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            process.wait()
    except ProcessLookupError:
        # Process already died
        pass


def run_git(
    args: List[str],
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    check: bool = True,
) -> CommandResult:
    """
    Run ``git <args>`` and capture its output.

    The command runs in its own process group so that helpers spawned by git
    (remote-https, ssh) are terminated together with it.

    Args:
        args: Arguments passed to git
        cwd: Working directory
        timeout: Deadline in seconds, None waits forever
        check: Raise GitCommandError on a non-zero exit status

    Raises:
        GitTimeoutError: If the deadline passed; the process group is killed
        GitCommandError: If check is set and git failed, or git is missing
    """
    command = ["git"] + list(args)
    env = dict(os.environ)
    env.update(GIT_ENV)

    logger.debug(f"Running {' '.join(command)}" + (f" in {cwd}" if cwd else ""))

    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            env=env,
            start_new_session=True,  # Creates new process group on POSIX
        )
    except FileNotFoundError as e:
        raise GitCommandError(command, 127, f"git executable not found: {e}")

    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(
            f"'{' '.join(command)}' timed out after {timeout}s. "
            "Terminating process and all children..."
        )
        _terminate(process)
        process.communicate()
        raise GitTimeoutError(command, timeout)
    finally:
        # Ensure process and all children are cleaned up
        if process.poll() is None:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
                process.wait()
            except (ProcessLookupError, OSError):
                pass

    result = CommandResult(
        args=command,
        returncode=process.returncode,
        stdout=_bounded(stdout or ""),
        stderr=_bounded(stderr or ""),
    )
    if check and result.returncode != 0:
        raise GitCommandError(command, result.returncode, result.stderr)
    return result
