import subprocess
import logging
from typing import Optional

from .errors import CommandFailed, ConfigurationError, TransientIOError


def run_cmd(cmd: list[str], *, check: bool = True, timeout: Optional[float] = None) -> str:
    """
    Run a command and return its stripped stdout.
    - A timeout raises TransientIOError (the caller decides whether to retry).
    - A non-zero exit raises CommandFailed when check=True.
    - A missing executable raises ConfigurationError.
    """
    log = logging.getLogger(__name__)
    log.debug("Running command: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd, text=True, capture_output=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        log.warning("Command timed out after %ss: %s", timeout, " ".join(cmd))
        raise TransientIOError(f"{cmd[0]} timed out after {timeout}s") from exc
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Executable not found: {cmd[0]}") from exc
    if check and proc.returncode:
        log.error("Command failed (%s): %s", proc.returncode, proc.stderr.strip())
        raise CommandFailed(cmd, proc.returncode, proc.stderr.strip(), proc.stdout.strip())
    return proc.stdout.strip()


def run_cmd_rc(cmd: list[str], *, timeout: Optional[float] = None) -> tuple[int, str, str]:
    """Like run_cmd but never raises on exit status; returns (rc, stdout, stderr)."""
    log = logging.getLogger(__name__)
    log.debug("Running command: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd, text=True, capture_output=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        raise TransientIOError(f"{cmd[0]} timed out after {timeout}s") from exc
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Executable not found: {cmd[0]}") from exc
    return proc.returncode, proc.stdout.strip(), proc.stderr.strip()
