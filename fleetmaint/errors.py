from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    TRANSIENT_IO = "TransientIOError"
    PRECONDITION_FAILED = "PreconditionFailed"
    HEALTH_TIMEOUT = "HealthTimeout"
    EXTERNAL_SYSTEM_UNAVAILABLE = "ExternalSystemUnavailable"
    CONFIGURATION_ERROR = "ConfigurationError"
    ABORTED = "Aborted"


class MaintenanceError(Exception):
    """Base class for failures the orchestrator knows how to route."""
    kind: FailureKind = FailureKind.PRECONDITION_FAILED


class TransientIOError(MaintenanceError):
    """Network blip, SSH drop, command timeout. Retried up to the phase budget."""
    kind = FailureKind.TRANSIENT_IO


class PreconditionFailed(MaintenanceError):
    """A step was refused (pods would not evict, uncordon rejected, ...). Not retried."""
    kind = FailureKind.PRECONDITION_FAILED


class HealthTimeout(MaintenanceError):
    kind = FailureKind.HEALTH_TIMEOUT

    def __init__(self, message: str, readiness=None, attempts: int = 0):
        super().__init__(message)
        self.readiness = readiness
        self.attempts = attempts


class ExternalSystemUnavailable(MaintenanceError):
    """Non-critical dependency (monitoring vendor) could not be reached."""
    kind = FailureKind.EXTERNAL_SYSTEM_UNAVAILABLE


class ConfigurationError(MaintenanceError):
    """Inventory or policy is inconsistent; raised before any node is touched."""
    kind = FailureKind.CONFIGURATION_ERROR


class MaintenanceAborted(MaintenanceError):
    kind = FailureKind.ABORTED


class CommandFailed(RuntimeError):
    def __init__(self, cmd: list[str], returncode: int, stderr: str, stdout: str = ""):
        super().__init__(stderr or f"{cmd[0]} exited with {returncode}")
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout


class InvalidTransition(RuntimeError):
    def __init__(self, node: str, src, dst, reason: Optional[str] = None):
        msg = f"{node}: illegal transition {src.value} -> {dst.value}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.node = node
        self.src = src
        self.dst = dst
