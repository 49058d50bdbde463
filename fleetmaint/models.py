from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from .errors import ConfigurationError, FailureKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.replace(microsecond=0).isoformat().replace("+00:00", "Z")


class NodeRole(str, Enum):
    CLUSTER_MEMBER = "cluster-member"
    STANDALONE_HOST = "standalone-host"


class NodeState(str, Enum):
    PENDING = "Pending"
    DRAINING = "Draining"
    PATCHING = "Patching"
    REBOOTING = "Rebooting"
    WAITING_READY = "WaitingReady"
    UNCORDONING = "Uncordoning"
    DONE = "Done"
    ERROR_HALTED = "ErrorHalted"


TERMINAL_STATES = frozenset({NodeState.DONE, NodeState.ERROR_HALTED})

# Forward edges only; ErrorHalted is reachable from every non-terminal state.
TRANSITIONS: dict[NodeState, frozenset[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.DRAINING}),
    NodeState.DRAINING: frozenset({NodeState.PATCHING}),
    NodeState.PATCHING: frozenset({NodeState.REBOOTING}),
    NodeState.REBOOTING: frozenset({NodeState.WAITING_READY}),
    NodeState.WAITING_READY: frozenset({NodeState.UNCORDONING}),
    NodeState.UNCORDONING: frozenset({NodeState.DONE}),
    NodeState.DONE: frozenset(),
    NodeState.ERROR_HALTED: frozenset(),
}


def can_transition(src: NodeState, dst: NodeState) -> bool:
    if src in TERMINAL_STATES:
        return False
    if dst is NodeState.ERROR_HALTED:
        return True
    return dst in TRANSITIONS[src]


class Readiness(str, Enum):
    READY = "Ready"
    NOT_READY = "NotReady"
    UNKNOWN = "Unknown"


class NodeResult(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# Skip reason for nodes and phases never started after an operator abort
ABORTED_BY_OPERATOR = "aborted by operator"


class RunStatus(str, Enum):
    CLEAN = "Clean"
    DEGRADED = "Degraded"
    FAILED = "Failed"

    @property
    def exit_code(self) -> int:
        return {RunStatus.CLEAN: 0, RunStatus.DEGRADED: 1, RunStatus.FAILED: 2}[self]


@dataclass
class Node:
    name: str
    role: NodeRole
    address: Optional[str] = None
    state: NodeState = NodeState.PENDING
    last_ready_at: Optional[datetime] = None

    @property
    def target(self) -> str:
        """Address used for SSH; falls back to the node name."""
        return self.address or self.name


@dataclass(frozen=True)
class PhasePolicy:
    serial: Union[int, str] = 1
    transient_retries: int = 3
    retry_delay_sec: float = 5
    drain_timeout_sec: int = 300
    patch_timeout_sec: int = 1800
    reboot_timeout_sec: int = 600
    unreachable_wait_sec: int = 60
    health_retries: int = 30
    health_delay_sec: float = 10
    phase_timeout_sec: int = 0
    dist_upgrade: bool = False
    reboot: bool = True
    cleanup: bool = True
    skip_up_to_date: bool = True
    halt_on_first_failure: bool = False
    halt_on_patch_failure: bool = False

    def batch_size(self, total: int) -> int:
        """
        Resolve `serial` into a concrete per-batch node count for a phase of `total` nodes.
        Accepts an int (1 = fully serial) or a percentage string like "25%".
        """
        value = self.serial
        if isinstance(value, str):
            raw = value.strip()
            if raw.endswith("%"):
                try:
                    pct = float(raw[:-1])
                except ValueError:
                    raise ConfigurationError(f"Invalid serial percentage: {value!r}") from None
                if not 0 < pct <= 100:
                    raise ConfigurationError(f"Serial percentage out of range: {value!r}")
                return max(1, int(total * pct // 100))
            try:
                value = int(raw)
            except ValueError:
                raise ConfigurationError(f"Invalid serial value: {value!r}") from None
        if value < 1:
            raise ConfigurationError(f"Serial must be >= 1, got {value}")
        return min(value, max(total, 1))

    def validate(self) -> None:
        self.batch_size(1)
        for name in ("transient_retries", "health_retries", "drain_timeout_sec",
                     "patch_timeout_sec", "reboot_timeout_sec", "unreachable_wait_sec",
                     "phase_timeout_sec"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.health_retries < 1:
            raise ConfigurationError("health_retries must be at least 1")
        if self.retry_delay_sec < 0 or self.health_delay_sec < 0:
            raise ConfigurationError("delays must not be negative")


@dataclass(frozen=True)
class Phase:
    name: str
    role: NodeRole
    nodes: tuple[Node, ...]
    policy: PhasePolicy = field(default_factory=PhasePolicy)

    def __post_init__(self):
        # node list is fixed once the phase exists
        object.__setattr__(self, "nodes", tuple(self.nodes))


@dataclass(frozen=True)
class ActionRecord:
    step: str
    status: str  # ok | failed | skipped | degraded
    detail: str = ""
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "status": self.status,
            "detail": self.detail,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }


@dataclass(frozen=True)
class NodeOutcome:
    sequence: int
    node: str
    role: NodeRole
    result: NodeResult
    state: NodeState
    actions: tuple[ActionRecord, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_kind: Optional[FailureKind] = None
    reason: str = ""
    cordoned: bool = False
    degraded: tuple[str, ...] = ()
    readiness: Optional[Readiness] = None

    @property
    def duration_sec(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def steps(self) -> list[str]:
        return [a.step for a in self.actions]

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "node": self.node,
            "role": self.role.value,
            "result": self.result.value,
            "state": self.state.value,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "reason": self.reason,
            "cordoned": self.cordoned,
            "degraded": list(self.degraded),
            "readiness": self.readiness.value if self.readiness else None,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_sec": self.duration_sec,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class MonitorWindow:
    started_at: datetime
    duration_sec: int
    enabled: bool = True
    paused: bool = False
    unavailable: bool = False
    resumed: bool = False
    resume_attempts: int = 0
    error: Optional[str] = None

    @property
    def expires_at(self) -> datetime:
        return self.started_at + timedelta(seconds=self.duration_sec)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "paused": self.paused,
            "unavailable": self.unavailable,
            "resumed": self.resumed,
            "resume_attempts": self.resume_attempts,
            "started_at": _iso(self.started_at),
            "duration_sec": self.duration_sec,
            "expires_at": _iso(self.expires_at),
            "error": self.error,
        }


@dataclass
class PhaseReport:
    name: str
    role: NodeRole
    status: RunStatus = RunStatus.CLEAN
    outcomes: list[NodeOutcome] = field(default_factory=list)
    concurrency: int = 1
    halted_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def count(self, result: NodeResult) -> int:
        return sum(1 for o in self.outcomes if o.result is result)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
            "concurrency": self.concurrency,
            "halted_reason": self.halted_reason,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class MaintenanceReport:
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: RunStatus = RunStatus.CLEAN
    phases: list[PhaseReport] = field(default_factory=list)
    monitor: Optional[MonitorWindow] = None
    aborted: bool = False
    error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    @property
    def outcomes(self) -> list[NodeOutcome]:
        return [o for p in self.phases for o in p.outcomes]

    @property
    def monitoring_unavailable(self) -> bool:
        return bool(self.monitor and self.monitor.unavailable)

    def left_cordoned(self) -> list[NodeOutcome]:
        return [o for o in self.outcomes if o.cordoned and o.result is NodeResult.FAILED]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "aborted": self.aborted,
            "error": self.error,
            "monitoring_unavailable": self.monitoring_unavailable,
            "monitor": self.monitor.to_dict() if self.monitor else None,
            "left_cordoned": [o.node for o in self.left_cordoned()],
            "phases": [p.to_dict() for p in self.phases],
        }
