import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import TransientIOError
from .eventlog import NULL_EVENTS, EventLog
from .models import ActionRecord, Node, NodeRole, PhasePolicy, Readiness, utcnow

log = logging.getLogger(__name__)


@dataclass
class NodeJob:
    """Working state of one node while its agent is processing it."""
    node:       Node
    sequence:   int
    phase:      str
    policy:     PhasePolicy
    cluster:    Any
    host:       Any
    probe:      Any
    events:     EventLog = NULL_EVENTS
    sleep:      Callable[[float], None] = time.sleep

    actions:    List[ActionRecord] = field(default_factory=list)
    degraded:   List[str] = field(default_factory=list)
    readiness:  Optional[Readiness] = None
    cordoned:   bool = False
    changed:    Optional[bool] = None

    @property
    def is_cluster_member(self) -> bool:
        return self.node.role is NodeRole.CLUSTER_MEMBER

    def record(self, step: str, status: str, detail: str = "",
               started_at: Optional[datetime] = None) -> None:
        self.actions.append(ActionRecord(step, status, detail, started_at or utcnow(), utcnow()))

    def emit(self, step: str, action: str, **extra: Any) -> None:
        self.events.emit({
            "phase": self.phase,
            "step": step,
            "action": action,
            "host": self.node.name,
            **extra,
        })

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke a collaborator, retrying TransientIOError within the phase budget."""
        retrying = Retrying(
            stop=stop_after_attempt(self.policy.transient_retries + 1),
            wait=wait_fixed(self.policy.retry_delay_sec),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=before_sleep_log(log, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
