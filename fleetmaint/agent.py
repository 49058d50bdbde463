import logging
import threading
import time
from typing import Callable, Optional

from .errors import InvalidTransition, MaintenanceAborted, MaintenanceError
from .eventlog import NULL_EVENTS, EventLog
from .job import NodeJob
from .models import (
    Node,
    NodeOutcome,
    ABORTED_BY_OPERATOR,
    NodeResult,
    NodeState,
    PhasePolicy,
    Readiness,
    can_transition,
    utcnow,
)
from .steps import drain, health, patch, reboot, uncordon

log = logging.getLogger(__name__)

# Order matters: drain before patch, ready before uncordon.
STEPS = (
    (NodeState.DRAINING, drain.execute),
    (NodeState.PATCHING, patch.execute),
    (NodeState.REBOOTING, reboot.execute),
    (NodeState.WAITING_READY, health.execute),
    (NodeState.UNCORDONING, uncordon.execute),
)


class NodeAgent:
    """
    Runs one node at a time through
    Pending -> Draining -> Patching -> Rebooting -> WaitingReady -> Uncordoning -> Done,
    dropping to ErrorHalted on an unrecoverable step failure.

    An agent is bound to one phase (its policy and probe); PhaseRunner may call
    process() from several threads for different nodes.
    """

    def __init__(self, phase: str, policy: PhasePolicy, cluster, host, probe,
                 events: EventLog = NULL_EVENTS, abort: Optional[threading.Event] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.phase = phase
        self.policy = policy
        self.cluster = cluster
        self.host = host
        self.probe = probe
        self.events = events
        self.abort = abort or threading.Event()
        self.sleep = sleep

    def _job(self, node: Node, sequence: int) -> NodeJob:
        return NodeJob(
            node=node, sequence=sequence, phase=self.phase, policy=self.policy,
            cluster=self.cluster, host=self.host, probe=self.probe,
            events=self.events, sleep=self.sleep,
        )

    def _transition(self, job: NodeJob, dst: NodeState) -> None:
        src = job.node.state
        if not can_transition(src, dst):
            raise InvalidTransition(job.node.name, src, dst)
        job.node.state = dst
        log.info("[%s] %s: %s -> %s", self.phase, job.node.name, src.value, dst.value)
        job.emit("state", "transition", src=src.value, dst=dst.value)

    def process(self, node: Node, sequence: int) -> NodeOutcome:
        job = self._job(node, sequence)
        started = utcnow()

        if self.abort.is_set():
            return self._finish(job, started, NodeResult.SKIPPED, reason=ABORTED_BY_OPERATOR)

        if self.policy.skip_up_to_date and self._up_to_date(job):
            return self._finish(job, started, NodeResult.SKIPPED, reason="already up to date")

        try:
            for state, step in STEPS:
                if self.abort.is_set():
                    if job.node.state is NodeState.PENDING:
                        # nothing touched yet
                        return self._finish(job, started, NodeResult.SKIPPED, reason=ABORTED_BY_OPERATOR)
                    raise MaintenanceAborted(f"operator abort before {state.value}")
                self._transition(job, state)
                step(job)
            self._transition(job, NodeState.DONE)
        except MaintenanceError as exc:
            return self._halt(job, started, exc)

        reason = ", ".join(job.degraded)
        return self._finish(job, started, NodeResult.SUCCEEDED, reason=reason)

    def skip(self, node: Node, sequence: int, reason: str) -> NodeOutcome:
        """Outcome for a node the runner decided not to start."""
        job = self._job(node, sequence)
        return self._finish(job, None, NodeResult.SKIPPED, reason=reason)

    def abandon(self, node: Node, sequence: int, reason: str) -> NodeOutcome:
        """
        Outcome for a node whose phase crashed before it reported. Pending nodes count as
        skipped and a node that already reached Done as succeeded.
        """
        job = self._job(node, sequence)
        if node.state is NodeState.PENDING:
            return self._finish(job, None, NodeResult.SKIPPED, reason=reason)
        if node.state is NodeState.DONE:
            return self._finish(job, None, NodeResult.SUCCEEDED)
        # past Pending a cluster member has at least been cordoned
        job.cordoned = job.is_cluster_member
        return self._finish(job, None, NodeResult.FAILED, reason=reason)

    def _up_to_date(self, job: NodeJob) -> bool:
        """
        True when the node has no pending package changes, no reboot pending, reports
        Ready and is schedulable. Any error means "can't tell" and the node is maintained.
        """
        node = job.node
        try:
            pending = job.call(self.host.pending_changes, node, dist=self.policy.dist_upgrade,
                               timeout=self.policy.patch_timeout_sec)
            if pending:
                return False
            if self.policy.reboot and job.call(self.host.reboot_required, node):
                return False
            if self.probe.is_ready(node) is not Readiness.READY:
                return False
            if job.is_cluster_member and job.call(self.cluster.is_cordoned, node.name):
                return False
        except MaintenanceError as exc:
            log.warning("Up-to-date check on %s failed, maintaining it anyway: %s", node.name, exc)
            return False
        log.info("[%s] %s is up to date and healthy; nothing to do", self.phase, node.name)
        job.readiness = Readiness.READY
        job.record("precheck", "skipped", "up to date")
        return True

    def _halt(self, job: NodeJob, started, exc: MaintenanceError) -> NodeOutcome:
        failed_in = job.node.state
        self._transition(job, NodeState.ERROR_HALTED)
        if job.cordoned:
            log.error("[%s] %s halted in %s and is left cordoned: %s",
                      self.phase, job.node.name, failed_in.value, exc)
        else:
            log.error("[%s] %s halted in %s: %s", self.phase, job.node.name, failed_in.value, exc)
        job.emit("node", "halted", state=failed_in.value, kind=exc.kind.value, error=str(exc))
        return self._finish(job, started, NodeResult.FAILED, reason=f"{failed_in.value}: {exc}",
                            failure_kind=exc.kind)

    def _finish(self, job: NodeJob, started, result: NodeResult, reason: str = "",
                failure_kind=None) -> NodeOutcome:
        outcome = NodeOutcome(
            sequence=job.sequence,
            node=job.node.name,
            role=job.node.role,
            result=result,
            state=job.node.state,
            actions=tuple(job.actions),
            started_at=started,
            finished_at=utcnow(),
            failure_kind=failure_kind,
            reason=reason,
            cordoned=job.cordoned,
            degraded=tuple(job.degraded),
            readiness=job.readiness,
        )
        job.emit("node", result.value, state=job.node.state.value, reason=reason)
        return outcome
