import logging
import threading
import uuid
from typing import Callable, Iterable, List, Optional, Sequence

from .agent import NodeAgent
from .errors import ConfigurationError, FailureKind
from .eventlog import NULL_EVENTS, EventLog
from .models import (
    ABORTED_BY_OPERATOR,
    MaintenanceReport,
    NodeResult,
    NodeRole,
    NodeState,
    Phase,
    PhaseReport,
    RunStatus,
    utcnow,
)
from .monitor import MonitorGate
from .probe import probe_for
from .runner import PhaseRunner

log = logging.getLogger(__name__)

# Cluster members go first: if the control host's own reboot takes the automation
# down with it, the cluster has already reached a consistent state.
ROLE_ORDER = {NodeRole.CLUSTER_MEMBER: 0, NodeRole.STANDALONE_HOST: 1}


def validate_phases(phases: Sequence[Phase]) -> None:
    if not phases:
        raise ConfigurationError("No phases to run")
    seen_phases: set[str] = set()
    seen_nodes: dict[str, str] = {}
    last_rank = -1
    for phase in phases:
        if phase.name in seen_phases:
            raise ConfigurationError(f"Duplicate phase name {phase.name!r}")
        seen_phases.add(phase.name)
        if not phase.nodes:
            raise ConfigurationError(f"Phase {phase.name!r} has no nodes")
        rank = ROLE_ORDER[phase.role]
        if rank < last_rank:
            raise ConfigurationError(
                f"Phase {phase.name!r} ({phase.role.value}) must run before every standalone-host phase"
            )
        last_rank = rank
        phase.policy.validate()
        for node in phase.nodes:
            if node.role is not phase.role:
                raise ConfigurationError(
                    f"Node {node.name} has role {node.role.value} but phase {phase.name!r} is {phase.role.value}"
                )
            if node.name in seen_nodes:
                raise ConfigurationError(
                    f"Node {node.name} appears in phases {seen_nodes[node.name]!r} and {phase.name!r}"
                )
            if node.state is not NodeState.PENDING:
                raise ConfigurationError(f"Node {node.name} is {node.state.value}, expected Pending")
            seen_nodes[node.name] = phase.name


def overall_status(report: MaintenanceReport) -> RunStatus:
    if report.error or report.aborted:
        return RunStatus.FAILED
    statuses = {p.status for p in report.phases}
    if RunStatus.FAILED in statuses:
        return RunStatus.FAILED
    if RunStatus.DEGRADED in statuses:
        return RunStatus.DEGRADED
    return RunStatus.CLEAN


def abort_cut_short(report: MaintenanceReport) -> bool:
    """True when an operator abort left some node unstarted or halted mid-sequence."""
    return any(
        o.failure_kind is FailureKind.ABORTED
        or (o.result is NodeResult.SKIPPED and o.reason == ABORTED_BY_OPERATOR)
        for o in report.outcomes
    )


class MaintenanceOrchestrator:
    """
    One maintenance run: validate, pause monitoring, run phases strictly in order,
    resume monitoring, hand the report to every sink.
    """

    def __init__(self, gate: MonitorGate, runner: PhaseRunner,
                 monitor_duration_sec: int = 3600,
                 sinks: Iterable[Callable[[MaintenanceReport], None]] = (),
                 events: EventLog = NULL_EVENTS,
                 abort: Optional[threading.Event] = None):
        self.gate = gate
        self.runner = runner
        self.monitor_duration_sec = monitor_duration_sec
        self.sinks = list(sinks)
        self.events = events
        self.abort = abort or runner.abort

    def run_maintenance(self, phases: Sequence[Phase]) -> MaintenanceReport:
        validate_phases(phases)
        report = MaintenanceReport(run_id=uuid.uuid4().hex[:12], started_at=utcnow())
        log.info("Maintenance run %s: %d phase(s), %d node(s)", report.run_id, len(phases),
                 sum(len(p.nodes) for p in phases))
        self.events.emit({"step": "run", "action": "started", "run_id": report.run_id})

        with self.gate.window(self.monitor_duration_sec) as window:
            report.monitor = window
            self._run_phases(phases, report)

        report.aborted = report.aborted or abort_cut_short(report)
        report.status = overall_status(report)
        report.finished_at = utcnow()
        log.info("Maintenance run %s finished: %s", report.run_id, report.status.value)
        self.events.emit({
            "step": "run", "action": "finished", "run_id": report.run_id,
            "status": report.status.value, "monitoring_unavailable": report.monitoring_unavailable,
        })
        self._emit(report)
        return report

    def _run_phases(self, phases: Sequence[Phase], report: MaintenanceReport) -> None:
        stop_reason: Optional[str] = None
        for phase in phases:
            if stop_reason is None and self.abort.is_set():
                stop_reason = ABORTED_BY_OPERATOR
                report.aborted = True
            if stop_reason is not None:
                report.phases.append(self._skipped_phase(phase, stop_reason))
                continue
            try:
                phase_report = self.runner.run(phase)
            except Exception as exc:
                log.exception("Phase %s crashed: %s", phase.name, exc)
                report.error = f"{phase.name}: {type(exc).__name__}: {exc}"
                report.phases.append(self._crashed_phase(phase, report.error))
                stop_reason = f"run stopped after phase {phase.name} crashed"
                continue
            report.phases.append(phase_report)
            if phase_report.status is RunStatus.FAILED:
                stop_reason = f"phase {phase.name} failed: {phase_report.halted_reason}"
                log.error("Not starting later phases: %s", stop_reason)

    def _skipped_phase(self, phase: Phase, reason: str) -> PhaseReport:
        agent = self.runner.agent_factory(phase)
        outcomes = [agent.skip(node, seq, reason) for seq, node in enumerate(phase.nodes, start=1)]
        now = utcnow()
        return PhaseReport(name=phase.name, role=phase.role, status=RunStatus.FAILED,
                           outcomes=outcomes, halted_reason=reason, started_at=now, finished_at=now)

    def _crashed_phase(self, phase: Phase, error: str) -> PhaseReport:
        partial = self.runner.current
        if partial is None or partial.name != phase.name:
            partial = PhaseReport(name=phase.name, role=phase.role, started_at=utcnow())
        done = {o.sequence for o in partial.outcomes}
        agent = self.runner.agent_factory(phase)
        for seq, node in enumerate(phase.nodes, start=1):
            if seq not in done:
                partial.outcomes.append(agent.abandon(node, seq, error))
        partial.outcomes.sort(key=lambda o: o.sequence)
        partial.status = RunStatus.FAILED
        partial.halted_reason = error
        partial.finished_at = utcnow()
        return partial

    def _emit(self, report: MaintenanceReport) -> None:
        for sink in self.sinks:
            try:
                sink(report)
            except Exception as exc:
                log.error("Report sink %r failed: %s", sink, exc)

    def preview(self, phases: Sequence[Phase]) -> List[str]:
        """Dry-run plan; touches no external system."""
        validate_phases(phases)
        lines: List[str] = []
        for phase in phases:
            p = phase.policy
            limit = p.batch_size(len(phase.nodes))
            lines.append(
                f"Phase {phase.name} ({phase.role.value}): {len(phase.nodes)} node(s), "
                f"concurrency={limit}, halt_on_first_failure={p.halt_on_first_failure}"
            )
            for seq, node in enumerate(phase.nodes, start=1):
                steps = []
                if phase.role is NodeRole.CLUSTER_MEMBER:
                    steps.append(f"drain (timeout {p.drain_timeout_sec}s)")
                steps.append("apt dist-upgrade" if p.dist_upgrade else "apt upgrade")
                if p.reboot:
                    steps.append("reboot")
                steps.append(f"wait ready ({p.health_retries}x{p.health_delay_sec}s)")
                if phase.role is NodeRole.CLUSTER_MEMBER:
                    steps.append("uncordon")
                lines.append(f"  {seq}. {node.name}: " + " -> ".join(steps))
        return lines


def build_orchestrator(settings, cluster, host, gate: MonitorGate,
                       sinks: Iterable[Callable[[MaintenanceReport], None]] = (),
                       events: EventLog = NULL_EVENTS,
                       abort: Optional[threading.Event] = None) -> MaintenanceOrchestrator:
    """Wire collaborators into agents, runner and orchestrator."""
    abort = abort or threading.Event()

    def agent_factory(phase: Phase) -> NodeAgent:
        probe = probe_for(phase.role, cluster, host, settings.host_services)
        return NodeAgent(phase.name, phase.policy, cluster, host, probe, events=events, abort=abort)

    runner = PhaseRunner(agent_factory, abort=abort)
    return MaintenanceOrchestrator(
        gate, runner,
        monitor_duration_sec=settings.monitor_pause_sec,
        sinks=sinks, events=events, abort=abort,
    )
