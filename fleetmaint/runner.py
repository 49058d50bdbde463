import concurrent.futures as cf
import logging
import threading
import time
from typing import Callable, List, Optional

from .agent import NodeAgent
from .models import (
    ABORTED_BY_OPERATOR,
    NodeOutcome,
    NodeResult,
    Phase,
    PhaseReport,
    RunStatus,
    utcnow,
)

log = logging.getLogger(__name__)


def phase_status(outcomes: List[NodeOutcome], halted: bool) -> RunStatus:
    if halted:
        return RunStatus.FAILED
    if any(o.result is NodeResult.FAILED or o.degraded for o in outcomes):
        return RunStatus.DEGRADED
    return RunStatus.CLEAN


class PhaseRunner:
    """
    Drive every node of one phase through its NodeAgent.

    Nodes are taken in phase order in batches of `concurrency` (1 = strictly serial).
    A batch is fully terminal before the next one starts. Callers that raise concurrency
    above 1 are responsible for batching only nodes from independent failure domains.
    """

    def __init__(self, agent_factory: Callable[[Phase], NodeAgent],
                 abort: Optional[threading.Event] = None,
                 monotonic: Callable[[], float] = time.monotonic):
        self.agent_factory = agent_factory
        self.abort = abort or threading.Event()
        self.monotonic = monotonic
        self.current: Optional[PhaseReport] = None

    def run(self, phase: Phase, concurrency: Optional[int] = None) -> PhaseReport:
        nodes = list(phase.nodes)
        limit = concurrency or phase.policy.batch_size(len(nodes))
        agent = self.agent_factory(phase)
        report = PhaseReport(name=phase.name, role=phase.role, concurrency=limit, started_at=utcnow())
        self.current = report
        budget = phase.policy.phase_timeout_sec
        deadline = self.monotonic() + budget if budget else None

        log.info("Phase %s: %d node(s), concurrency=%d", phase.name, len(nodes), limit)
        numbered = list(enumerate(nodes, start=1))
        for start in range(0, len(numbered), limit):
            batch = numbered[start:start + limit]

            if report.halted_reason is None:
                if self.abort.is_set():
                    report.halted_reason = ABORTED_BY_OPERATOR
                elif deadline is not None and self.monotonic() >= deadline:
                    report.halted_reason = f"phase timeout budget of {budget}s exhausted"
            if report.halted_reason is not None:
                report.outcomes.extend(agent.skip(node, seq, report.halted_reason) for seq, node in batch)
                continue

            if len(batch) == 1:
                seq, node = batch[0]
                results = [agent.process(node, seq)]
                report.outcomes.extend(results)
            else:
                results = self._run_batch(agent, batch, report)

            failed = [o for o in results if o.result is NodeResult.FAILED]
            if failed and phase.policy.halt_on_first_failure:
                report.halted_reason = f"halt-on-first-failure: {failed[0].node} failed"
                log.error("Phase %s halted: %s", phase.name, report.halted_reason)

        report.outcomes.sort(key=lambda o: o.sequence)
        report.status = phase_status(report.outcomes, report.halted_reason is not None)
        report.finished_at = utcnow()
        log.info("Phase %s finished: %s (%d ok, %d failed, %d skipped)",
                 phase.name, report.status.value,
                 report.count(NodeResult.SUCCEEDED), report.count(NodeResult.FAILED),
                 report.count(NodeResult.SKIPPED))
        return report

    def _run_batch(self, agent: NodeAgent, batch, report: PhaseReport) -> List[NodeOutcome]:
        """
        Run one batch concurrently. Outcomes of nodes that finished are kept on the report
        even when another node in the batch raised; the first such exception is re-raised.
        """
        with cf.ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = [pool.submit(agent.process, node, seq) for seq, node in batch]
        results: List[NodeOutcome] = []
        crash: Optional[BaseException] = None
        for future in futures:
            exc = future.exception()
            if exc is None:
                results.append(future.result())
            elif crash is None:
                crash = exc
        report.outcomes.extend(results)
        if crash is not None:
            raise crash
        return results
