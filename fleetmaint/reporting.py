import logging
from pathlib import Path
from typing import Dict, List, Optional

from .formatting import Column, console, fmt_duration, fmt_ts, print_json_data, print_table, styled
from .models import MaintenanceReport, NodeOutcome, NodeResult, RunStatus

log = logging.getLogger(__name__)

RESULT_STYLES = {
    NodeResult.SUCCEEDED.value: "green",
    NodeResult.FAILED.value: "red",
    NodeResult.SKIPPED.value: "dim",
}

STATUS_STYLES = {
    RunStatus.CLEAN: "bold green",
    RunStatus.DEGRADED: "bold yellow",
    RunStatus.FAILED: "bold red",
}

NODE_COLUMNS = (
    Column("#", "sequence", no_wrap=True, justify="right"),
    Column("Node", "node", no_wrap=True),
    Column("Result", "result", no_wrap=True),
    Column("State", "state", no_wrap=True),
    Column("Failure", "failure_kind", no_wrap=True),
    Column("Reason", "reason"),
    Column("Cordoned", "cordoned", no_wrap=True),
    Column("Duration", "duration", no_wrap=True, justify="right"),
    Column("Steps", "steps"),
)


def _row(o: NodeOutcome) -> Dict[str, object]:
    return {
        "sequence": o.sequence,
        "node": o.node,
        "result": o.result.value,
        "state": o.state.value,
        "failure_kind": o.failure_kind.value if o.failure_kind else "",
        "reason": o.reason,
        "cordoned": styled("yes", "bold red") if o.cordoned else "no",
        "duration": fmt_duration(o.duration_sec),
        "steps": [f"{a.step}:{a.status}" for a in o.actions],
    }


def summary_lines(report: MaintenanceReport) -> List[str]:
    lines = [f"Run {report.run_id}: {report.status.value} "
             f"({fmt_ts(report.started_at)} -> {fmt_ts(report.finished_at)})"]
    for p in report.phases:
        line = (f"  {p.name}: {p.status.value} - {p.count(NodeResult.SUCCEEDED)} ok, "
                f"{p.count(NodeResult.FAILED)} failed, {p.count(NodeResult.SKIPPED)} skipped")
        if p.halted_reason:
            line += f" ({p.halted_reason})"
        lines.append(line)
    if report.monitoring_unavailable:
        lines.append("  monitoring: UNAVAILABLE, alerting was not paused")
    elif report.monitor and report.monitor.error:
        lines.append(f"  monitoring: {report.monitor.error}")
    if report.error:
        lines.append(f"  error: {report.error}")
    cordoned = report.left_cordoned()
    if cordoned:
        lines.append("  LEFT CORDONED: " + ", ".join(o.node for o in cordoned))
    return lines


def print_report(report: MaintenanceReport) -> None:
    for phase in report.phases:
        print_table(
            f"Phase {phase.name} ({phase.role.value}) - {phase.status.value}",
            NODE_COLUMNS,
            [_row(o) for o in phase.outcomes],
            styles=RESULT_STYLES,
            style_key="result",
        )
    console.print(styled(f"Overall status: {report.status.value}", STATUS_STYLES[report.status]))
    for line in summary_lines(report)[1:]:
        console.print(line, highlight=False)


def write_json_report(report: MaintenanceReport, output: Optional[str] = None) -> None:
    print_json_data(report.to_dict(), output)


class JsonFileSink:
    def __init__(self, path: Path):
        self.path = Path(path)

    def __call__(self, report: MaintenanceReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_json_report(report, str(self.path))
        log.info("Wrote report to %s", self.path)


def console_sink(report: MaintenanceReport) -> None:
    print_report(report)


def print_post_reboot(status: Dict[str, object]) -> None:
    """Render the result of SshHost.post_reboot_status()."""
    services = status.get("services") or {}
    print_table(
        f"Post-reboot check: {status.get('host')}",
        (Column("Service", "service", no_wrap=True), Column("State", "state", no_wrap=True)),
        [{"service": name, "state": "active" if ok else "inactive"} for name, ok in services.items()],
        styles={"active": "green", "inactive": "red"},
        style_key="state",
    )
    reboot = "recent reboot" if status.get("recent_reboot") else "no recent reboot"
    console.print(f"Uptime: {fmt_duration(status.get('uptime_sec'))} ({reboot})", highlight=False)
    console.print(f"Load average: {status.get('load')}", highlight=False)
    console.print(f"Memory usage: {status.get('memory')}", highlight=False)
    for line in status.get("disk") or []:
        console.print(f"  {line}", highlight=False)
    if status.get("passed"):
        console.print(styled("Post-reboot verification PASSED", "bold green"))
    else:
        console.print(styled("Post-reboot verification ISSUES - some services need attention", "bold yellow"))
