import logging
import math

from ..errors import MaintenanceError
from ..job import NodeJob
from ..models import utcnow

log = logging.getLogger(__name__)

UNREACHABLE_POLL_SEC = 5


def execute(job: NodeJob) -> None:
    """
    Fire-and-forget reboot: issue it, then give the host a bounded window to drop off
    the network. A host that never goes away is flagged, not failed.
    """
    started = utcnow()
    policy = job.policy
    if not policy.reboot:
        job.record("reboot", "skipped", "reboot disabled", started)
        return

    job.emit("reboot", "requested")
    try:
        job.call(job.host.reboot, job.node, timeout=policy.reboot_timeout_sec)
    except MaintenanceError as exc:
        log.warning("Reboot of %s could not be issued, continuing to health wait: %s", job.node.name, exc)
        job.degraded.append("reboot_failed")
        job.record("reboot", "degraded", str(exc), started)
        job.emit("reboot", "failed", error=str(exc))
        return

    if _wait_unreachable(job):
        job.record("reboot", "ok", "host went down", started)
        job.emit("reboot", "went_down")
        return

    log.warning("%s still reachable %ss after reboot was issued; proceeding",
                job.node.name, policy.unreachable_wait_sec)
    job.degraded.append("reboot_unconfirmed")
    job.record("reboot", "degraded", "host did not drop off within the wait budget", started)
    job.emit("reboot", "unconfirmed")


def _wait_unreachable(job: NodeJob) -> bool:
    budget = max(job.policy.unreachable_wait_sec, 0)
    polls = math.ceil(budget / UNREACHABLE_POLL_SEC) + 1
    for i in range(polls):
        if not job.host.is_reachable(job.node):
            return True
        if i < polls - 1:
            job.sleep(UNREACHABLE_POLL_SEC)
    return False
