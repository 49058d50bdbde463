import logging

from ..errors import MaintenanceError
from ..job import NodeJob
from ..models import utcnow

log = logging.getLogger(__name__)


def execute(job: NodeJob) -> None:
    started = utcnow()
    policy = job.policy
    job.emit("patch", "requested", dist_upgrade=policy.dist_upgrade)
    try:
        job.call(job.host.update, job.node, timeout=policy.patch_timeout_sec)
        job.changed = job.call(job.host.upgrade, job.node, dist=policy.dist_upgrade,
                               timeout=policy.patch_timeout_sec)
    except MaintenanceError as exc:
        job.emit("patch", "failed", error=str(exc))
        if policy.halt_on_patch_failure:
            job.record("patch", "failed", str(exc), started)
            raise
        # the host may simply already be current; keep going but say so in the report
        log.warning("Patching %s failed, continuing: %s", job.node.name, exc)
        job.record("patch", "degraded", str(exc), started)
        job.degraded.append("patch_failed")
        return

    job.record("patch", "ok", "changed" if job.changed else "no changes", started)
    job.emit("patch", "applied", changed=job.changed)

    if policy.cleanup:
        _cleanup(job)


def _cleanup(job: NodeJob) -> None:
    started = utcnow()
    try:
        job.host.cleanup(job.node, timeout=job.policy.patch_timeout_sec)
    except MaintenanceError as exc:
        log.info("Cleanup on %s failed (ignored): %s", job.node.name, exc)
        job.record("cleanup", "skipped", str(exc), started)
        return
    job.record("cleanup", "ok", started_at=started)
