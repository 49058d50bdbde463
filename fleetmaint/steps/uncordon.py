import logging

from ..errors import MaintenanceError
from ..job import NodeJob
from ..models import utcnow

log = logging.getLogger(__name__)


def execute(job: NodeJob) -> None:
    started = utcnow()
    if not job.is_cluster_member:
        job.record("uncordon", "skipped", "not a cluster member", started)
        return

    job.emit("uncordon", "requested")
    try:
        job.call(job.cluster.uncordon, job.node.name)
    except MaintenanceError as exc:
        log.error("CAPACITY LOSS: %s is healthy but stays cordoned, uncordon failed: %s",
                  job.node.name, exc)
        job.record("uncordon", "failed", str(exc), started)
        job.emit("uncordon", "failed", error=str(exc))
        raise
    job.cordoned = False
    job.record("uncordon", "ok", started_at=started)
    job.emit("uncordon", "uncordoned")
