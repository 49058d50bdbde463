import logging

from ..errors import MaintenanceError
from ..job import NodeJob
from ..models import utcnow

log = logging.getLogger(__name__)


def execute(job: NodeJob) -> None:
    """
    Cordon and evict workloads. Standalone hosts have nothing to drain.
    Any failure propagates: the node must not be patched while it may still take traffic.
    """
    started = utcnow()
    if not job.is_cluster_member:
        job.record("drain", "skipped", "not a cluster member", started)
        return

    job.emit("drain", "requested", timeout_sec=job.policy.drain_timeout_sec)
    # kubectl cordons before it evicts, so from here on the node counts as cordoned
    job.cordoned = True
    try:
        job.call(job.cluster.drain, job.node.name, job.policy.drain_timeout_sec)
    except MaintenanceError as exc:
        job.record("drain", "failed", str(exc), started)
        job.emit("drain", "failed", error=str(exc))
        raise
    job.record("drain", "ok", started_at=started)
    job.emit("drain", "drained")
