import logging

from ..errors import HealthTimeout
from ..job import NodeJob
from ..models import Readiness, utcnow
from ..probe import wait_ready

log = logging.getLogger(__name__)


def execute(job: NodeJob) -> None:
    started = utcnow()
    policy = job.policy
    job.emit("health", "waiting", retries=policy.health_retries, delay_sec=policy.health_delay_sec)
    readiness, attempts = wait_ready(
        job.probe, job.node,
        retries=policy.health_retries,
        delay=policy.health_delay_sec,
        sleep=job.sleep,
    )
    job.readiness = readiness
    if readiness is Readiness.READY:
        job.node.last_ready_at = utcnow()
        job.record("health", "ok", f"ready after {attempts} poll(s)", started)
        job.emit("health", "pass", attempts=attempts)
        return

    # Unknown means the probe never got an answer; NotReady is an explicit no
    detail = f"{readiness.value} after {attempts} poll(s)"
    job.record("health", "failed", detail, started)
    job.emit("health", "timeout", readiness=readiness.value, attempts=attempts)
    raise HealthTimeout(f"{job.node.name} did not become Ready: {detail}", readiness, attempts)
