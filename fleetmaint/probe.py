import logging
import time
from typing import Callable, Iterable, Tuple

from .errors import ConfigurationError, MaintenanceError
from .models import Node, NodeRole, Readiness

log = logging.getLogger(__name__)


class HealthProbe:
    """Read-only readiness query for one node. Implementations never raise."""

    def is_ready(self, node: Node) -> Readiness:
        raise NotImplementedError


class ClusterProbe(HealthProbe):
    """Readiness as reported by the Kubernetes Ready condition."""

    def __init__(self, cluster):
        self.cluster = cluster

    def is_ready(self, node: Node) -> Readiness:
        try:
            return self.cluster.get_node_status(node.name)
        except (MaintenanceError, OSError) as exc:
            log.debug("Readiness query for %s failed: %s", node.name, exc)
            return Readiness.UNKNOWN


class ServiceProbe(HealthProbe):
    """Readiness of a standalone host: every listed systemd service must be active."""

    def __init__(self, host, services: Iterable[str] = ("docker",)):
        self.host = host
        self.services = tuple(services)

    def is_ready(self, node: Node) -> Readiness:
        try:
            states = self.host.services_active(node, self.services)
        except (MaintenanceError, OSError) as exc:
            log.debug("Service check on %s failed: %s", node.name, exc)
            return Readiness.UNKNOWN
        down = [svc for svc, ok in states.items() if not ok]
        if down:
            log.debug("%s: services not active: %s", node.name, ", ".join(down))
            return Readiness.NOT_READY
        return Readiness.READY


def probe_for(role: NodeRole, cluster, host, services: Iterable[str] = ("docker",)) -> HealthProbe:
    if role is NodeRole.CLUSTER_MEMBER:
        return ClusterProbe(cluster)
    if role is NodeRole.STANDALONE_HOST:
        return ServiceProbe(host, services)
    raise ConfigurationError(f"No health probe for role {role!r}")


def wait_ready(probe: HealthProbe, node: Node, retries: int = 30, delay: float = 10,
               sleep: Callable[[float], None] = time.sleep) -> Tuple[Readiness, int]:
    """
    Poll `probe` until the node reports READY or `retries` polls have been made.
    Returns (last readiness, number of polls). Never waits longer than retries * delay.
    """
    readiness = Readiness.UNKNOWN
    attempts = 0
    for attempts in range(1, max(1, retries) + 1):
        readiness = probe.is_ready(node)
        if readiness is Readiness.READY:
            log.info("%s is Ready after %d poll(s)", node.name, attempts)
            return readiness, attempts
        log.debug("%s not ready yet (%s), poll %d/%d", node.name, readiness.value, attempts, retries)
        if attempts < retries:
            sleep(delay)
    return readiness, attempts
