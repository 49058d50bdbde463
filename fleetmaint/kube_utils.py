import json
import logging
from typing import Any, Dict, List, Optional

from .errors import CommandFailed, PreconditionFailed, TransientIOError
from .models import Readiness
from .utils import run_cmd

log = logging.getLogger(__name__)

# kubectl stderr fragments that mean "could not talk to the API server" rather than
# "the API server refused the request"
_TRANSIENT_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "context deadline exceeded",
    "the server is currently unable to handle the request",
    "etcdserver: request timed out",
    "net/http: request canceled",
)


def classify_kubectl_error(exc: CommandFailed):
    """Map a failed kubectl invocation onto the maintenance error taxonomy."""
    text = (exc.stderr or "").lower()
    if any(marker in text for marker in _TRANSIENT_MARKERS):
        return TransientIOError(exc.stderr)
    return PreconditionFailed(exc.stderr or f"kubectl exited with {exc.returncode}")


def parse_ready_condition(node_json: Dict[str, Any]) -> Readiness:
    """
    Return the readiness encoded in a Node object's status.conditions.
    Ready=True -> READY, Ready=False -> NOT_READY, Ready=Unknown or missing -> UNKNOWN.
    """
    conditions = ((node_json or {}).get("status") or {}).get("conditions") or []
    for cond in conditions:
        if cond.get("type") != "Ready":
            continue
        status = str(cond.get("status", "")).lower()
        if status == "true":
            return Readiness.READY
        if status == "false":
            return Readiness.NOT_READY
        return Readiness.UNKNOWN
    return Readiness.UNKNOWN


class KubectlCluster:
    """Cluster control through the kubectl CLI: drain, uncordon, node status."""

    def __init__(self, kubectl: str = "kubectl", context: str = "", request_timeout: str = "30s",
                 call_timeout: float = 60):
        self.kubectl = kubectl
        self.context = context
        self.request_timeout = request_timeout
        self.call_timeout = call_timeout

    def _base(self) -> List[str]:
        cmd = [self.kubectl]
        if self.context:
            cmd += ["--context", self.context]
        cmd += [f"--request-timeout={self.request_timeout}"]
        return cmd

    def _run(self, args: List[str], timeout: Optional[float] = None) -> str:
        try:
            return run_cmd(self._base() + args, timeout=timeout or self.call_timeout)
        except CommandFailed as exc:
            raise classify_kubectl_error(exc) from exc

    def drain(self, name: str, timeout_sec: int) -> None:
        """
        Cordon and evict workloads from `name`. kubectl enforces timeout_sec on the
        eviction itself; the process gets a little headroom on top of that.
        """
        log.info("Draining %s (timeout=%ss)", name, timeout_sec)
        self._run([
            "drain", name,
            "--ignore-daemonsets",
            "--delete-emptydir-data",
            f"--timeout={timeout_sec}s",
        ], timeout=timeout_sec + 30)
        log.info("Drained %s", name)

    def uncordon(self, name: str) -> None:
        self._run(["uncordon", name])
        log.info("Uncordoned %s", name)

    def get_node(self, name: str) -> Dict[str, Any]:
        out = self._run(["get", "node", name, "-o", "json"])
        try:
            return json.loads(out)
        except json.JSONDecodeError as exc:
            raise TransientIOError(f"Unparseable node JSON for {name}") from exc

    def get_node_status(self, name: str) -> Readiness:
        return parse_ready_condition(self.get_node(name))

    def is_cordoned(self, name: str) -> bool:
        spec = self.get_node(name).get("spec") or {}
        return bool(spec.get("unschedulable"))
