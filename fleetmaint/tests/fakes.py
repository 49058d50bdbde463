"""
Fake collaborators for the maintenance workflow.

Every mutating call (drain, patch, reboot, uncordon, monitor pause/resume) is appended
to one shared timeline list as (operation, target), so tests can assert on ordering
across nodes and phases without touching kubectl, ssh or the network.
"""
from fleetmaint.agent import NodeAgent
from fleetmaint.errors import ExternalSystemUnavailable
from fleetmaint.models import Node, NodeRole, Phase, PhasePolicy, Readiness
from fleetmaint.probe import probe_for
from fleetmaint.runner import PhaseRunner


def no_sleep(_seconds):
    return None


class _Failures:
    """failures[(op, name)] is an exception (always raised) or a list (raised once each, in order)."""

    def __init__(self, timeline, failures=None):
        self.timeline = timeline
        self.failures = dict(failures or {})

    def _check(self, op, name):
        err = self.failures.get((op, name))
        if isinstance(err, list):
            if err:
                raise err.pop(0)
            return
        if err is not None:
            raise err


class FakeCluster(_Failures):
    def __init__(self, timeline, failures=None, readiness=None):
        super().__init__(timeline, failures)
        self.readiness = dict(readiness or {})
        self.cordoned = set()

    def drain(self, name, timeout_sec):
        self.timeline.append(("drain", name))
        self.cordoned.add(name)
        self._check("drain", name)

    def uncordon(self, name):
        self.timeline.append(("uncordon", name))
        self._check("uncordon", name)
        self.cordoned.discard(name)

    def get_node_status(self, name):
        self._check("status", name)
        return self.readiness.get(name, Readiness.READY)

    def is_cordoned(self, name):
        return name in self.cordoned


class FakeHost(_Failures):
    def __init__(self, timeline, failures=None, pending=3, stays_up=(), down_services=()):
        super().__init__(timeline, failures)
        self.default_pending = pending
        self.pending = {}
        self.reboot_pending = set()
        self.stays_up = set(stays_up)
        self.down_services = set(down_services)

    def update(self, node, timeout=None):
        self.timeline.append(("update", node.name))
        self._check("update", node.name)

    def upgrade(self, node, dist=False, timeout=None):
        self.timeline.append(("upgrade", node.name))
        self._check("upgrade", node.name)
        self.pending[node.name] = 0
        return True

    def pending_changes(self, node, dist=False, timeout=None):
        self._check("pending", node.name)
        return self.pending.get(node.name, self.default_pending)

    def reboot_required(self, node, timeout=None):
        return node.name in self.reboot_pending

    def cleanup(self, node, timeout=None):
        self.timeline.append(("cleanup", node.name))
        self._check("cleanup", node.name)

    def reboot(self, node, timeout=None):
        self.timeline.append(("reboot", node.name))
        self._check("reboot", node.name)
        self.reboot_pending.discard(node.name)

    def is_reachable(self, node, timeout=None):
        return node.name in self.stays_up

    def services_active(self, node, services, timeout=None):
        self._check("services", node.name)
        return {svc: node.name not in self.down_services for svc in services}


class FakeVendor:
    def __init__(self, timeline, fail_pause=False, fail_resume=False):
        self.timeline = timeline
        self.fail_pause = fail_pause
        self.fail_resume = fail_resume
        self.pauses = 0
        self.resumes = 0

    def pause_all(self, duration_sec):
        self.pauses += 1
        self.timeline.append(("pause", duration_sec))
        if self.fail_pause:
            raise ExternalSystemUnavailable("uptimerobot unreachable")

    def resume_all(self):
        self.resumes += 1
        self.timeline.append(("resume", None))
        if self.fail_resume:
            raise ExternalSystemUnavailable("uptimerobot unreachable")


def fast_policy(**overrides):
    values = dict(retry_delay_sec=0, health_delay_sec=0, health_retries=3, unreachable_wait_sec=0)
    values.update(overrides)
    return PhasePolicy(**values)


def make_phase(name, role, names, **policy):
    return Phase(name=name, role=role, nodes=[Node(n, role) for n in names], policy=fast_policy(**policy))


def cluster_phase(names=("k8s-1", "k8s-2", "k8s-3"), name="kubernetes", **policy):
    return make_phase(name, NodeRole.CLUSTER_MEMBER, names, **policy)


def host_phase(names=("docker-1",), name="docker", **policy):
    return make_phase(name, NodeRole.STANDALONE_HOST, names, **policy)


def make_agent(phase, cluster, host, probe=None, abort=None):
    probe = probe or probe_for(phase.role, cluster, host, ("docker",))
    return NodeAgent(phase.name, phase.policy, cluster, host, probe, abort=abort, sleep=no_sleep)


def make_runner(cluster, host, abort=None, monotonic=None):
    kwargs = {"abort": abort}
    if monotonic is not None:
        kwargs["monotonic"] = monotonic
    return PhaseRunner(lambda phase: make_agent(phase, cluster, host, abort=abort), **kwargs)


def ops(timeline, *names):
    """Timeline entries whose operation is one of `names`."""
    return [entry for entry in timeline if entry[0] in names]
