import pytest

from fleetmaint.monitor import MonitorGate
from fleetmaint.orchestrator import MaintenanceOrchestrator

from .fakes import FakeCluster, FakeHost, FakeVendor, make_runner


@pytest.fixture
def timeline():
    return []


@pytest.fixture
def cluster(timeline):
    return FakeCluster(timeline)


@pytest.fixture
def host(timeline):
    return FakeHost(timeline)


@pytest.fixture
def vendor(timeline):
    return FakeVendor(timeline)


@pytest.fixture
def orchestrator_for(vendor):
    """Factory: orchestrator_for(cluster, host, gate=None, abort=None, **kwargs)."""
    def build(cluster, host, gate=None, abort=None, **kwargs):
        runner = make_runner(cluster, host, abort=abort)
        return MaintenanceOrchestrator(gate or MonitorGate(vendor), runner, abort=abort, **kwargs)
    return build
