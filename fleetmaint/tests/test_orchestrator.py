import threading

import pytest

from fleetmaint.errors import ConfigurationError
from fleetmaint.models import Node, NodeResult, NodeRole, NodeState, Phase, Readiness, RunStatus
from fleetmaint.monitor import MonitorGate
from fleetmaint.orchestrator import MaintenanceOrchestrator, validate_phases
from fleetmaint.runner import PhaseRunner

from .fakes import FakeCluster, FakeHost, FakeVendor, cluster_phase, fast_policy, host_phase, make_agent, ops


def _phases():
    return [cluster_phase(), host_phase(["docker-1", "docker-2"])]


def test_clean_run_brackets_maintenance_with_monitor_window(timeline, cluster, host, vendor, orchestrator_for):
    report = orchestrator_for(cluster, host).run_maintenance(_phases())
    assert report.status is RunStatus.CLEAN
    assert report.exit_code == 0
    assert timeline[0][0] == "pause"
    assert timeline[-1] == ("resume", None)
    assert vendor.pauses == 1 and vendor.resumes == 1
    # cluster members are all done before the first standalone host is touched
    names = [t for op, t in timeline if op not in ("pause", "resume")]
    assert names.index("docker-1") > max(i for i, n in enumerate(names) if n.startswith("k8s-"))
    assert [p.name for p in report.phases] == ["kubernetes", "docker"]


def test_node_failure_still_resumes_monitoring(timeline, host, vendor, orchestrator_for):
    cluster = FakeCluster(timeline, readiness={"k8s-2": Readiness.NOT_READY})
    report = orchestrator_for(cluster, host).run_maintenance(_phases())
    assert report.status is RunStatus.DEGRADED
    assert report.exit_code == 1
    assert [o.node for o in report.left_cordoned()] == ["k8s-2"]
    assert vendor.resumes == 1


def test_monitoring_unavailable_does_not_change_status(timeline, cluster, host, orchestrator_for):
    vendor = FakeVendor(timeline, fail_pause=True)
    report = orchestrator_for(cluster, host, gate=MonitorGate(vendor)).run_maintenance(_phases())
    assert report.monitoring_unavailable is True
    assert report.status is RunStatus.CLEAN
    assert len(report.outcomes) == 5
    assert all(o.result is NodeResult.SUCCEEDED for o in report.outcomes)


def test_halt_on_first_failure_fails_run_and_skips_later_phases(timeline, host, vendor, orchestrator_for):
    cluster = FakeCluster(timeline, readiness={"k8s-1": Readiness.NOT_READY})
    phases = [cluster_phase(halt_on_first_failure=True), host_phase()]
    report = orchestrator_for(cluster, host).run_maintenance(phases)
    assert report.status is RunStatus.FAILED
    assert report.exit_code == 2
    k8s, docker = report.phases
    assert [o.result for o in k8s.outcomes] == [NodeResult.FAILED, NodeResult.SKIPPED, NodeResult.SKIPPED]
    assert all(o.result is NodeResult.SKIPPED for o in docker.outcomes)
    assert ops(timeline, "update") == [("update", "k8s-1")]
    assert vendor.resumes == 1


def test_crash_mid_phase_resumes_monitoring_and_reports_partial_outcomes(timeline, host, vendor):
    class ExplodingCluster(FakeCluster):
        def drain(self, name, timeout_sec):
            super().drain(name, timeout_sec)
            if name == "k8s-2":
                raise KeyError("bug in collaborator")

    cluster = ExplodingCluster(timeline)
    runner = PhaseRunner(lambda phase: make_agent(phase, cluster, host))
    orch = MaintenanceOrchestrator(MonitorGate(vendor), runner)
    report = orch.run_maintenance(_phases())

    assert vendor.resumes == 1
    assert timeline[-1] == ("resume", None)
    assert report.status is RunStatus.FAILED
    assert "KeyError" in report.error
    k8s, docker = report.phases
    assert [o.result for o in k8s.outcomes] == [NodeResult.SUCCEEDED, NodeResult.FAILED, NodeResult.SKIPPED]
    assert k8s.outcomes[1].cordoned is True
    assert all(o.result is NodeResult.SKIPPED for o in docker.outcomes)


def test_resume_failure_does_not_change_status(timeline, cluster, host, orchestrator_for):
    vendor = FakeVendor(timeline, fail_resume=True)
    report = orchestrator_for(cluster, host, gate=MonitorGate(vendor)).run_maintenance(_phases())
    assert report.status is RunStatus.CLEAN
    assert report.monitor.resumed and report.monitor.error
    assert vendor.resumes == 1


def test_configuration_error_touches_nothing(timeline, cluster, host, vendor, orchestrator_for):
    phases = [host_phase(), cluster_phase()]
    with pytest.raises(ConfigurationError):
        orchestrator_for(cluster, host).run_maintenance(phases)
    assert timeline == []
    assert vendor.pauses == 0 and vendor.resumes == 0


def test_abort_before_second_phase(timeline, host, vendor):
    abort = threading.Event()

    class AbortAfterLast(FakeCluster):
        def uncordon(self, name):
            super().uncordon(name)
            if name == "k8s-3":
                abort.set()

    cluster = AbortAfterLast(timeline)
    runner = PhaseRunner(lambda phase: make_agent(phase, cluster, host, abort=abort), abort=abort)
    report = MaintenanceOrchestrator(MonitorGate(vendor), runner, abort=abort).run_maintenance(_phases())
    assert report.aborted is True
    assert report.status is RunStatus.FAILED
    assert all(o.result is NodeResult.SKIPPED for o in report.phases[1].outcomes)
    assert vendor.resumes == 1


def test_rerun_after_success_is_a_no_op(timeline, cluster, host, orchestrator_for):
    orchestrator_for(cluster, host).run_maintenance(_phases())
    timeline.clear()
    report = orchestrator_for(cluster, host).run_maintenance(_phases())
    assert ops(timeline, "drain", "update", "upgrade", "cleanup", "reboot", "uncordon") == []
    assert report.status is RunStatus.CLEAN
    assert all(o.reason == "already up to date" for o in report.outcomes)


def test_sinks_receive_report_and_failures_are_contained(cluster, host, orchestrator_for):
    received = []

    def broken(report):
        raise OSError("disk full")

    report = orchestrator_for(cluster, host, sinks=[broken, received.append]).run_maintenance(_phases())
    assert received == [report]


@pytest.mark.parametrize("phases", [
    [],
    [cluster_phase(name="a"), cluster_phase(["k8s-9"], name="a")],
    [Phase("empty", NodeRole.CLUSTER_MEMBER, ())],
    [host_phase(), cluster_phase()],
    [cluster_phase(serial=0)],
    [Phase("mixed", NodeRole.CLUSTER_MEMBER, [Node("docker-1", NodeRole.STANDALONE_HOST)], fast_policy())],
    [cluster_phase(["k8s-1"], name="a"), cluster_phase(["k8s-1"], name="b")],
])
def test_validate_phases_rejects(phases):
    with pytest.raises(ConfigurationError):
        validate_phases(phases)


def test_validate_phases_rejects_non_pending_node():
    phase = cluster_phase(["k8s-1"])
    phase.nodes[0].state = NodeState.DONE
    with pytest.raises(ConfigurationError):
        validate_phases([phase])


def test_preview_lists_every_node_without_side_effects(timeline, cluster, host, vendor, orchestrator_for):
    lines = orchestrator_for(cluster, host).preview(_phases())
    assert timeline == []
    assert lines[0].startswith("Phase kubernetes (cluster-member): 3 node(s)")
    assert "drain" in lines[1] and "uncordon" in lines[1]
    assert lines[4].startswith("Phase docker")
    assert "drain" not in lines[5]


def test_unexpected_vendor_error_on_pause_is_not_fatal(timeline, cluster, host, orchestrator_for):
    class BrokenVendor(FakeVendor):
        def pause_all(self, duration_sec):
            super().pause_all(duration_sec)
            raise KeyError("id")

    vendor = BrokenVendor(timeline)
    report = orchestrator_for(cluster, host, gate=MonitorGate(vendor)).run_maintenance(_phases())
    assert report.monitoring_unavailable is True
    assert report.status is RunStatus.CLEAN
    assert vendor.resumes == 1
    assert timeline[-1] == ("resume", None)


def test_crash_in_concurrent_batch_keeps_finished_outcomes(timeline, host, vendor):
    class ExplodingCluster(FakeCluster):
        def drain(self, name, timeout_sec):
            super().drain(name, timeout_sec)
            if name == "k8s-2":
                raise KeyError("bug in collaborator")

    cluster = ExplodingCluster(timeline)
    runner = PhaseRunner(lambda phase: make_agent(phase, cluster, host))
    report = MaintenanceOrchestrator(MonitorGate(vendor), runner).run_maintenance(
        [cluster_phase(serial=3), host_phase()])

    assert report.status is RunStatus.FAILED
    k8s, docker = report.phases
    results = {o.node: o for o in k8s.outcomes}
    assert results["k8s-1"].result is NodeResult.SUCCEEDED
    assert results["k8s-1"].state is NodeState.DONE
    assert results["k8s-3"].result is NodeResult.SUCCEEDED
    assert results["k8s-2"].result is NodeResult.FAILED
    assert results["k8s-2"].cordoned is True
    assert [o.node for o in report.left_cordoned()] == ["k8s-2"]
    assert [o.sequence for o in k8s.outcomes] == [1, 2, 3]
    assert all(o.result is NodeResult.SKIPPED for o in docker.outcomes)
    assert vendor.resumes == 1


def test_abort_after_last_node_keeps_run_clean(timeline, host, vendor):
    abort = threading.Event()

    class AbortAfterLast(FakeCluster):
        def uncordon(self, name):
            super().uncordon(name)
            if name == "k8s-3":
                abort.set()

    cluster = AbortAfterLast(timeline)
    runner = PhaseRunner(lambda phase: make_agent(phase, cluster, host, abort=abort), abort=abort)
    report = MaintenanceOrchestrator(MonitorGate(vendor), runner, abort=abort).run_maintenance([cluster_phase()])
    assert report.aborted is False
    assert report.status is RunStatus.CLEAN
    assert all(o.result is NodeResult.SUCCEEDED for o in report.outcomes)
