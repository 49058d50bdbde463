import json

import pytest

from fleetmaint.errors import ConfigurationError
from fleetmaint.inventory import load_inventory, phases_from_dict
from fleetmaint.models import NodeRole, PhasePolicy

INVENTORY = {
    "phases": [
        {
            "name": "kubernetes",
            "role": "cluster-member",
            "hosts": ["k8s-1", {"name": "k8s-2", "address": "10.0.0.12"}, "k8s-3"],
            "health_retries": 40,
            "halt_on_first_failure": True,
        },
        {"name": "docker", "role": "standalone-host", "hosts": ["docker-01"]},
    ]
}


def test_phases_from_dict_applies_overrides():
    defaults = PhasePolicy(health_retries=30)
    k8s, docker = phases_from_dict(INVENTORY, defaults)
    assert k8s.role is NodeRole.CLUSTER_MEMBER
    assert [n.name for n in k8s.nodes] == ["k8s-1", "k8s-2", "k8s-3"]
    assert k8s.nodes[1].target == "10.0.0.12"
    assert k8s.policy.health_retries == 40
    assert k8s.policy.halt_on_first_failure is True
    assert docker.policy == defaults
    assert docker.nodes[0].role is NodeRole.STANDALONE_HOST


def test_excluded_hosts_are_dropped():
    k8s, _ = phases_from_dict(INVENTORY, PhasePolicy(), excluded={"k8s-2"})
    assert [n.name for n in k8s.nodes] == ["k8s-1", "k8s-3"]


@pytest.mark.parametrize("data", [
    {},
    {"phases": "nope"},
    {"phases": [["k8s-1"]]},
    {"phases": [{"name": "x", "role": "database", "hosts": ["a"]}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "serail": 2}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": [{"address": "10.0.0.1"}]}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "health_retries": "40"}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "halt_on_first_failure": "yes"}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "drain_timeout_sec": True}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "serial": [2]}]},
    {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"], "health_delay_sec": None}]},
])
def test_invalid_inventory(data):
    with pytest.raises(ConfigurationError):
        phases_from_dict(data, PhasePolicy())


def test_load_inventory_from_file(tmp_path):
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(INVENTORY))
    phases = load_inventory(path, PhasePolicy(), only=["docker"])
    assert [p.name for p in phases] == ["docker"]
    with pytest.raises(ConfigurationError):
        load_inventory(path, PhasePolicy(), only=["nope"])


def test_load_inventory_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_inventory(tmp_path / "missing.json", PhasePolicy())
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigurationError):
        load_inventory(bad, PhasePolicy())


def test_override_types_accepted():
    data = {"phases": [{"name": "x", "role": "cluster-member", "hosts": ["a"],
                        "serial": "50%", "health_delay_sec": 5, "retry_delay_sec": 0.5, "reboot": False}]}
    (phase,) = phases_from_dict(data, PhasePolicy())
    assert phase.policy.serial == "50%"
    assert phase.policy.health_delay_sec == 5
    assert phase.policy.reboot is False
