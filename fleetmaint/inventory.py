import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union, get_args, get_origin

from .errors import ConfigurationError
from .models import Node, NodeRole, Phase, PhasePolicy

log = logging.getLogger(__name__)


def _accepted(tp) -> tuple:
    types = get_args(tp) if get_origin(tp) is Union else (tp,)
    if float in types:
        types += (int,)
    return tuple(types)


# PhasePolicy field -> JSON value types allowed in an inventory override
POLICY_TYPES = {f.name: _accepted(f.type) for f in dataclasses.fields(PhasePolicy)}


def _node(entry: Any, role: NodeRole, phase: str) -> Node:
    if isinstance(entry, str):
        return Node(name=entry, role=role)
    if isinstance(entry, dict) and entry.get("name"):
        return Node(name=str(entry["name"]), role=role, address=entry.get("address"))
    raise ConfigurationError(f"Phase {phase!r}: invalid host entry {entry!r}")


def _check_type(phase: str, key: str, value: Any) -> None:
    accepted = POLICY_TYPES[key]
    # bool is an int subclass; only bool fields take true/false
    if (isinstance(value, bool) and bool not in accepted) or not isinstance(value, accepted):
        expected = " or ".join(t.__name__ for t in accepted)
        raise ConfigurationError(f"Phase {phase!r}: {key} must be {expected}, got {value!r}")


def _role(value: Any, phase: str) -> NodeRole:
    try:
        return NodeRole(value)
    except ValueError:
        allowed = ", ".join(r.value for r in NodeRole)
        raise ConfigurationError(f"Phase {phase!r}: unknown role {value!r} (expected one of {allowed})") from None


def phases_from_dict(data: Dict[str, Any], defaults: PhasePolicy,
                     excluded: Iterable[str] = ()) -> List[Phase]:
    """
    Build phases from an inventory document:

        {"phases": [
            {"name": "kubernetes", "role": "cluster-member",
             "hosts": ["k8s-1", {"name": "k8s-2", "address": "10.0.0.12"}],
             "serial": 1, "health_retries": 40},
            {"name": "docker", "role": "standalone-host", "hosts": ["docker-01"]}
        ]}

    Keys other than name/role/hosts override the matching PhasePolicy field for that phase.
    Hosts listed in `excluded` are dropped.
    """
    excluded = set(excluded)
    raw_phases = data.get("phases") if isinstance(data, dict) else None
    if not isinstance(raw_phases, list):
        raise ConfigurationError("Inventory must contain a 'phases' list")

    phases: List[Phase] = []
    for idx, raw in enumerate(raw_phases, start=1):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Phase #{idx} is not an object")
        name = str(raw.get("name") or f"phase-{idx}")
        role = _role(raw.get("role"), name)
        overrides = {k: v for k, v in raw.items() if k not in ("name", "role", "hosts")}
        unknown = set(overrides) - set(POLICY_TYPES)
        if unknown:
            raise ConfigurationError(f"Phase {name!r}: unknown settings {sorted(unknown)}")
        for key, value in overrides.items():
            _check_type(name, key, value)
        policy = dataclasses.replace(defaults, **overrides)

        nodes = []
        for entry in raw.get("hosts") or []:
            node = _node(entry, role, name)
            if node.name in excluded:
                log.info("Excluding %s from phase %s by config; skipping.", node.name, name)
                continue
            nodes.append(node)
        phases.append(Phase(name=name, role=role, nodes=tuple(nodes), policy=policy))
    return phases


def load_inventory(path: Path, defaults: PhasePolicy, excluded: Iterable[str] = (),
                   only: Optional[Iterable[str]] = None) -> List[Phase]:
    try:
        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Inventory file {path} does not exist") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"JSON parse error in {path}: {e}") from e
    phases = phases_from_dict(data, defaults, excluded)
    if only:
        wanted = list(only)
        missing = set(wanted) - {p.name for p in phases}
        if missing:
            raise ConfigurationError(f"Unknown phase(s): {sorted(missing)}")
        phases = [p for p in phases if p.name in wanted]
    log.debug("Loaded %d phase(s) from %s", len(phases), path)
    return phases
