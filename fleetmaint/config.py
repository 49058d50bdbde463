import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .models import PhasePolicy


def _load_env_files() -> None:
    """
    Load environment variables from .env (and .env.local if present).
    - .env is the primary runtime file (kept out of version control)
    - .env.local is a template/example; also read if present to ease local dev
    Values already present in the process environment are not overridden.
    Supported format: KEY=VALUE with optional quotes; lines starting with '#' are ignored.
    """
    for fname in (".env", ".env.local"):
        p = Path(fname)
        if not p.exists():
            continue
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            logging.warning("Could not read %s: %s", p, e)
            continue
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[7:].strip()
            if "=" not in line:
                continue
            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = val


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


def _env_serial(name: str, default: str = "1"):
    raw = (os.getenv(name) or default).strip()
    return raw if raw.endswith("%") else int(raw)


# Load .env/.env.local before reading configuration values
_load_env_files()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = Path(os.getenv("LOG_FILE", "fleetmaint.log"))

# Paths for external configuration files
INVENTORY_FILE = Path(os.getenv("INVENTORY_FILE", "config/inventory.json"))
EXCLUDED_HOSTS_FILE = Path(os.getenv("EXCLUDED_HOSTS_FILE", "config/excluded_hosts.json"))
EVENTS_LOG_FILE = Path(os.getenv("EVENTS_LOG_FILE", "logs/events.jsonl"))

# Phase policy defaults (inventory entries may override per phase)
SERIAL = _env_serial("SERIAL")
TRANSIENT_RETRIES = int(os.getenv("TRANSIENT_RETRIES", "3"))
RETRY_DELAY_SEC = float(os.getenv("RETRY_DELAY_SEC", "5"))
DRAIN_TIMEOUT_SEC = int(os.getenv("DRAIN_TIMEOUT_SEC", "300"))
PATCH_TIMEOUT_SEC = int(os.getenv("PATCH_TIMEOUT_SEC", "1800"))
REBOOT_TIMEOUT_SEC = int(os.getenv("REBOOT_TIMEOUT_SEC", "600"))
UNREACHABLE_WAIT_SEC = int(os.getenv("UNREACHABLE_WAIT_SEC", "60"))
HEALTH_RETRIES = int(os.getenv("HEALTH_RETRIES", "30"))
HEALTH_DELAY_SEC = float(os.getenv("HEALTH_DELAY_SEC", "10"))
PHASE_TIMEOUT_SEC = int(os.getenv("PHASE_TIMEOUT_SEC", "0"))  # 0 = no phase budget

DIST_UPGRADE = _env_bool("DIST_UPGRADE", False)
REBOOT_ENABLED = _env_bool("REBOOT_ENABLED", True)
CLEANUP_ENABLED = _env_bool("CLEANUP_ENABLED", True)
SKIP_UP_TO_DATE = _env_bool("SKIP_UP_TO_DATE", True)
HALT_ON_FIRST_FAILURE = _env_bool("HALT_ON_FIRST_FAILURE", False)
HALT_ON_PATCH_FAILURE = _env_bool("HALT_ON_PATCH_FAILURE", False)

# Monitoring vendor (UptimeRobot v2 API)
MONITOR_PAUSE_ENABLED = _env_bool("MONITOR_PAUSE_ENABLED", False)
MONITOR_PAUSE_SEC = int(os.getenv("MONITOR_PAUSE_SEC", "3600"))
UPTIMEROBOT_API_KEY = os.getenv("UPTIMEROBOT_API_KEY", "")
UPTIMEROBOT_API_URL = os.getenv("UPTIMEROBOT_API_URL", "https://api.uptimerobot.com/v2")
MONITOR_HTTP_TIMEOUT_SEC = float(os.getenv("MONITOR_HTTP_TIMEOUT_SEC", "15"))
# Paused monitor ids + window end, so a killed run can be cleaned up by `fleetmaint resume-monitors`
MONITOR_STATE_FILE = Path(os.getenv("MONITOR_STATE_FILE", "logs/monitor_pause.json"))

# Cluster + host access
KUBECTL = os.getenv("KUBECTL", "kubectl")
KUBE_CONTEXT = os.getenv("KUBE_CONTEXT", "")
KUBECTL_REQUEST_TIMEOUT = os.getenv("KUBECTL_REQUEST_TIMEOUT", "30s")
SSH_USER = os.getenv("SSH_USER", "")
SSH_OPTIONS = os.getenv("SSH_OPTIONS", "-o StrictHostKeyChecking=accept-new")
SSH_CONNECT_TIMEOUT = int(os.getenv("SSH_CONNECT_TIMEOUT", "10"))
HOST_SERVICES = [s.strip() for s in os.getenv("HOST_SERVICES", "docker").split(",") if s.strip()]


def _read_json_list(path: Path) -> List[str]:
    try:
        if path.exists():
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, list):
                    return [str(x) for x in data]
                else:
                    logging.warning("File %s does not contain a JSON array", path)
    except json.JSONDecodeError as e:
        logging.error("JSON parse error in %s: %s", path, e)
    except OSError as e:
        logging.error("Error reading %s: %s", path, e)
    return []


# Exclusions: global list of hostnames excluded from automation (drain/patch/reboot).
# Loaded from EXCLUDED_HOSTS_FILE (JSON array of hostnames). Example:
#   ["k8s-worker-3", "docker-02"]
def get_excluded_hosts(path: Optional[Path] = None) -> set[str]:
    return set(_read_json_list(path or EXCLUDED_HOSTS_FILE))


def default_policy() -> PhasePolicy:
    return PhasePolicy(
        serial=SERIAL,
        transient_retries=TRANSIENT_RETRIES,
        retry_delay_sec=RETRY_DELAY_SEC,
        drain_timeout_sec=DRAIN_TIMEOUT_SEC,
        patch_timeout_sec=PATCH_TIMEOUT_SEC,
        reboot_timeout_sec=REBOOT_TIMEOUT_SEC,
        unreachable_wait_sec=UNREACHABLE_WAIT_SEC,
        health_retries=HEALTH_RETRIES,
        health_delay_sec=HEALTH_DELAY_SEC,
        phase_timeout_sec=PHASE_TIMEOUT_SEC,
        dist_upgrade=DIST_UPGRADE,
        reboot=REBOOT_ENABLED,
        cleanup=CLEANUP_ENABLED,
        skip_up_to_date=SKIP_UP_TO_DATE,
        halt_on_first_failure=HALT_ON_FIRST_FAILURE,
        halt_on_patch_failure=HALT_ON_PATCH_FAILURE,
    )


@dataclass(frozen=True)
class Settings:
    """Everything one run needs, resolved once and passed down explicitly."""
    policy: PhasePolicy = field(default_factory=PhasePolicy)
    inventory_file: Path = INVENTORY_FILE
    excluded_hosts_file: Path = EXCLUDED_HOSTS_FILE
    events_log_file: Optional[Path] = EVENTS_LOG_FILE
    monitor_enabled: bool = False
    monitor_pause_sec: int = 3600
    uptimerobot_api_key: str = ""
    uptimerobot_api_url: str = "https://api.uptimerobot.com/v2"
    monitor_http_timeout_sec: float = 15
    monitor_state_file: Optional[Path] = None
    kubectl: str = "kubectl"
    kube_context: str = ""
    kubectl_request_timeout: str = "30s"
    ssh_user: str = ""
    ssh_options: str = ""
    ssh_connect_timeout: int = 10
    host_services: tuple[str, ...] = ("docker",)


def load_settings() -> Settings:
    return Settings(
        policy=default_policy(),
        inventory_file=INVENTORY_FILE,
        excluded_hosts_file=EXCLUDED_HOSTS_FILE,
        events_log_file=EVENTS_LOG_FILE,
        monitor_enabled=MONITOR_PAUSE_ENABLED,
        monitor_pause_sec=MONITOR_PAUSE_SEC,
        uptimerobot_api_key=UPTIMEROBOT_API_KEY,
        uptimerobot_api_url=UPTIMEROBOT_API_URL,
        monitor_http_timeout_sec=MONITOR_HTTP_TIMEOUT_SEC,
        monitor_state_file=MONITOR_STATE_FILE,
        kubectl=KUBECTL,
        kube_context=KUBE_CONTEXT,
        kubectl_request_timeout=KUBECTL_REQUEST_TIMEOUT,
        ssh_user=SSH_USER,
        ssh_options=SSH_OPTIONS,
        ssh_connect_timeout=SSH_CONNECT_TIMEOUT,
        host_services=tuple(HOST_SERVICES),
    )
