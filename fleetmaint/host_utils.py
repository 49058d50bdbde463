import logging
import re
import shlex
from typing import Dict, Iterable, List, Optional

from .errors import CommandFailed, PreconditionFailed, TransientIOError
from .models import Node
from .utils import run_cmd_rc

log = logging.getLogger(__name__)

# ssh returns 255 when the connection itself failed or was dropped
SSH_CONNECTION_ERROR = 255

APT_ENV = "sudo DEBIAN_FRONTEND=noninteractive"
RECENT_REBOOT_SEC = 1800

_UPGRADE_SUMMARY = re.compile(
    r"(\d+)\s+upgraded,\s+(\d+)\s+newly installed,\s+(\d+)\s+to remove"
)


def parse_apt_summary(output: str) -> Optional[Dict[str, int]]:
    """
    Parse the "N upgraded, M newly installed, K to remove" line apt prints after an upgrade.
    Returns None when the line is absent.
    """
    m = _UPGRADE_SUMMARY.search(output or "")
    if not m:
        return None
    return {"upgraded": int(m.group(1)), "installed": int(m.group(2)), "removed": int(m.group(3))}


class SshHost:
    """
    Package management, reboot and liveness for one host over SSH (Debian/Ubuntu hosts).
    Credentials come from the SSH agent/config; nothing here fetches secrets.
    """

    def __init__(self, user: str = "", options: str = "", connect_timeout: int = 10,
                 command_timeout: float = 120):
        self.user = user
        self.options = shlex.split(options) if options else []
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    def _dest(self, node: Node) -> str:
        return f"{self.user}@{node.target}" if self.user else node.target

    def _cmd(self, node: Node, remote: str) -> List[str]:
        return [
            "ssh", *self.options,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            self._dest(node), remote,
        ]

    def _ssh_rc(self, node: Node, remote: str, timeout: Optional[float] = None) -> tuple[int, str, str]:
        return run_cmd_rc(self._cmd(node, remote), timeout=timeout or self.command_timeout)

    def _ssh(self, node: Node, remote: str, timeout: Optional[float] = None) -> str:
        rc, out, err = self._ssh_rc(node, remote, timeout)
        if rc == SSH_CONNECTION_ERROR:
            raise TransientIOError(f"ssh to {node.target} failed: {err}")
        if rc:
            log.error("Remote command failed on %s (%s): %s", node.name, rc, err)
            raise PreconditionFailed(
                str(CommandFailed(self._cmd(node, remote), rc, err, out))
            )
        return out

    # -- package management -------------------------------------------------

    def update(self, node: Node, timeout: Optional[float] = None) -> None:
        self._ssh(node, f"{APT_ENV} apt-get update -q", timeout)
        log.info("Refreshed package lists on %s", node.name)

    def upgrade(self, node: Node, dist: bool = False, timeout: Optional[float] = None) -> bool:
        """Run apt upgrade (or dist-upgrade) and return True when anything changed."""
        verb = "dist-upgrade" if dist else "upgrade"
        out = self._ssh(
            node,
            f"{APT_ENV} apt-get -y -q -o Dpkg::Options::=--force-confold {verb}",
            timeout,
        )
        summary = parse_apt_summary(out)
        changed = bool(summary and any(summary.values()))
        log.info("%s on %s: %s", verb, node.name, summary or "no summary")
        return changed

    def pending_changes(self, node: Node, dist: bool = False, timeout: Optional[float] = None) -> int:
        """Count packages an upgrade would touch (simulated, no changes made)."""
        verb = "dist-upgrade" if dist else "upgrade"
        out = self._ssh(node, f"apt-get -s -q {verb}", timeout)
        return sum(1 for line in out.splitlines() if line.startswith("Inst "))

    def reboot_required(self, node: Node, timeout: Optional[float] = None) -> bool:
        out = self._ssh(
            node, "test -f /var/run/reboot-required && echo yes || echo no", timeout
        )
        return out.strip() == "yes"

    def cleanup(self, node: Node, timeout: Optional[float] = None) -> None:
        self._ssh(
            node,
            f"{APT_ENV} apt-get -y -q autoremove && sudo apt-get -q autoclean"
            " && sudo journalctl --vacuum-time=14d",
            timeout,
        )

    # -- reboot + liveness -------------------------------------------------

    def reboot(self, node: Node, timeout: Optional[float] = None) -> None:
        """
        Issue a reboot and return without waiting for the host.
        The connection is expected to drop, so rc 255 counts as "reboot issued".
        """
        rc, _, err = self._ssh_rc(node, "sudo systemctl reboot", timeout)
        if rc in (0, SSH_CONNECTION_ERROR):
            log.info("Reboot issued on %s (rc=%s)", node.name, rc)
            return
        raise PreconditionFailed(f"reboot rejected on {node.name}: {err}")

    def is_reachable(self, node: Node, timeout: Optional[float] = None) -> bool:
        try:
            rc, _, _ = self._ssh_rc(node, "true", timeout or self.connect_timeout + 5)
        except TransientIOError:
            return False
        return rc == 0

    def services_active(self, node: Node, services: Iterable[str],
                        timeout: Optional[float] = None) -> Dict[str, bool]:
        result: Dict[str, bool] = {}
        for svc in services:
            rc, out, err = self._ssh_rc(node, f"systemctl is-active {shlex.quote(svc)}", timeout)
            if rc == SSH_CONNECTION_ERROR:
                raise TransientIOError(f"ssh to {node.target} failed: {err}")
            result[svc] = out.strip() == "active"
        return result

    def post_reboot_status(self, node: Node, services: Iterable[str]) -> Dict[str, object]:
        """
        Gather the post-reboot verification facts for one host: uptime and whether the
        boot is recent, service states, load average, memory and disk usage.
        """
        uptime_sec = float(self._ssh(node, "cut -d' ' -f1 /proc/uptime") or 0)
        load = self._ssh(node, "cut -d' ' -f1-3 /proc/loadavg")
        mem = self._ssh(node, "free | awk '/Mem/ {printf \"%.1f%%\", $3/$2 * 100.0}'")
        disk = self._ssh(node, "df -h / /tmp 2>/dev/null | tail -n +2")
        services_state = self.services_active(node, services)
        return {
            "host": node.name,
            "uptime_sec": uptime_sec,
            "recent_reboot": uptime_sec < RECENT_REBOOT_SEC,
            "services": services_state,
            "load": load,
            "memory": mem,
            "disk": [line for line in disk.splitlines() if line.strip()],
            "passed": all(services_state.values()),
        }
