import argparse
import dataclasses
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import Settings, get_excluded_hosts, load_settings
from .errors import ConfigurationError, MaintenanceError
from .eventlog import EventLog
from .formatting import console
from .host_utils import SshHost
from .inventory import load_inventory
from .kube_utils import KubectlCluster
from .logging_util import setup_logging
from .models import Node, NodeRole, Readiness
from .monitor import MonitorGate, make_gate
from .monitor_utils import UptimeRobotMonitor
from .orchestrator import build_orchestrator
from .probe import probe_for
from .reporting import JsonFileSink, console_sink, print_post_reboot, write_json_report

log = logging.getLogger(__name__)


def _cluster(settings: Settings) -> KubectlCluster:
    return KubectlCluster(settings.kubectl, settings.kube_context,
                          request_timeout=settings.kubectl_request_timeout)


def _host(settings: Settings) -> SshHost:
    return SshHost(settings.ssh_user, settings.ssh_options,
                   connect_timeout=settings.ssh_connect_timeout)


def _events(settings: Settings) -> EventLog:
    return EventLog(settings.events_log_file)


def _install_abort_handler(abort: threading.Event) -> None:
    """First Ctrl-C finishes the current step then stops; a second one interrupts."""
    def handler(signum, frame):
        if abort.is_set():
            raise KeyboardInterrupt
        log.warning("Abort requested; finishing the current step. Interrupt again to stop immediately.")
        abort.set()
    signal.signal(signal.SIGINT, handler)


def _apply_overrides(settings: Settings, args) -> Settings:
    changes = {}
    if args.serial is not None:
        changes["serial"] = args.serial
    if args.halt_on_first_failure:
        changes["halt_on_first_failure"] = True
    if args.no_reboot:
        changes["reboot"] = False
    if args.dist_upgrade:
        changes["dist_upgrade"] = True
    settings = dataclasses.replace(settings, policy=dataclasses.replace(settings.policy, **changes))
    if args.inventory:
        settings = dataclasses.replace(settings, inventory_file=Path(args.inventory))
    if args.no_monitor_pause:
        settings = dataclasses.replace(settings, monitor_enabled=False)
    return settings


def cmd_run(args) -> int:
    settings = _apply_overrides(load_settings(), args)
    phases = load_inventory(settings.inventory_file, settings.policy,
                            excluded=get_excluded_hosts(settings.excluded_hosts_file),
                            only=args.phase)
    abort = threading.Event()

    if args.dry_run:
        orch = build_orchestrator(settings, None, None, MonitorGate(enabled=False), abort=abort)
        for line in orch.preview(phases):
            log.info("[DRY RUN] %s", line)
        return 0

    sinks = [console_sink] if args.json is None else []
    if args.json not in (None, "-"):
        sinks.append(JsonFileSink(Path(args.json)))
    orch = build_orchestrator(settings, _cluster(settings), _host(settings), make_gate(settings),
                              sinks=sinks, events=_events(settings), abort=abort)
    _install_abort_handler(abort)
    report = orch.run_maintenance(phases)
    if args.json == "-":
        write_json_report(report)
    return report.exit_code


def cmd_drain(args) -> int:
    settings = load_settings()
    _cluster(settings).drain(args.hostname, settings.policy.drain_timeout_sec)
    log.info("Drained %s", args.hostname)
    return 0


def cmd_uncordon(args) -> int:
    settings = load_settings()
    _cluster(settings).uncordon(args.hostname)
    log.info("Uncordoned %s", args.hostname)
    return 0


def cmd_health(args) -> int:
    settings = load_settings()
    role = NodeRole(args.role)
    probe = probe_for(role, _cluster(settings), _host(settings), settings.host_services)
    readiness = probe.is_ready(Node(name=args.hostname, role=role))
    console.print(f"{args.hostname}: {readiness.value}", highlight=False)
    return 0 if readiness is Readiness.READY else 1


def cmd_check(args) -> int:
    settings = load_settings()
    node = Node(name=args.hostname, role=NodeRole.STANDALONE_HOST)
    status = _host(settings).post_reboot_status(node, settings.host_services)
    print_post_reboot(status)
    _events(settings).emit({"step": "post_reboot_check", "action": "passed" if status["passed"] else "failed",
                            **status})
    return 0 if status["passed"] else 1


def cmd_resume_monitors(args) -> int:
    settings = load_settings()
    if not settings.uptimerobot_api_key:
        raise ConfigurationError("UPTIMEROBOT_API_KEY is not set")
    vendor = UptimeRobotMonitor(settings.uptimerobot_api_key, base_url=settings.uptimerobot_api_url,
                                timeout=settings.monitor_http_timeout_sec,
                                state_path=settings.monitor_state_file)
    count = vendor.resume_expired(force=args.force)
    if count:
        log.info("Resumed %d monitor(s)", count)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="fleetmaint",
        description="Health-gated rolling patch and reboot orchestrator",
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    # Subcommand for a full maintenance run over the inventory
    parser_run = subparsers.add_parser("run", help="Run maintenance over every phase in the inventory")
    parser_run.add_argument("--dry-run", "-n", action="store_true", help="Do not make changes; show what would be done")
    parser_run.add_argument("--inventory", help="Inventory JSON file (default: INVENTORY_FILE)")
    parser_run.add_argument("--phase", action="append", default=None, help="Only run the named phase (can be repeated)")
    parser_run.add_argument("--serial", default=None, help="Nodes per batch: a number or a percentage like 25%%")
    parser_run.add_argument("--halt-on-first-failure", action="store_true", help="Stop a phase at its first failed node")
    parser_run.add_argument("--no-reboot", action="store_true", help="Patch without rebooting")
    parser_run.add_argument("--dist-upgrade", action="store_true", help="Use apt-get dist-upgrade")
    parser_run.add_argument("--no-monitor-pause", action="store_true", help="Leave external monitoring untouched")
    parser_run.add_argument("--json", nargs="?", const="-", metavar="FILE", help="Output JSON to stdout (no FILE) or write to FILE; skips table")
    parser_run.set_defaults(func=cmd_run)

    # Single-step helpers
    parser_drain = subparsers.add_parser("drain", help="Cordon and drain one cluster node")
    parser_drain.add_argument("hostname", help="Node to drain")
    parser_drain.set_defaults(func=cmd_drain)

    parser_uncordon = subparsers.add_parser("uncordon", help="Uncordon one cluster node")
    parser_uncordon.add_argument("hostname", help="Node to uncordon")
    parser_uncordon.set_defaults(func=cmd_uncordon)

    parser_health = subparsers.add_parser("health", help="Query readiness of one node once")
    parser_health.add_argument("hostname", help="Node to check")
    parser_health.add_argument("--role", choices=[r.value for r in NodeRole], default=NodeRole.CLUSTER_MEMBER.value)
    parser_health.set_defaults(func=cmd_health)

    # Post-reboot verification: uptime, services, load, memory, disk
    parser_check = subparsers.add_parser("check", help="Post-reboot verification of a standalone host")
    parser_check.add_argument("hostname", help="Host to verify")
    parser_check.set_defaults(func=cmd_check)

    # Clean up after a run that was killed while monitoring was paused
    parser_resume = subparsers.add_parser("resume-monitors", help="Resume monitors left paused once their window has ended")
    parser_resume.add_argument("--force", action="store_true", help="Resume now even if the window has not ended")
    parser_resume.set_defaults(func=cmd_resume_monitors)

    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    setup_logging()
    try:
        return args.func(args)
    except ConfigurationError as e:
        log.error("Configuration error: %s", e)
        return 2
    except MaintenanceError as e:
        log.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
