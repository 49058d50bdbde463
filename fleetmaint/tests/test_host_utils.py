from unittest.mock import patch

import pytest

from fleetmaint.errors import PreconditionFailed, TransientIOError
from fleetmaint.host_utils import SshHost, parse_apt_summary
from fleetmaint.models import Node, NodeRole

MODULE_PATH = "fleetmaint.host_utils"

NODE = Node("docker-01", NodeRole.STANDALONE_HOST, address="10.0.0.5")


def test_parse_apt_summary():
    out = "Reading package lists...\n3 upgraded, 1 newly installed, 0 to remove and 2 not upgraded.\n"
    assert parse_apt_summary(out) == {"upgraded": 3, "installed": 1, "removed": 0}
    assert parse_apt_summary("nothing here") is None


def test_ssh_command_line():
    host = SshHost(user="ops", options="-o StrictHostKeyChecking=accept-new", connect_timeout=7)
    cmd = host._cmd(NODE, "true")
    assert cmd == [
        "ssh", "-o", "StrictHostKeyChecking=accept-new",
        "-o", "BatchMode=yes", "-o", "ConnectTimeout=7",
        "ops@10.0.0.5", "true",
    ]


def test_upgrade_reports_change():
    host = SshHost()
    out = "5 upgraded, 0 newly installed, 0 to remove and 0 not upgraded."
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(0, out, "")) as fake:
        assert host.upgrade(NODE, dist=True) is True
    assert "dist-upgrade" in fake.call_args[0][0][-1]


def test_upgrade_no_change():
    host = SshHost()
    out = "0 upgraded, 0 newly installed, 0 to remove and 0 not upgraded."
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(0, out, "")):
        assert host.upgrade(NODE) is False


def test_ssh_errors_are_classified():
    host = SshHost()
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(255, "", "Connection reset")):
        with pytest.raises(TransientIOError):
            host.update(NODE)
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(100, "", "E: Could not get lock")):
        with pytest.raises(PreconditionFailed):
            host.update(NODE)


def test_pending_changes_counts_inst_lines():
    host = SshHost()
    out = "Inst libc6 [2.35-0ubuntu3.6]\nConf libc6\nInst openssl [3.0.2]\n"
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(0, out, "")):
        assert host.pending_changes(NODE) == 2


def test_reboot_connection_drop_counts_as_issued():
    host = SshHost()
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(255, "", "closed by remote host")):
        host.reboot(NODE)
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(1, "", "Access denied")):
        with pytest.raises(PreconditionFailed):
            host.reboot(NODE)


def test_is_reachable():
    host = SshHost()
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(0, "", "")):
        assert host.is_reachable(NODE) is True
    with patch(f"{MODULE_PATH}.run_cmd_rc", return_value=(255, "", "")):
        assert host.is_reachable(NODE) is False
    with patch(f"{MODULE_PATH}.run_cmd_rc", side_effect=TransientIOError("timed out")):
        assert host.is_reachable(NODE) is False


def test_post_reboot_status():
    host = SshHost()
    replies = {
        "cut -d' ' -f1 /proc/uptime": "312.55",
        "cut -d' ' -f1-3 /proc/loadavg": "0.42 0.30 0.12",
        "free": "23.4%",
        "df": "/dev/sda1  40G  12G  26G  32% /\n",
        "systemctl is-active actions.runner.svc": "inactive",
        "systemctl is-active docker": "active",
    }

    def fake_rc(cmd, timeout=None):
        remote = cmd[-1]
        for prefix, out in replies.items():
            if remote.startswith(prefix):
                return 0 if out != "inactive" else 3, out, ""
        raise AssertionError(remote)

    with patch(f"{MODULE_PATH}.run_cmd_rc", side_effect=fake_rc):
        status = host.post_reboot_status(NODE, ["docker", "actions.runner.svc"])
    assert status["uptime_sec"] == 312.55
    assert status["recent_reboot"] is True
    assert status["services"] == {"docker": True, "actions.runner.svc": False}
    assert status["load"] == "0.42 0.30 0.12"
    assert status["memory"] == "23.4%"
    assert status["passed"] is False
