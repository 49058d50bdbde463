import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from .errors import ExternalSystemUnavailable
from .models import MonitorWindow, utcnow
from .monitor_utils import UptimeRobotMonitor

log = logging.getLogger(__name__)


class MonitorGate:
    """
    Bracket a maintenance run with an alerting pause.

    `vendor` is anything with pause_all(duration_sec) and resume_all(). A vendor outage
    is never fatal: maintenance goes ahead and the window records what happened.
    """

    def __init__(self, vendor=None, enabled: bool = True, clock: Callable = utcnow):
        self.vendor = vendor
        self.enabled = enabled and vendor is not None
        self.clock = clock

    def pause(self, duration_sec: int) -> MonitorWindow:
        window = MonitorWindow(started_at=self.clock(), duration_sec=duration_sec, enabled=self.enabled)
        if not self.enabled:
            log.info("Monitor pause disabled; alerting stays active during maintenance")
            return window
        try:
            self.vendor.pause_all(duration_sec)
            window.paused = True
            log.info("Monitoring paused until %s", window.expires_at.isoformat())
        except ExternalSystemUnavailable as exc:
            window.unavailable = True
            window.error = str(exc)
            log.warning("Monitoring vendor unavailable, continuing without pause: %s", exc)
        except Exception as exc:
            # some monitors may already be paused; resume() still runs for this window
            window.unavailable = True
            window.error = f"{type(exc).__name__}: {exc}"
            log.exception("Monitor pause failed, continuing without pause: %s", exc)
        return window

    def resume(self, window: MonitorWindow) -> None:
        if window.resumed:
            log.debug("Monitor window already released")
            return
        window.resumed = True
        if not window.enabled:
            return
        window.resume_attempts += 1
        try:
            self.vendor.resume_all()
            log.info("Monitoring resumed")
        except Exception as exc:
            # a monitoring outage must not turn finished maintenance into a failure
            window.error = str(exc)
            log.error("Failed to resume monitoring, resume it by hand: %s", exc)

    @contextmanager
    def window(self, duration_sec: int) -> Iterator[MonitorWindow]:
        window = self.pause(duration_sec)
        try:
            yield window
        finally:
            self.resume(window)


def make_gate(settings, vendor=None) -> MonitorGate:
    """Build the gate from Settings, creating the UptimeRobot client when needed."""
    if vendor is None and settings.monitor_enabled and settings.uptimerobot_api_key:
        vendor = UptimeRobotMonitor(
            settings.uptimerobot_api_key,
            base_url=settings.uptimerobot_api_url,
            timeout=settings.monitor_http_timeout_sec,
            state_path=settings.monitor_state_file,
        )
    elif settings.monitor_enabled and vendor is None:
        log.warning("MONITOR_PAUSE_ENABLED is set but UPTIMEROBOT_API_KEY is empty")
    return MonitorGate(vendor, enabled=settings.monitor_enabled)
