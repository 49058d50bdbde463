import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ExternalSystemUnavailable
from .models import utcnow

log = logging.getLogger(__name__)

# UptimeRobot monitor status codes
STATUS_PAUSED = 0
STATUS_ACTIVE = 1

PAGE_SIZE = 50


def _make_session(retries: int = 2) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"POST"}),
    )
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


class UptimeRobotMonitor:
    """
    Pause/resume every active monitor of an UptimeRobot account (v2 API).
    resume_all() only re-activates monitors this instance paused, so monitors an
    operator had paused by hand stay paused.

    UptimeRobot has no timed pause, so with a `state_path` the paused ids and the end of
    the window are written to disk as they change. A later pause_all() adopts ids left
    behind by a killed run, and resume_expired() re-activates them once the window ends.
    """

    def __init__(self, api_key: str, base_url: str = "https://api.uptimerobot.com/v2",
                 timeout: float = 15, session: Optional[requests.Session] = None,
                 state_path: Optional[Path] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or _make_session()
        self.state_path = Path(state_path) if state_path else None
        self.paused_ids: List[int] = []
        self.expires_at: Optional[datetime] = None

    def _post(self, method: str, **data: Any) -> Dict[str, Any]:
        payload = {"api_key": self.api_key, "format": "json", **data}
        try:
            resp = self.session.post(f"{self.base_url}/{method}", data=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExternalSystemUnavailable(f"UptimeRobot {method} failed: {exc}") from exc
        if body.get("stat") != "ok":
            raise ExternalSystemUnavailable(f"UptimeRobot {method} error: {body.get('error')}")
        return body

    def _monitors(self) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            body = self._post("getMonitors", offset=offset, limit=PAGE_SIZE)
            monitors = body.get("monitors") or []
            yield from monitors
            total = int((body.get("pagination") or {}).get("total", len(monitors)))
            offset += len(monitors)
            if not monitors or offset >= total:
                break

    def load_state(self) -> Optional[Dict[str, Any]]:
        if self.state_path is None or not self.state_path.exists():
            return None
        try:
            with self.state_path.open(encoding="utf-8") as f:
                data = json.load(f)
            return {
                "paused_ids": [int(i) for i in data.get("paused_ids") or []],
                "expires_at": datetime.fromisoformat(data["expires_at"]) if data.get("expires_at") else None,
            }
        except (OSError, ValueError, TypeError, AttributeError) as e:
            log.error("Unreadable monitor pause state in %s: %s", self.state_path, e)
            return None

    def _save_state(self) -> None:
        if self.state_path is None:
            return
        if not self.paused_ids:
            self.state_path.unlink(missing_ok=True)
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "paused_ids": self.paused_ids,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
        with self.state_path.open("w", encoding="utf-8") as f:
            json.dump(data, f)

    def pause_all(self, duration_sec: int) -> None:
        self.expires_at = utcnow() + timedelta(seconds=duration_sec)
        leftover = self.load_state()
        if leftover:
            log.warning("Adopting %d monitor(s) left paused by an earlier run: %s",
                        len(leftover["paused_ids"]), leftover["paused_ids"])
            self.paused_ids.extend(i for i in leftover["paused_ids"] if i not in self.paused_ids)
            self._save_state()
        active = [m for m in self._monitors() if m.get("status") != STATUS_PAUSED]
        log.info("Pausing %d UptimeRobot monitors until %s", len(active), self.expires_at.isoformat())
        for m in active:
            self._post("editMonitor", id=m["id"], status=STATUS_PAUSED)
            self.paused_ids.append(m["id"])
            self._save_state()

    def resume_all(self) -> None:
        failed: List[int] = []
        for mid in list(self.paused_ids):
            try:
                self._post("editMonitor", id=mid, status=STATUS_ACTIVE)
                self.paused_ids.remove(mid)
            except ExternalSystemUnavailable as exc:
                log.warning("Could not resume monitor %s: %s", mid, exc)
                failed.append(mid)
        self._save_state()
        if failed:
            raise ExternalSystemUnavailable(f"{len(failed)} monitor(s) still paused: {failed}")
        log.info("Resumed UptimeRobot monitors")

    def resume_expired(self, force: bool = False, now: Optional[datetime] = None) -> int:
        """
        Resume monitors recorded in the state file once their window has ended (or at once
        with `force`). Returns how many monitors were resumed.
        """
        state = self.load_state()
        if not state or not state["paused_ids"]:
            log.info("No paused monitors recorded")
            return 0
        now = now or utcnow()
        expires_at = state["expires_at"]
        if not force and expires_at is not None and now < expires_at:
            log.info("%d monitor(s) stay paused until %s", len(state["paused_ids"]), expires_at.isoformat())
            return 0
        self.paused_ids = list(state["paused_ids"])
        self.expires_at = expires_at
        count = len(self.paused_ids)
        self.resume_all()
        return count
