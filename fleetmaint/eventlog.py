import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class EventLog:
    """
    Append-only JSONL event sink, one line per step event.
    A path of None turns the sink into a no-op. Writes are serialized across
    PhaseRunner worker threads and never raise into the maintenance workflow.
    """

    def __init__(self, path: Optional[Path]):
        self.path = path
        self._lock = threading.Lock()

    def emit(self, event: dict) -> None:
        if self.path is None:
            return
        try:
            data = dict(event)
            data.setdefault("ts", _now_iso())
            line = json.dumps(data, separators=(",", ":"), sort_keys=False, default=str)
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            # Event log is an audit trail; losing a line must not stop maintenance
            log.warning("Failed to write event to %s: %s", self.path, exc)


NULL_EVENTS = EventLog(None)
