import time
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from renderer.core import logger


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class DiagnosticEvent:
    time: int
    event: str

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "event": self.event}


@dataclass
class Diagnostics:
    """
    Timeline and outcome of one render attempt.
    Invariant: events are append-only and their timestamps never decrease.
    Exactly one of out_file / error is set once the attempt is finished.
    """
    operation_id: Optional[str] = None
    working_directory: Optional[str] = None
    events: List[DiagnosticEvent] = field(default_factory=list)
    out_file: Optional[str] = None
    error: Optional[str] = None
    finished_at: Optional[int] = None
    on_event: Optional[Callable[[DiagnosticEvent], None]] = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, event: str) -> DiagnosticEvent:
        """Append an event. Wall-clock steps backwards are clamped to the last timestamp."""
        with self._lock:
            stamp = now_ms()
            if self.events and stamp < self.events[-1].time:
                stamp = self.events[-1].time
            entry = DiagnosticEvent(time=stamp, event=event)
            self.events.append(entry)
        if self.on_event is not None:
            try:
                self.on_event(entry)
            except Exception as e:
                logger.warning(f"Diagnostics listener failed on {event}: {e}")
        return entry

    def finish(self) -> None:
        with self._lock:
            stamp = now_ms()
            if self.events and stamp < self.events[-1].time:
                stamp = self.events[-1].time
            self.finished_at = stamp

    @property
    def succeeded(self) -> bool:
        return self.out_file is not None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"operationId": self.operation_id}
        if self.working_directory is not None:
            data["workingDirectory"] = self.working_directory
        data["events"] = [e.to_dict() for e in self.events]
        if self.out_file is not None:
            data["outFile"] = self.out_file
        if self.error is not None:
            data["error"] = self.error
        data["finishedAt"] = self.finished_at
        return data
