"""NDJSON event stream for chunking runs.

Each line is one event in the canonical schema (ts, level, stage, rid, op,
status, counts, ...). Engine code reports through ``emit_event`` without
holding an emitter; the CLI opens an ``EventEmitter`` for the run.
"""

import json
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from ..core.logging import log


class EventLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class EventStatus(str, Enum):
    START = "START"
    OK = "OK"
    END = "END"
    FAIL = "FAIL"


# Checked in order: an op naming a failure wins over one naming completion
_STATUS_BY_KEYWORD = (
    (("error", "fail"), EventStatus.FAIL),
    (("start", "begin"), EventStatus.START),
    (("complete", "done", "end"), EventStatus.END),
)

_COUNT_KEYS = ("docs", "chunks", "tokens")


def infer_status(op: str) -> EventStatus:
    for keywords, status in _STATUS_BY_KEYWORD:
        if any(k in op for k in keywords):
            return status
    return EventStatus.OK


def canonical_event(
    stage: str,
    run_id: str,
    op: str,
    status: EventStatus,
    level: EventLevel = EventLevel.INFO,
    duration_ms: Optional[int] = None,
    counts: Optional[Dict[str, int]] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Build one event. Unknown keyword fields are dropped."""
    if counts is None:
        counts = {key: int(fields.get(key) or 0) for key in _COUNT_KEYS}
    return {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": level.value,
        "stage": stage,
        "rid": run_id,
        "op": op,
        "status": status.value,
        "duration_ms": duration_ms,
        "counts": counts,
        "doc_id": fields.get("doc_id"),
        "chunk_id": fields.get("chunk_id"),
        "strategy": fields.get("strategy"),
        "reason": fields.get("reason"),
    }


class EventEmitter:
    """Writes events to <log_dir>/<run_id>/events.ndjson.

    While open (``with EventEmitter(...)``) it is the process-wide sink for
    ``emit_event``. Chunking threads share it, so writes are locked.
    """

    _active: Optional["EventEmitter"] = None

    def __init__(
        self,
        run_id: str,
        phase: str = "chunk",
        component: str = "chunker",
        log_dir: Optional[str] = None,
    ):
        self.run_id = run_id
        self.phase = phase
        self.component = component

        run_dir = Path(log_dir or "var/logs") / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        self.events_path = run_dir / "events.ndjson"

        self._file: Optional[TextIO] = None
        self._lock = threading.Lock()
        self._started = time.monotonic()

    def __enter__(self) -> "EventEmitter":
        self._file = open(self.events_path, "a", encoding="utf-8")
        EventEmitter._active = self
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if EventEmitter._active is self:
            EventEmitter._active = None
        with self._lock:
            if self._file:
                self._file.close()
                self._file = None

    @classmethod
    def active(cls) -> Optional["EventEmitter"]:
        return cls._active

    def write(self, event: Dict[str, Any]) -> None:
        """Append one event; None-valued fields are omitted. No-op when closed."""
        line = json.dumps({k: v for k, v in event.items() if v is not None})
        with self._lock:
            if not self._file:
                return
            self._file.write(line + "\n")
            self._file.flush()

    def _lifecycle(self, action: str, status: EventStatus, **kwargs) -> None:
        self.write(
            canonical_event(
                stage=self.phase,
                run_id=self.run_id,
                op=f"{self.component}.{action}",
                status=status,
                **kwargs,
            )
        )

    def run_start(self, documents: int, **kwargs) -> None:
        self._lifecycle("start", EventStatus.START, counts={"docs": documents}, **kwargs)

    def run_complete(self, documents: int, chunks: int, tokens: int, **kwargs) -> None:
        self._lifecycle(
            "complete",
            EventStatus.END,
            duration_ms=int((time.monotonic() - self._started) * 1000),
            counts={"docs": documents, "chunks": chunks, "tokens": tokens},
            **kwargs,
        )

    def warning(self, message: str, **kwargs) -> None:
        self._lifecycle(
            "warning", EventStatus.OK, level=EventLevel.WARNING, reason=message, **kwargs
        )

    def error(self, message: str, **kwargs) -> None:
        self._lifecycle(
            "error", EventStatus.FAIL, level=EventLevel.ERROR, reason=message, **kwargs
        )


def emit_event(event_type: str, **kwargs) -> None:
    """Report ``stage.op`` to the open emitter, or to the debug log if none."""
    emitter = EventEmitter.active()
    if emitter is None:
        log.debug(event_type, **kwargs)
        return

    stage, _, op = event_type.partition(".")
    if not op:
        stage, op = emitter.phase, event_type
    status = infer_status(op)
    level = EventLevel.ERROR if status is EventStatus.FAIL else EventLevel.INFO
    emitter.write(
        canonical_event(
            stage=stage, run_id=emitter.run_id, op=op, status=status, level=level, **kwargs
        )
    )
