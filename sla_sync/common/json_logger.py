"""Newline-delimited JSON events for sync, summary and integrity runs.

Every event carries the run id, phase, status, message and timestamp plus any
context bound with ``bind()``. Bound loggers share the parent's sinks and
status counters; only the root logger closes the file sink.
"""
from __future__ import annotations

import json
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, Iterator, Optional

__all__ = ["JsonLogger", "get_logger", "log_event", "timed_event", "new_run_id"]

STATUSES = ("ok", "warn", "error")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S%f")


@dataclass
class _Sinks:
    stream: IO[str]
    file_handle: Optional[IO[str]] = None
    closed: bool = False
    counts: Dict[str, int] = field(default_factory=lambda: {status: 0 for status in STATUSES})

    def write(self, line: str) -> None:
        for target in (self.stream, self.file_handle):
            if target is not None:
                target.write(line)
                target.flush()


def _open_log_file(raw_path: str | None) -> Optional[IO[str]]:
    if not raw_path or not raw_path.strip():
        return None
    path = Path(raw_path).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "a", encoding="utf-8")


class JsonLogger:
    """Emit one JSON object per line to stdout and an optional file."""

    def __init__(
        self,
        run_id: Optional[str] = None,
        stream: Optional[IO[str]] = None,
        *,
        log_file_path: str | None = None,
    ):
        self.run_id = run_id or new_run_id()
        self.context: Dict[str, Any] = {"run_id": self.run_id}
        self._sinks = _Sinks(stream=stream or sys.stdout, file_handle=_open_log_file(log_file_path))
        self._is_root = True

    def bind(self, **context: Any) -> "JsonLogger":
        child = JsonLogger(run_id=self.run_id, stream=self._sinks.stream)
        child.context = {**self.context, **context}
        child._sinks = self._sinks
        child._is_root = False
        return child

    @property
    def closed(self) -> bool:
        return self._sinks.closed

    @property
    def counts(self) -> Dict[str, int]:
        """Events emitted per status, shared with bound children."""

        return dict(self._sinks.counts)

    def info(self, *, phase: str, status: str = "ok", message: str = "", **fields: Any) -> None:
        if self._sinks.closed:
            return
        self._sinks.counts[status] = self._sinks.counts.get(status, 0) + 1
        event = {**self.context, "phase": phase, "status": status, "message": message, **fields}
        event.setdefault("ts", datetime.now(timezone.utc).isoformat())
        self._sinks.write(json.dumps(event, default=str, ensure_ascii=False) + "\n")

    def close(self) -> None:
        if not self._is_root or self._sinks.closed:
            return
        self._sinks.closed = True
        if self._sinks.file_handle is not None:
            self._sinks.file_handle.close()
            self._sinks.file_handle = None


def get_logger(run_id: Optional[str] = None, *, log_file_path: str | None = None) -> JsonLogger:
    return JsonLogger(run_id=run_id, log_file_path=log_file_path)


def log_event(*, logger: JsonLogger, phase: str, status: str = "ok", message: str = "", **extras: Any) -> None:
    logger.info(phase=phase, status=status, message=message, **extras)


@contextmanager
def timed_event(*, logger: JsonLogger, phase: str, message: str = "", **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.info(
            phase=phase,
            status="error",
            message=f"{message} failed: {exc}",
            duration_ms=int((time.perf_counter() - start) * 1000),
            exception=repr(exc),
            **fields,
        )
        raise
    logger.info(phase=phase, message=message, duration_ms=int((time.perf_counter() - start) * 1000), **fields)
