from __future__ import annotations

import collections
import json
import logging
import sys
import time
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol


# LogRecord attributes that are not user-supplied `extra={...}` context
_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "created",
    "taskName",
    "message",
    "asctime",
}


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras: Dict[str, Any] = {}
    for k, v in record.__dict__.items():
        if k in _RESERVED or k.startswith("_"):
            continue
        try:
            json.dumps(v)  # check serializable
            extras[k] = v
        except Exception:  # noqa: BLE001
            extras[k] = str(v)
    return extras


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for k, v in record_extras(record).items():
            payload.setdefault(k, v)
        return json.dumps(payload, ensure_ascii=False)


class Sink(Protocol):
    def __call__(self, record: Dict[str, Any]) -> None:
        ...


class EventBus:
    """Fan-out of structured log records to subscribed sinks.

    Keeps the last `maxlen` records so a late subscriber can replay recent
    history. A sink that raises loses that one record; the others still get it.
    """

    def __init__(self, maxlen: int = 500) -> None:
        self._buffer: Deque[Dict[str, Any]] = collections.deque(maxlen=maxlen)
        self._sinks: List[Sink] = []

    def publish(self, record: Dict[str, Any]) -> None:
        self._buffer.append(record)
        for sink in list(self._sinks):
            try:
                sink(record)
            except Exception:  # noqa: BLE001
                # Never log from here: the bus is itself fed by logging
                pass

    def emit(self, level: int, msg: str, **fields: Any) -> None:
        record: Dict[str, Any] = {
            "level": level,
            "levelLabel": logging.getLevelName(level),
            "time": _now_ms(),
            "msg": msg,
        }
        record.update(fields)
        self.publish(record)

    def subscribe(self, sink: Sink) -> Callable[[], None]:
        self._sinks.append(sink)

        def unsubscribe() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return unsubscribe

    def recent(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = list(self._buffer)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        self._buffer.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._sinks)


def _now_ms() -> int:
    return int(time.time() * 1000)


class BusHandler(logging.Handler):
    def __init__(self, bus: EventBus, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.bus = bus

    def emit(self, record: logging.LogRecord) -> None:
        try:
            payload: Dict[str, Any] = {
                "level": record.levelno,
                "levelLabel": record.levelname,
                "time": int(record.created * 1000),
                "msg": record.getMessage(),
                "logger": record.name,
            }
            for k, v in record_extras(record).items():
                payload.setdefault(k, v)
            self.bus.publish(payload)
        except Exception:  # noqa: BLE001
            self.handleError(record)


def setup_logging(level: str = "INFO", bus: Optional[EventBus] = None) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(lvl)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    if bus is not None:
        root.addHandler(BusHandler(bus, level=lvl))


def gha_notice(level: str, message: str) -> None:
    # GitHub Actions annotations for quick visibility
    prefix = {
        "ERROR": "::error::",
        "WARNING": "::warning::",
        "NOTICE": "::notice::",
    }.get(level.upper())
    if prefix:
        print(f"{prefix}{message}")
