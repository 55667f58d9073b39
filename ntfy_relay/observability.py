import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

_RESERVED_ATTRS = frozenset((
    "args", "msg", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "name", "taskName",
    "message", "asctime",
))

_LEVEL_ALIASES = {"warn": "WARNING"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "time": int(time.time()),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # attach extras
        for k, v in record.__dict__.items():
            if k.startswith("_") or k in _RESERVED_ATTRS:
                continue
            payload[k] = v
        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_level(level: str) -> int:
    name = level.strip().lower()
    name = _LEVEL_ALIASES.get(name, name.upper())
    return getattr(logging, name, logging.INFO)


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    logging.basicConfig(
        level=resolve_level(level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    if fmt.lower() == "json":
        for h in list(root.handlers):
            h.setFormatter(JsonFormatter())


@dataclass
class Metrics:
    enabled: bool
    registry: Optional[CollectorRegistry]
    events_received: Optional[Counter] = None
    decode_failures: Optional[Counter] = None
    sessions: Optional[Counter] = None
    deliveries: Optional[Counter] = None
    deliveries_in_flight: Optional[Gauge] = None

    @classmethod
    def disabled(cls) -> "Metrics":
        return cls(False, None)

    @classmethod
    def init(cls, port: Optional[int] = None, serve: bool = True) -> "Metrics":
        if port is None:
            return cls.disabled()

        registry = CollectorRegistry()
        m = cls(True, registry)
        m.events_received = Counter(
            "ntfy_relay_events_received_total", "Stream events received", labelnames=("kind",), registry=registry
        )
        m.decode_failures = Counter(
            "ntfy_relay_decode_failures_total", "Stream lines that failed to decode", registry=registry
        )
        m.sessions = Counter(
            "ntfy_relay_sessions_total", "Finished stream sessions", labelnames=("outcome",), registry=registry
        )
        m.deliveries = Counter(
            "ntfy_relay_deliveries_total", "Webhook deliveries", labelnames=("outcome",), registry=registry
        )
        m.deliveries_in_flight = Gauge(
            "ntfy_relay_deliveries_in_flight", "Deliveries currently running", registry=registry
        )
        if serve:
            start_http_server(port, registry=registry)
            logging.getLogger(__name__).info(f"Metrics exposed on port {port}")
        return m

    # ---- convenience helpers ----
    def inc_event(self, kind: str) -> None:
        if self.events_received:
            self.events_received.labels(kind).inc()

    def inc_decode_failure(self) -> None:
        if self.decode_failures:
            self.decode_failures.inc()

    def inc_session(self, outcome: str) -> None:
        if self.sessions:
            self.sessions.labels(outcome).inc()

    def inc_delivery(self, outcome: str) -> None:
        if self.deliveries:
            self.deliveries.labels(outcome).inc()

    def delivery_started(self) -> None:
        if self.deliveries_in_flight:
            self.deliveries_in_flight.inc()

    def delivery_finished(self) -> None:
        if self.deliveries_in_flight:
            self.deliveries_in_flight.dec()
