"""
core/telemetry.py -- Structured log events and metrics pushed to Grafana.

Two sinks, each a thin HTTP client over one shared requests.Session:

  GrafanaLogSink     Loki push API. One stream per event, labelled with
                     component (logging_source), level and type. The event
                     body is JSON with every password value masked.
  GrafanaMetricSink  OTLP/HTTP JSON. One data point per call, either a gauge
                     or a monotonic cumulative sum, tagged source=metrics_source.

A sink whose URL is empty is replaced by NullSink, so an unconfigured process
emits nothing and makes no network calls.

Telemetry is the object the API and services talk to. It never raises: a sink
failure is logged at WARNING on the "pizza.telemetry" logger and dropped, so
telemetry can never fail a request.

Usage:
    telemetry = Telemetry.from_settings(get_settings())
    telemetry.log("info", "factory-req", {"statusCode": 200})
    telemetry.record("pizza_sold", 3, kind="sum", unit="pizzas")
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from typing import Any, Optional

import psutil
import requests

logger = logging.getLogger("pizza.telemetry")

_PUSH_TIMEOUT = 5

# "password":"x" inside an already-serialized JSON string, as plain JSON, and
# as a form/query parameter.
_ESCAPED_JSON_PASSWORD = re.compile(r'\\"password\\":\s*\\"[^"\\]*\\"', re.IGNORECASE)
_JSON_PASSWORD = re.compile(r'"password":\s*"[^"]*"', re.IGNORECASE)
_QUERY_PASSWORD = re.compile(r"password=[^&\s]*", re.IGNORECASE)


def sanitize(data: Any) -> str:
    """Serialize data to JSON and mask every password value."""
    text = data if isinstance(data, str) else json.dumps(data, default=str)
    text = _ESCAPED_JSON_PASSWORD.sub(r'\\"password\\": \\"*****\\"', text)
    text = _JSON_PASSWORD.sub('"password": "*****"', text)
    return _QUERY_PASSWORD.sub("password=*****", text)


def status_to_level(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warn"
    return "info"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class NullSink:
    """Accepts everything, sends nothing."""

    def push(self, *args, **kwargs) -> None:
        return None


class GrafanaLogSink:
    def __init__(self, url: str, user_id: str, api_key: str, source: str, session: Optional[requests.Session] = None):
        self.url = url
        self.source = source
        self._auth = f"Bearer {user_id}:{api_key}"
        self._session = session or requests.Session()

    def build_event(self, level: str, event_type: str, data: Any) -> dict:
        labels = {"component": self.source, "level": level, "type": event_type}
        return {"streams": [{"stream": labels, "values": [[str(time.time_ns()), sanitize(data)]]}]}

    def push(self, level: str, event_type: str, data: Any) -> None:
        event = self.build_event(level, event_type, data)
        try:
            resp = self._session.post(
                self.url,
                json=event,
                headers={"Authorization": self._auth},
                timeout=_PUSH_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.warning("Error sending log to Grafana: %s", e)
            return
        if not resp.ok:
            logger.warning("Failed to send log to Grafana: HTTP %s", resp.status_code)


class GrafanaMetricSink:
    def __init__(self, url: str, api_key: str, source: str, session: Optional[requests.Session] = None):
        self.url = url
        self.source = source
        self._auth = f"Bearer {api_key}"
        self._session = session or requests.Session()

    def build_metric(self, name: str, value: float, kind: str, unit: str, as_double: bool = False) -> dict:
        """Build one OTLP resourceMetrics document.

        kind is "gauge" or "sum"; sums are cumulative and monotonic.
        """
        point = {
            ("asDouble" if as_double else "asInt"): value if as_double else int(value),
            "timeUnixNano": time.time_ns(),
            "attributes": [{"key": "source", "value": {"stringValue": self.source}}],
        }
        body: dict = {"dataPoints": [point]}
        if kind == "sum":
            body["aggregationTemporality"] = "AGGREGATION_TEMPORALITY_CUMULATIVE"
            body["isMonotonic"] = True
        metric = {"name": name, "unit": unit, kind: body}
        return {"resourceMetrics": [{"scopeMetrics": [{"metrics": [metric]}]}]}

    def push(self, name: str, value: float, kind: str = "sum", unit: str = "", as_double: bool = False) -> None:
        document = self.build_metric(name, value, kind, unit, as_double)
        try:
            resp = self._session.post(
                self.url,
                json=document,
                headers={"Authorization": self._auth},
                timeout=_PUSH_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.warning("Error sending metric %s: %s", name, e)
            return
        if not resp.ok:
            logger.warning("Failed to push metric %s: HTTP %s %s", name, resp.status_code, resp.text[:200])


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class Telemetry:
    def __init__(self, log_sink=None, metric_sink=None) -> None:
        self.log_sink = log_sink or NullSink()
        self.metric_sink = metric_sink or NullSink()
        self._active_users: set[int] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "Telemetry":
        """Build sinks from Settings; an empty URL disables that sink."""
        session = requests.Session()
        session.max_redirects = 3
        log_sink = None
        metric_sink = None
        if settings.logging_url:
            log_sink = GrafanaLogSink(
                settings.logging_url,
                settings.logging_user_id,
                settings.logging_api_key,
                settings.logging_source,
                session,
            )
        if settings.metrics_url:
            metric_sink = GrafanaMetricSink(settings.metrics_url, settings.metrics_api_key, settings.metrics_source, session)
        return cls(log_sink, metric_sink)

    # -- primitives ------------------------------------------------------

    def log(self, level: str, event_type: str, data: Any) -> None:
        try:
            self.log_sink.push(level, event_type, data)
        except Exception:
            logger.warning("Dropping %s log event", event_type, exc_info=True)

    def record(self, name: str, value: float, kind: str = "sum", unit: str = "", as_double: bool = False) -> None:
        try:
            self.metric_sink.push(name, value, kind, unit, as_double)
        except Exception:
            logger.warning("Dropping metric %s", name, exc_info=True)

    # -- events ----------------------------------------------------------

    def http_request(
        self,
        method: str,
        path: str,
        status_code: int,
        latency_ms: float,
        authorized: bool = False,
        ip: Optional[str] = None,
        req_body: Any = None,
        res_body: Any = None,
    ) -> None:
        """Emit the http-req log event and the per-request metrics."""
        self.log(
            status_to_level(status_code),
            "http-req",
            {
                "auth": authorized,
                "path": path,
                "method": method,
                "status": status_code,
                "ip": ip,
                "req": req_body,
                "res": res_body,
            },
        )
        verb = method.lower()
        metric_path = re.sub(r"^/api", "", path).replace("/", "_") or "root"
        self.record(f"http_{verb}{metric_path}_latency", round(latency_ms), kind="gauge", unit="ms")
        self.record("http_request_total", 1, kind="sum", unit="requests")
        self.record(f"http_{verb}_requests", 1, kind="sum", unit="requests")

    def factory_request(self, req_body: Any, res_body: Any, status_code: int) -> None:
        self.log(
            status_to_level(status_code),
            "factory-req",
            {"factoryReqBody": req_body, "factoryResBody": res_body, "statusCode": status_code},
        )

    def exception(self, exc: BaseException, path: Optional[str] = None, method: Optional[str] = None) -> None:
        self.log(
            "error",
            "exception",
            {
                "message": str(exc),
                "type": type(exc).__name__,
                "path": path,
                "method": method,
                "statusCode": getattr(exc, "status_code", 500),
            },
        )

    def auth_attempt(self, success: bool) -> None:
        self.record("auth_successful" if success else "auth_failed", 1, kind="sum", unit="attempts")

    def pizza_purchase(self, success: bool, latency_ms: float, pizzas_sold: int = 0, revenue: float = 0.0) -> None:
        if success:
            self.record("pizza_sold", pizzas_sold, kind="sum", unit="pizzas")
            self.record("pizza_revenue", revenue, kind="sum", unit="cents", as_double=True)
        else:
            self.record("pizza_creation_failures", 1, kind="sum", unit="failures")
        self.record("pizza_creation_latency", round(latency_ms), kind="gauge", unit="ms")

    # -- periodic --------------------------------------------------------

    def track_active_user(self, user_id: Optional[int]) -> None:
        if user_id is None:
            return
        with self._lock:
            self._active_users.add(user_id)

    def flush_active_users(self) -> int:
        """Report the distinct users seen since the last flush and reset the set."""
        with self._lock:
            count = len(self._active_users)
            self._active_users.clear()
        self.record("active_users", count, kind="gauge", unit="users")
        return count

    def system_metrics(self) -> None:
        self.record("cpu_usage_percentage", round(psutil.cpu_percent()), kind="gauge", unit="%")
        self.record("memory_usage_percentage", round(psutil.virtual_memory().percent), kind="gauge", unit="%")
