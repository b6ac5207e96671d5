"""
core/factory.py -- HTTP client for the pizza factory that fulfills orders.

The factory is a separate service. For every placed order we POST
{diner, order} to {factory_url}/api/order with the factory API key as bearer
token. A successful response carries the signed pizza JWT and a reportUrl.

Any non-2xx response or network failure raises FactoryError carrying whatever
reportUrl came back (None when the factory was unreachable). Every call is
reported through the injected Telemetry as a factory-req event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.errors import FactoryError

logger = logging.getLogger("pizza.factory")


@dataclass(frozen=True)
class FactoryReport:
    jwt: str
    report_url: Optional[str] = None


class FactoryClient:
    def __init__(self, url: str, api_key: str, timeout: float = 10.0, telemetry=None, session=None) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.telemetry = telemetry
        # max_redirects=3: the factory is a single known endpoint.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def order(self, diner: dict[str, Any], order: dict[str, Any]) -> FactoryReport:
        """Send an order to the factory and return its report.

        Args:
            diner: {"id", "name", "email"} of the ordering user.
            order: The placed order as it is returned to the client.
        """
        body = {"diner": diner, "order": order}
        try:
            resp = self._session.post(
                f"{self.url}/api/order",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Factory request failed: %s", e)
            self._report(body, {"error": str(e)}, 503)
            raise FactoryError() from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        self._report(body, payload, resp.status_code)

        report_url = payload.get("reportUrl")
        if not resp.ok or not payload.get("jwt"):
            logger.warning("Factory rejected order: HTTP %s", resp.status_code)
            raise FactoryError(report_url=report_url)
        return FactoryReport(jwt=payload["jwt"], report_url=report_url)

    def _report(self, req_body: dict, res_body: Any, status_code: int) -> None:
        if self.telemetry is not None:
            self.telemetry.factory_request(req_body, res_body, status_code)
