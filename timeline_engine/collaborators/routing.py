"""
Routing collaborator: real travel times between two addresses.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

import requests
from pydantic import BaseModel, ValidationError

from timeline_engine.config import settings
from timeline_engine.errors import RoutingUnavailable

log = logging.getLogger(__name__)


class RouteResult(BaseModel):
    mode: str
    duration_min: float
    distance_km: Optional[float] = None
    polyline: Optional[str] = None


class RoutingClient:
    """
    Thin HTTP client for a directions endpoint that accepts
    {fromAddress, toAddress, modes, departureTime} and answers {results: [...]}.
    """

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or settings.ROUTING_URL
        self.api_key = api_key or settings.ROUTING_API_KEY
        self.timeout = timeout or settings.ROUTING_TIMEOUT_S

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def get_route(self, from_address: str, to_address: str, modes: Sequence[str], departure: datetime) -> List[RouteResult]:
        if not self.url:
            raise RoutingUnavailable("No routing endpoint configured")

        payload = {
            "fromAddress": from_address,
            "toAddress": to_address,
            "modes": list(modes),
            "departureTime": departure.isoformat(),
        }
        log.info(f"Requesting route {from_address!r} -> {to_address!r} ({', '.join(modes)})")
        try:
            response = requests.post(self.url, json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as e:
            log.error(f"HTTP error from routing service: {e.response.status_code}", exc_info=True)
            raise RoutingUnavailable(f"Routing service returned {e.response.status_code}") from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            log.error(f"Routing service unreachable: {e}", exc_info=True)
            raise RoutingUnavailable("Routing service unreachable") from e
        except ValueError as e:
            raise RoutingUnavailable("Routing service returned invalid JSON") from e
        except requests.exceptions.RequestException as e:
            log.error(f"Routing request failed: {e}", exc_info=True)
            raise RoutingUnavailable(f"Routing request failed: {e}") from e

        try:
            results = [RouteResult.model_validate(r) for r in (data or {}).get("results") or []]
        except (ValidationError, AttributeError) as e:
            raise RoutingUnavailable(f"Unexpected routing payload: {e}") from e

        if not results:
            raise RoutingUnavailable(f"No route between {from_address!r} and {to_address!r}")
        return results
