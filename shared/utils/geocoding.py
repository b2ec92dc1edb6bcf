"""
shared/utils/geocoding.py
Address -> coordinates lookup against the Google Geocoding API.

The HTTP call is synchronous (httpx.Client) so it can sit behind a pybreaker
circuit breaker; async callers go through `Geocoder.geocode`, which runs it in
the threadpool. Transport errors are retried with tenacity before the breaker
counts a failure.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener
from starlette.concurrency import run_in_threadpool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """The provider could not be reached or rejected the request."""


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


class _LogListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Geocoding circuit breaker {getattr(old_state, 'name', old_state)} -> {new_state.name}"
        )


geocoding_breaker = CircuitBreaker(
    fail_max=5,          # Open after 5 failures
    reset_timeout=60,    # Try again after 60 seconds
    exclude=[lambda e: isinstance(e, httpx.HTTPStatusError) and e.response.status_code < 500],
    listeners=[_LogListener()],
    name="geocoding",
)


class Geocoder:
    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        breaker: CircuitBreaker = geocoding_breaker,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.url = url or settings.GEOCODING_URL
        self.breaker = breaker
        self._client = httpx.Client(
            timeout=settings.GEOCODING_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(settings.GEOCODING_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    def _request(self, address: str) -> dict:
        response = self._client.get(self.url, params={"address": address, "key": self.api_key})
        response.raise_for_status()
        return response.json()

    def lookup(self, address: str) -> Optional[Coordinates]:
        """
        Blocking lookup. Returns None when the provider has no match.
        Raises GeocodingError on transport, HTTP or provider errors.
        """
        try:
            body = self.breaker.call(self._request, address)
        except CircuitBreakerError as exc:
            raise GeocodingError("geocoding temporarily unavailable") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GeocodingError(str(exc)) from exc

        status = body.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise GeocodingError(f"provider returned {status}: {body.get('error_message', '')}".strip())

        results = body.get("results") or []
        if not results:
            return None
        try:
            location = results[0]["geometry"]["location"]
            return Coordinates(lat=float(location["lat"]), lng=float(location["lng"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingError(f"unexpected provider response: {exc!r}") from exc

    async def geocode(self, address: str) -> Optional[Coordinates]:
        return await run_in_threadpool(self.lookup, address)

    def close(self) -> None:
        self._client.close()


_geocoder: Optional[Geocoder] = None


def get_geocoder() -> Geocoder:
    """FastAPI dependency returning the shared geocoder."""
    global _geocoder
    if _geocoder is None:
        _geocoder = Geocoder()
    return _geocoder


def close_geocoder() -> None:
    global _geocoder
    if _geocoder is not None:
        _geocoder.close()
        _geocoder = None
