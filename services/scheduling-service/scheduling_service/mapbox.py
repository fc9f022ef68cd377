"""
Client for the Mapbox geocoding, directions and matrix endpoints.

Every request goes through the shared RateGate first. HTTP 429 and transport
failures are retried with exponential backoff plus jitter; any other non-2xx
response fails straight away as ProviderError.
"""
import logging
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from . import config
from .errors import GeocodingError, ProviderError, RateLimitedError
from .rate_gate import RateGate

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.34

Coordinates = tuple[float, float]  # (longitude, latitude)


def meters_to_miles(meters: float) -> float:
    return round(meters / METERS_PER_MILE, 1)


def seconds_to_minutes(seconds: float) -> int:
    return int(round(seconds / 60))


def default_wait():
    # 1s, 2s, 4s ... plus up to 1s of jitter
    return wait_exponential(multiplier=1, min=1, max=8) + wait_random(0, 1)


class RouteLeg(BaseModel):
    distance_meters: float
    duration_seconds: float


class RawMatrix(BaseModel):
    durations: list[list[float | None]]
    distances: list[list[float | None]]


def _format_coords(coords: list[Coordinates]) -> str:
    return ";".join(f"{lng},{lat}" for lng, lat in coords)


class MapboxClient:
    def __init__(
        self,
        access_token: str | None,
        base_url: str = config.MAPBOX_BASE_URL,
        timeout: float = config.MAPBOX_HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        gate: RateGate | None = None,
        wait=None,
        max_retries: int = config.MAPBOX_MAX_RETRIES,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.gate = gate if gate is not None else RateGate(max_calls=config.MAPBOX_MAX_CALLS_PER_MINUTE)
        self.wait = wait if wait is not None else default_wait()
        self.max_retries = max_retries
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()

    @staticmethod
    def _log_retry(retry_state):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Mapbox request failed (%s), retrying (attempt %d)",
            exc,
            retry_state.attempt_number,
        )

    async def _request(self, kind: str, path: str, params: dict) -> dict:
        if not self.access_token:
            raise ProviderError("Mapbox access token not configured")

        await self.gate.acquire()

        response = await self.http_client.get(
            f"{self.base_url}{path}",
            params={**params, "access_token": self.access_token},
        )

        if response.status_code == 429:
            raise RateLimitedError()

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = "Unknown error"
            if isinstance(data, dict):
                message = data.get("message") or data.get("error") or message
            raise ProviderError(
                f"Mapbox {kind} API error: {response.status_code} - {message}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise ProviderError(f"Mapbox {kind} API returned an unreadable body")

        return data

    async def _get_json(self, kind: str, path: str, params: dict) -> dict:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((RateLimitedError, httpx.TransportError)),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self.wait,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._request(kind, path, params)
        except httpx.TransportError as e:
            raise ProviderError(f"Mapbox {kind} request failed: {e}") from e

    async def geocode(self, postcode: str) -> Coordinates:
        path = f"/geocoding/v5/mapbox.places/{quote(postcode)}.json"
        data = await self._get_json(
            "Geocoding",
            path,
            {"country": "GB", "types": "postcode", "limit": 1},
        )

        features = data.get("features") or []
        if not features or not features[0].get("center"):
            raise GeocodingError(f"No coordinates found for postcode: {postcode}")

        lng, lat = features[0]["center"][:2]
        return float(lng), float(lat)

    async def route(self, origin: Coordinates, destination: Coordinates) -> RouteLeg:
        path = f"/directions/v5/mapbox/driving/{_format_coords([origin, destination])}"
        data = await self._get_json("Directions", path, {"overview": "false"})

        routes = data.get("routes") or []
        if not routes:
            raise ProviderError("Mapbox Directions API returned no route")

        return RouteLeg(
            distance_meters=routes[0]["distance"],
            duration_seconds=routes[0]["duration"],
        )

    async def matrix(
        self,
        coordinates: list[Coordinates],
        sources: list[int] | None = None,
        destinations: list[int] | None = None,
    ) -> RawMatrix:
        params = {"annotations": "duration,distance"}
        if sources is not None:
            params["sources"] = ";".join(str(i) for i in sources)
        if destinations is not None:
            params["destinations"] = ";".join(str(i) for i in destinations)

        path = f"/directions-matrix/v1/mapbox/driving/{_format_coords(coordinates)}"
        data = await self._get_json("Matrix", path, params)

        if data.get("code") not in (None, "Ok"):
            raise ProviderError(f"Mapbox Matrix API error: {data.get('code')} - {data.get('message', '')}")
        if data.get("durations") is None or data.get("distances") is None:
            raise ProviderError("Invalid Matrix API response structure")

        return RawMatrix(durations=data["durations"], distances=data["distances"])
