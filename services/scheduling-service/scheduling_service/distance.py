"""
Geocode and travel-time lookups with two cache tiers in front of the
mapping provider.

Coordinates: persistent store -> in-process cache -> provider, with
concurrent misses for the same postcode sharing one provider call.
Travel times: in-process ordered-pair cache -> provider. A -> B and B -> A
are separate entries since road networks are not symmetric.
"""
import asyncio
import logging
from typing import Protocol

from . import config
from .cache import CacheStore, TTLCache
from .clock import SYSTEM_CLOCK, Clock
from .errors import GeocodingError, MappingError
from .mapbox import Coordinates, RawMatrix, RouteLeg, meters_to_miles, seconds_to_minutes
from .postcodes import cache_key, normalize_postcode
from .schemas import TravelMatrix, TravelResult
from .usage import UsageTracker

logger = logging.getLogger(__name__)


class MappingProvider(Protocol):
    async def geocode(self, postcode: str) -> Coordinates: ...

    async def route(self, origin: Coordinates, destination: Coordinates) -> RouteLeg: ...

    async def matrix(
        self,
        coordinates: list[Coordinates],
        sources: list[int] | None = None,
        destinations: list[int] | None = None,
    ) -> RawMatrix: ...


def _pair_key(origin_key: str, destination_key: str) -> str:
    return f"{origin_key}|{destination_key}"


class DistanceService:
    def __init__(
        self,
        provider: MappingProvider,
        store: CacheStore,
        clock: Clock = SYSTEM_CLOCK,
        usage: UsageTracker | None = None,
        geocode_ttl_seconds: int = config.GEOCODE_CACHE_TTL_SECONDS,
        distance_ttl_seconds: int = config.DISTANCE_CACHE_TTL_SECONDS,
    ):
        self.provider = provider
        self.store = store
        self.clock = clock
        self.usage = usage if usage is not None else UsageTracker(clock=clock)
        self.geocode_ttl_seconds = geocode_ttl_seconds
        self.geocodes = TTLCache(geocode_ttl_seconds, clock)
        self.travel = TTLCache(distance_ttl_seconds, clock)
        self._inflight: dict[str, asyncio.Future] = {}

    # ---- Coordinates ----

    async def resolve_coordinates(self, postcode: str) -> Coordinates:
        key = cache_key(postcode)
        if not key:
            raise GeocodingError("No postcode given")

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._lookup_coordinates(key, postcode))
            self._inflight[key] = task

            def _done(t, k=key):
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_done)

        return await asyncio.shield(task)

    async def _lookup_coordinates(self, key: str, postcode: str) -> Coordinates:
        stored = await self.store.get(f"geocode:{key}")
        if stored:
            coords = (float(stored[0]), float(stored[1]))
            self.geocodes.set(key, coords)
            self.usage.record("cache_hits", tier="persistent", postcode=key)
            return coords

        cached = self.geocodes.get(key)
        if cached:
            self.usage.record("cache_hits", tier="memory", postcode=key)
            return cached

        try:
            coords = await self.provider.geocode(normalize_postcode(postcode))
        except GeocodingError:
            raise
        except MappingError as e:
            raise GeocodingError(f"Geocoding failed for {postcode}: {e}") from e

        self.usage.record("geocoding", postcode=key)
        self.geocodes.set(key, coords)

        try:
            await self.store.set(f"geocode:{key}", list(coords), self.geocode_ttl_seconds)
        except Exception as e:
            logger.warning("Could not persist coordinates for %s: %s", key, e)

        return coords

    # ---- Travel ----

    async def travel_time(self, origin: str, destination: str) -> TravelResult:
        origin_key = cache_key(origin)
        destination_key = cache_key(destination)
        if not origin_key or not destination_key:
            raise GeocodingError("Both origin and destination postcodes are required")

        if origin_key == destination_key:
            return TravelResult(distance_miles=0.0, duration_minutes=0)

        pair = _pair_key(origin_key, destination_key)
        cached = self.travel.get(pair)
        if cached is not None:
            self.usage.record("cache_hits", tier="memory", pair=pair)
            return cached

        origin_coords, destination_coords = await asyncio.gather(
            self.resolve_coordinates(origin),
            self.resolve_coordinates(destination),
        )
        leg = await self.provider.route(origin_coords, destination_coords)
        self.usage.record("directions", origin=origin_key, destination=destination_key)

        result = TravelResult(
            distance_miles=meters_to_miles(leg.distance_meters),
            duration_minutes=seconds_to_minutes(leg.duration_seconds),
        )
        self.travel.set(pair, result)
        return result

    async def travel_matrix(self, locations: list[str]) -> TravelMatrix:
        unique = []
        seen = set()
        for loc in locations:
            key = cache_key(loc)
            if key and key not in seen:
                seen.add(key)
                unique.append(loc)

        if not unique:
            return TravelMatrix(locations=[], durations=[], distances=[])
        if len(unique) == 1:
            return TravelMatrix(locations=unique, durations=[[0]], distances=[[0.0]])

        coords = await asyncio.gather(*(self.resolve_coordinates(loc) for loc in unique))
        raw = await self.provider.matrix(list(coords))
        self.usage.record("matrix", size=len(unique))

        durations = [
            [None if cell is None else seconds_to_minutes(cell) for cell in row]
            for row in raw.durations
        ]
        distances = [
            [None if cell is None else meters_to_miles(cell) for cell in row]
            for row in raw.distances
        ]

        for i, origin in enumerate(unique):
            for j, destination in enumerate(unique):
                if i == j or durations[i][j] is None or distances[i][j] is None:
                    continue
                self.travel.set(
                    _pair_key(cache_key(origin), cache_key(destination)),
                    TravelResult(distance_miles=distances[i][j], duration_minutes=durations[i][j]),
                )

        return TravelMatrix(locations=unique, durations=durations, distances=distances)

    async def batch_travel_to(self, origins: list[str], destination: str) -> dict[str, TravelResult]:
        """
        Travel from many origins (engineer homes) to one job in a single
        matrix call. Origins that cannot be geocoded are left out of the
        result; a failed matrix call raises.
        """
        destination_key = cache_key(destination)
        if not destination_key:
            raise GeocodingError("No destination postcode given")

        results: dict[str, TravelResult] = {}
        pending: dict[str, str] = {}
        for origin in origins:
            origin_key = cache_key(origin)
            if not origin_key:
                continue
            if origin_key == destination_key:
                results[origin] = TravelResult(distance_miles=0.0, duration_minutes=0)
                continue
            cached = self.travel.get(_pair_key(origin_key, destination_key))
            if cached is not None:
                self.usage.record("cache_hits", tier="memory", origin=origin_key)
                results[origin] = cached
                continue
            pending.setdefault(origin_key, origin)

        if not pending:
            return self._expand(results, origins, destination_key)

        destination_coords = await self.resolve_coordinates(destination)
        resolved = await asyncio.gather(
            *(self.resolve_coordinates(o) for o in pending.values()),
            return_exceptions=True,
        )

        sources = []
        coords = [destination_coords]
        for origin, outcome in zip(pending.values(), resolved):
            if isinstance(outcome, BaseException):
                logger.warning("Skipping %s in batch travel lookup: %s", origin, outcome)
                continue
            sources.append(origin)
            coords.append(outcome)

        if not sources:
            return self._expand(results, origins, destination_key)

        raw = await self.provider.matrix(
            coords,
            sources=list(range(1, len(coords))),
            destinations=[0],
        )
        self.usage.record("matrix", size=len(coords), destination=destination_key)

        for row, origin in enumerate(sources):
            duration = raw.durations[row][0]
            distance = raw.distances[row][0]
            if duration is None or distance is None:
                continue
            result = TravelResult(
                distance_miles=meters_to_miles(distance),
                duration_minutes=seconds_to_minutes(duration),
            )
            self.travel.set(_pair_key(cache_key(origin), destination_key), result)
            results[origin] = result

        return self._expand(results, origins, destination_key)

    def _expand(self, results: dict[str, TravelResult], origins: list[str], destination_key: str):
        # origins that share a cache key with an earlier one reuse its result
        for origin in origins:
            if origin in results:
                continue
            cached = self.travel.get(_pair_key(cache_key(origin), destination_key))
            if cached is not None:
                results[origin] = cached
        return results

    async def clear(self, include_persistent: bool = False) -> int:
        cleared = len(self.geocodes) + len(self.travel)
        self.geocodes.clear()
        self.travel.clear()
        if include_persistent:
            cleared += await self.store.clear()
        logger.info("Cleared %d distance cache entries", cleared)
        return cleared
