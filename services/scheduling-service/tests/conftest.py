from collections import Counter
from datetime import date, datetime, timedelta, timezone

import pytest

from scheduling_service.cache import MemoryCacheStore
from scheduling_service.distance import DistanceService
from scheduling_service.errors import GeocodingError, ProviderError
from scheduling_service.mapbox import RawMatrix, RouteLeg
from scheduling_service.postcodes import cache_key
from scheduling_service.schemas import (
    EngineerSettings,
    ScheduleCandidate,
    SchedulingSettings,
    ServiceArea,
)
from scheduling_service.usage import UsageTracker

METERS_PER_MILE = 1609.34

# Monday
START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self._now = start
        self._mono = 1000.0
        self.sleeps = []

    def now(self):
        return self._now

    def monotonic(self):
        return self._mono

    def advance(self, seconds: float):
        self._mono += seconds
        self._now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeProvider:
    """
    In-process mapping provider. Legs default to default_minutes and half as
    many miles; set_leg overrides one direction only.
    """

    def __init__(self, default_minutes: int = 20):
        self.default_minutes = default_minutes
        self.legs = {}
        self.calls = Counter()
        self.fail_geocode = set()
        self.fail_route = False
        self.fail_matrix = False
        self._coords = {}
        self._keys = {}

    def set_leg(self, origin: str, destination: str, minutes: int, miles: float | None = None):
        self.legs[(cache_key(origin), cache_key(destination))] = (
            minutes,
            minutes / 2 if miles is None else miles,
        )

    def _leg(self, origin_key: str, destination_key: str):
        if origin_key == destination_key:
            return 0, 0.0
        return self.legs.get(
            (origin_key, destination_key),
            (self.default_minutes, self.default_minutes / 2),
        )

    async def geocode(self, postcode: str):
        self.calls["geocode"] += 1
        key = cache_key(postcode)
        if key in self.fail_geocode:
            raise GeocodingError(f"No coordinates found for postcode: {postcode}")
        if key not in self._coords:
            coords = (-0.1 - len(self._coords) * 0.01, 51.5)
            self._coords[key] = coords
            self._keys[coords] = key
        return self._coords[key]

    async def route(self, origin, destination):
        self.calls["route"] += 1
        if self.fail_route:
            raise ProviderError("Mapbox Directions API error: 503 - unavailable", status_code=503)
        minutes, miles = self._leg(self._keys[origin], self._keys[destination])
        return RouteLeg(distance_meters=miles * METERS_PER_MILE, duration_seconds=minutes * 60)

    async def matrix(self, coordinates, sources=None, destinations=None):
        self.calls["matrix"] += 1
        if self.fail_matrix:
            raise ProviderError("Mapbox Matrix API error: 503 - unavailable", status_code=503)
        keys = [self._keys[c] for c in coordinates]
        rows = sources if sources is not None else range(len(keys))
        cols = destinations if destinations is not None else range(len(keys))
        durations, distances = [], []
        for i in rows:
            durations.append([self._leg(keys[i], keys[j])[0] * 60 for j in cols])
            distances.append([self._leg(keys[i], keys[j])[1] * METERS_PER_MILE for j in cols])
        return RawMatrix(durations=durations, distances=distances)


class InMemoryRepository:
    def __init__(self, engineers=(), settings: SchedulingSettings | None = None):
        self.engineers = list(engineers)
        self.settings = settings or SchedulingSettings()
        self.jobs: dict[tuple[str, date], list[ScheduleCandidate]] = {}
        self.holds: dict[tuple[str, date], list[ScheduleCandidate]] = {}
        self.workload: dict[tuple[str, date], int] = {}
        self.blocked: dict[str, set[date]] = {}
        self.fail_workload_for = set()
        self.calls = Counter()

    async def list_available_engineers(self):
        self.calls["list_available_engineers"] += 1
        return [e for e in self.engineers if e.availability]

    async def get_engineer(self, engineer_id):
        for e in self.engineers:
            if e.id == engineer_id:
                return e
        return None

    async def jobs_on_date(self, engineer_id, day):
        return list(self.jobs.get((engineer_id, day), []))

    async def soft_holds_on_date(self, engineer_id, day, now):
        return list(self.holds.get((engineer_id, day), []))

    async def daily_workload(self, engineer_id, day, now):
        self.calls["daily_workload"] += 1
        if engineer_id in self.fail_workload_for:
            raise RuntimeError("workload query failed")
        return self.workload.get((engineer_id, day), 0)

    async def workload_map(self, engineer_ids, start, days, now):
        self.calls["workload_map"] += 1
        return {k: v for k, v in self.workload.items() if k[0] in engineer_ids}

    async def client_blocked_dates(self, client_id):
        return set(self.blocked.get(client_id, set()))

    async def client_blocked_dates_map(self, client_ids):
        return {c: set(self.blocked.get(c, set())) for c in client_ids}

    async def scheduling_settings(self):
        return self.settings


def make_engineer(engineer_id: str = "eng-1", **overrides) -> EngineerSettings:
    data = {
        "id": engineer_id,
        "name": overrides.pop("name", f"Engineer {engineer_id}"),
        "starting_postcode": "DA1 1AA",
        "service_areas": [ServiceArea(postcode_area="DA5", max_travel_minutes=40)],
    }
    data.update(overrides)
    return EngineerSettings(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store(clock):
    return MemoryCacheStore(clock)


@pytest.fixture
def usage(clock):
    return UsageTracker(clock=clock)


@pytest.fixture
def distance(provider, store, clock, usage):
    return DistanceService(provider, store, clock, usage)


@pytest.fixture
def repo():
    return InMemoryRepository()
