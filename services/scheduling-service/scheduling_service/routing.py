"""
Route estimation for a day's jobs.

The nearest-neighbour walk is an approximation rather than an optimiser:
it runs once per candidate date during the forward search.
Anything with the RouteEstimator shape can replace it.
"""
import logging
from typing import Awaitable, Callable, Protocol, Sequence

from . import config
from .errors import MappingError
from .postcodes import cache_key
from .schemas import ScheduleCandidate

logger = logging.getLogger(__name__)

LegLookup = Callable[[str, str], Awaitable[int]]


class RouteEstimator(Protocol):
    async def total_minutes(self, home: str | None, jobs: Sequence[ScheduleCandidate]) -> int: ...


async def nearest_neighbor_order(
    home: str,
    jobs: Sequence[ScheduleCandidate],
    leg: LegLookup,
) -> list[tuple[ScheduleCandidate, int]]:
    """
    Greedy visiting order starting from home.

    Returns (job, minutes to reach it) pairs. Jobs without a postcode are not
    part of the walk. Ties keep the earlier job.
    """
    remaining = [j for j in jobs if j.postcode]
    current = home
    ordered = []

    while remaining:
        best_index = 0
        best_minutes = None
        for i, job in enumerate(remaining):
            minutes = await leg(current, job.postcode)
            if best_minutes is None or minutes < best_minutes:
                best_index = i
                best_minutes = minutes

        job = remaining.pop(best_index)
        ordered.append((job, best_minutes))
        current = job.postcode

    return ordered


class NearestNeighborRoute:
    def __init__(self, travel_minutes: LegLookup, fallback_minutes: int = config.DEFAULT_TRAVEL_MINUTES):
        self.travel_minutes = travel_minutes
        self.fallback_minutes = fallback_minutes

    async def _leg(self, origin: str, destination: str) -> int:
        try:
            return await self.travel_minutes(origin, destination)
        except MappingError as e:
            logger.warning(
                "Travel lookup %s -> %s failed, using %d min estimate: %s",
                origin, destination, self.fallback_minutes, e,
            )
            return self.fallback_minutes

    async def total_minutes(self, home: str | None, jobs: Sequence[ScheduleCandidate]) -> int:
        work = sum(j.duration_minutes for j in jobs)
        if not home:
            return work

        ordered = await nearest_neighbor_order(home, jobs, self._leg)
        travel = sum(minutes for _, minutes in ordered)

        if ordered:
            last = ordered[-1][0].postcode
            if cache_key(last) != cache_key(home):
                travel += await self._leg(last, home)

        return work + travel
