"""
Day-fit: do all of an engineer's jobs for a date, plus travel, fit inside
their working day?

Split in two steps. DayFitCalculator.assemble_state gathers the jobs that
occupy the day (real bookings, soft holds, what-if jobs and the candidate).
compute_day_fit turns an assembled ScheduleState into a DayFitResult and
touches nothing but the route estimator.
"""
import asyncio
import logging
import re
from datetime import date
from typing import Sequence

from . import config
from .availability import working_hours_for
from .clock import SYSTEM_CLOCK, Clock
from .errors import InvalidTimeError
from .routing import NearestNeighborRoute, RouteEstimator
from .schemas import DayFitResult, EngineerSettings, ScheduleCandidate, ScheduleState, WorkingHours

logger = logging.getLogger(__name__)

FULL_DAY_MINUTES = 24 * 60

_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def parse_time(value: str) -> int:
    """Parse "HH:MM" (or "HH:MM:SS") into minutes since midnight."""
    m = _TIME.match((value or "").strip())
    if not m:
        raise InvalidTimeError(f"Invalid time: {value!r}")

    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 24 or minutes > 59 or (hours == 24 and minutes):
        raise InvalidTimeError(f"Invalid time: {value!r}")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60}h {minutes % 60}m"


def work_day_minutes(engineer: EngineerSettings, working_hours: WorkingHours, leniency_minutes: int) -> int:
    if engineer.is_subcontractor and engineer.ignore_working_hours:
        return FULL_DAY_MINUTES
    return parse_time(working_hours.end_time) - parse_time(working_hours.start_time) + leniency_minutes


def _unavailable() -> DayFitResult:
    return DayFitResult(can_fit=False, reasons=["Engineer not available on this day"])


async def compute_day_fit(state: ScheduleState, estimator: RouteEstimator) -> DayFitResult:
    wh = state.working_hours
    if wh is None or not wh.is_available:
        return _unavailable()

    budget = work_day_minutes(state.engineer, wh, state.leniency_minutes)

    if not state.jobs:
        return DayFitResult(
            can_fit=True,
            total_minutes=0,
            work_day_minutes=budget,
            overage_minutes=0,
            reasons=["No jobs scheduled"],
        )

    total = await estimator.total_minutes(state.engineer.starting_postcode, state.jobs)
    overage = max(0, total - budget)
    can_fit = overage == 0

    reasons = []
    if can_fit:
        reasons.append(f"Fits within {format_minutes(budget)} work day")
    else:
        reasons.append(f"Exceeds work day by {format_minutes(overage)}")

    count = len(state.jobs)
    reasons.append(f"{count} job{'' if count == 1 else 's'}, {format_minutes(total)} total")

    return DayFitResult(
        can_fit=can_fit,
        total_minutes=total,
        work_day_minutes=budget,
        overage_minutes=overage,
        reasons=reasons,
    )


class DayFitCalculator:
    def __init__(self, repository, distance, clock: Clock = SYSTEM_CLOCK, estimator: RouteEstimator | None = None):
        self.repository = repository
        self.distance = distance
        self.clock = clock
        self.estimator = estimator or NearestNeighborRoute(self._travel_minutes)

    async def _travel_minutes(self, origin: str, destination: str) -> int:
        result = await self.distance.travel_time(origin, destination)
        return result.duration_minutes

    async def assemble_state(
        self,
        engineer: EngineerSettings,
        day: date,
        candidate: ScheduleCandidate | None = None,
        leniency_minutes: int = config.DEFAULT_LENIENCY_MINUTES,
        virtual_jobs: Sequence[ScheduleCandidate] | None = None,
    ) -> ScheduleState:
        now = self.clock.now()
        booked, holds = await asyncio.gather(
            self.repository.jobs_on_date(engineer.id, day),
            self.repository.soft_holds_on_date(engineer.id, day, now),
        )

        extra = list(virtual_jobs or [])
        if candidate is not None:
            extra.append(candidate)

        jobs = []
        seen = set()
        for job in [*booked, *holds, *extra]:
            if job.id in seen:
                continue
            seen.add(job.id)
            jobs.append(job)

        return ScheduleState(
            engineer=engineer,
            day=day,
            working_hours=working_hours_for(engineer, day),
            leniency_minutes=leniency_minutes,
            jobs=jobs,
        )

    async def calculate_day_fit(
        self,
        engineer: EngineerSettings,
        day: date,
        candidate: ScheduleCandidate | None = None,
        leniency_minutes: int = config.DEFAULT_LENIENCY_MINUTES,
        virtual_jobs: Sequence[ScheduleCandidate] | None = None,
    ) -> DayFitResult:
        wh = working_hours_for(engineer, day)
        if wh is None or not wh.is_available:
            return _unavailable()

        state = await self.assemble_state(engineer, day, candidate, leniency_minutes, virtual_jobs)
        result = await compute_day_fit(state, self.estimator)
        logger.debug(
            "Day fit for %s on %s: %s",
            engineer.name or engineer.id, day.isoformat(), ", ".join(result.reasons),
        )
        return result

    async def would_exceed_capacity(
        self,
        engineer: EngineerSettings,
        day: date,
        candidate: ScheduleCandidate,
        leniency_minutes: int = config.DEFAULT_LENIENCY_MINUTES,
    ) -> tuple[bool, str]:
        result = await self.calculate_day_fit(engineer, day, candidate, leniency_minutes)
        return not result.can_fit, ", ".join(result.reasons)
