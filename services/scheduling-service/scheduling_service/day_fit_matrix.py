"""
Day-fit preview backed by one travel-matrix call.

Builds the same nearest-neighbour walk as the live calculator, but reads
every leg from a single matrix over {home, job locations} and lays the day
out as a timed schedule.
"""
import logging
from datetime import date
from typing import Sequence

from . import config
from .availability import working_hours_for
from .day_fit import parse_time
from .errors import MappingError
from .postcodes import cache_key
from .routing import nearest_neighbor_order
from .schemas import EngineerSettings, MatrixDayFitResult, ScheduleCandidate, ScheduleEntry, TravelMatrix

logger = logging.getLogger(__name__)


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


async def calculate_day_fit_matrix(
    engineer: EngineerSettings,
    day: date,
    new_job: ScheduleCandidate,
    existing_jobs: Sequence[ScheduleCandidate] = (),
    tolerance_multiplier: float = 1.0,
    *,
    distance,
) -> MatrixDayFitResult:
    wh = working_hours_for(engineer, day)
    if wh is None or not wh.is_available:
        return MatrixDayFitResult(can_fit=False, conflicts=["Engineer not available on this day"])

    home = engineer.starting_postcode
    if not home:
        return MatrixDayFitResult(can_fit=False, conflicts=["Engineer has no starting postcode"])

    jobs = []
    seen = set()
    for job in [*existing_jobs, new_job]:
        if job.id not in seen:
            seen.add(job.id)
            jobs.append(job)

    matrix: TravelMatrix | None = None
    try:
        matrix = await distance.travel_matrix([home, *(j.postcode for j in jobs if j.postcode)])
    except MappingError as e:
        logger.warning(
            "Travel matrix failed for %s on %s, using %d min per leg: %s",
            engineer.name or engineer.id, day.isoformat(), config.DEFAULT_TRAVEL_MINUTES, e,
        )

    async def leg(origin: str, destination: str) -> int:
        if cache_key(origin) == cache_key(destination):
            return 0
        minutes = matrix.duration(origin, destination) if matrix is not None else None
        return config.DEFAULT_TRAVEL_MINUTES if minutes is None else minutes

    ordered = await nearest_neighbor_order(home, jobs, leg)
    unlocated = [j for j in jobs if not j.postcode]

    schedule = []
    current = parse_time(wh.start_time)
    total_travel = 0
    location = home

    for job, minutes in ordered:
        if minutes > 0:
            schedule.append(ScheduleEntry(time=minutes_to_time(current), location=job.postcode, type="travel", duration=minutes))
            current += minutes
            total_travel += minutes

        if job.start_time:
            # a fixed time preference holds the job until then
            current = max(current, parse_time(job.start_time))

        schedule.append(ScheduleEntry(time=minutes_to_time(current), location=job.postcode, type="job", duration=job.duration_minutes))
        current += job.duration_minutes
        location = job.postcode

    for job in unlocated:
        schedule.append(ScheduleEntry(time=minutes_to_time(current), location="Unknown location", type="job", duration=job.duration_minutes))
        current += job.duration_minutes

    back = await leg(location, home)
    if back > 0:
        schedule.append(ScheduleEntry(time=minutes_to_time(current), location=home, type="travel", duration=back))
        current += back
        total_travel += back

    conflicts = []
    ignores_hours = engineer.is_subcontractor and engineer.ignore_working_hours
    if not ignores_hours and current > parse_time(wh.end_time):
        conflicts.append(f"Schedule extends beyond working hours ({minutes_to_time(current)} > {wh.end_time})")

    max_travel = config.MATRIX_BASE_TRAVEL_BUDGET_MINUTES * tolerance_multiplier
    if total_travel > max_travel:
        conflicts.append(f"Total travel time ({total_travel}min) exceeds tolerance ({max_travel:g}min)")

    return MatrixDayFitResult(
        can_fit=not conflicts,
        total_travel_minutes=total_travel,
        conflicts=conflicts,
        schedule=schedule,
    )
