"""
Engineer recommendations for a job.

For every available engineer, concurrently:
  setup check -> service-area match -> travel ceilings -> forward date search
Survivors are scored and ranked; everyone else ends up in the diagnostics
with the reasons they were dropped. A missing job location is the only
condition that stops the whole run.
"""
import asyncio
import logging
import uuid
from collections import Counter
from datetime import date, timedelta
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from . import config
from .adapters import candidate_from_job
from .availability import is_engineer_available_on_date, is_weekend, validate_engineer_setup
from .clock import SYSTEM_CLOCK, Clock
from .day_fit import DayFitCalculator
from .errors import MappingError
from .postcodes import get_best_postcode, normalize_postcode
from .schemas import (
    Diagnostics,
    EngineerSettings,
    Job,
    Recommendation,
    RecommendationResult,
    ScheduleCandidate,
    SchedulingSettings,
    ServiceAreaMatch,
    TravelResult,
)
from .scoring import calculate_engineer_score, generate_recommendation_reasons, ranking_key
from .service_areas import can_serve
from .usage import current_session

logger = logging.getLogger(__name__)

NO_LOCATION_MESSAGE = (
    "No postcode available - cannot calculate engineer recommendations without location data"
)


class RecommendationOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    start_date: date | None = None
    preloaded_engineers: list[EngineerSettings] | None = None
    workload_lookup: Callable[[str, date], int] | None = None
    client_blocked_dates: set[date] | None = None
    bank_holidays: set[date] = Field(default_factory=set)
    fast_mode: bool = False


class _Run(BaseModel):
    """Everything one recommendation run shares across engineers."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    postcode: str
    candidate: ScheduleCandidate
    settings: SchedulingSettings
    minimum_date: date
    blocked_dates: set[date]
    bank_holidays: set[date]
    fast_mode: bool
    batch_travel: dict[str, TravelResult] = Field(default_factory=dict)
    workload_lookup: Callable[[str, date], int] | None = None


class RecommendationEngine:
    def __init__(self, repository, distance, clock: Clock = SYSTEM_CLOCK, day_fit: DayFitCalculator | None = None):
        self.repository = repository
        self.distance = distance
        self.clock = clock
        self.day_fit = day_fit or DayFitCalculator(repository, distance, clock)

    async def get_smart_engineer_recommendations(
        self,
        job: Job,
        postcode: str | None = None,
        options: RecommendationOptions | None = None,
    ) -> RecommendationResult:
        token = None
        if current_session.get() is None:
            token = current_session.set(str(uuid.uuid4()))
        try:
            return await self._recommend(job, postcode, options or RecommendationOptions())
        finally:
            if token is not None:
                current_session.reset(token)

    async def _recommend(self, job: Job, postcode: str | None, options: RecommendationOptions) -> RecommendationResult:
        settings = await self.repository.scheduling_settings()

        final_postcode = normalize_postcode(postcode) or get_best_postcode(job)
        if not final_postcode:
            logger.warning("No postcode found for job %s", job.id)
            return RecommendationResult(settings=settings, error=NO_LOCATION_MESSAGE)

        engineers = options.preloaded_engineers
        if engineers is None:
            engineers = await self.repository.list_available_engineers()

        if not engineers:
            logger.info("No available engineers found")
            return RecommendationResult(settings=settings, diagnostics=Diagnostics(total_engineers=0))

        now = self.clock.now()
        run = _Run(
            postcode=final_postcode,
            candidate=candidate_from_job(job, final_postcode),
            settings=settings,
            minimum_date=options.start_date or (now + timedelta(hours=settings.minimum_advance_hours)).date(),
            blocked_dates=await self._blocked_dates(job, options),
            bank_holidays=options.bank_holidays,
            fast_mode=options.fast_mode,
            workload_lookup=options.workload_lookup,
        )

        if run.fast_mode:
            await self._prepare_fast_mode(run, engineers)

        logger.info("Evaluating %d engineers for %s", len(engineers), final_postcode)
        outcomes = await asyncio.gather(*(self._evaluate(e, run) for e in engineers))

        recommendations = sorted(
            (rec for rec, _ in outcomes if rec is not None),
            key=ranking_key,
        )

        labels = Counter(e.name or e.id for e in engineers)
        exclusion_reasons = {}
        for engineer, (_, reasons) in zip(engineers, outcomes):
            if reasons:
                label = engineer.name or engineer.id
                if labels[label] > 1:
                    label = f"{label} ({engineer.id})"
                exclusion_reasons.setdefault(label, []).extend(reasons)

        top = settings.top_recommendations_count or 3
        logger.info(
            "Generated %d recommendations, %d engineers excluded",
            len(recommendations), len(exclusion_reasons),
        )
        return RecommendationResult(
            featured=recommendations[:top],
            all=recommendations,
            settings=settings,
            diagnostics=Diagnostics(
                total_engineers=len(engineers),
                excluded_engineers=len(exclusion_reasons),
                exclusion_reasons=exclusion_reasons,
            ),
        )

    async def _blocked_dates(self, job: Job, options: RecommendationOptions) -> set[date]:
        if options.client_blocked_dates is not None:
            return set(options.client_blocked_dates)
        if not job.client_id:
            return set()
        try:
            return await self.repository.client_blocked_dates(job.client_id)
        except Exception as e:
            logger.warning("Failed to fetch client blocked dates for %s: %s", job.client_id, e)
            return set()

    async def _prepare_fast_mode(self, run: _Run, engineers: list[EngineerSettings]):
        homes = [e.starting_postcode for e in engineers if e.starting_postcode]
        if homes:
            try:
                run.batch_travel = await self.distance.batch_travel_to(homes, run.postcode)
            except MappingError as e:
                logger.warning("Batch distance call failed, falling back to estimates: %s", e)

        if run.workload_lookup is None:
            try:
                workload = await self.repository.workload_map(
                    [e.id for e in engineers],
                    run.minimum_date,
                    config.FAST_MODE_SEARCH_DAYS,
                    self.clock.now(),
                )
                run.workload_lookup = lambda engineer_id, day: workload.get((engineer_id, day), 0)
            except Exception as e:
                logger.warning("Could not preload workload map: %s", e)

    @staticmethod
    def _area_estimate(match: ServiceAreaMatch) -> TravelResult:
        area_minutes = match.max_travel_minutes
        if match.can_serve:
            minutes = area_minutes or 60
        else:
            minutes = config.SOFT_MATCH_TRAVEL_CEILING_MINUTES
        return TravelResult(
            distance_miles=round(area_minutes / 2) if area_minutes else 25,
            duration_minutes=minutes,
        )

    async def _travel(self, engineer: EngineerSettings, run: _Run, match: ServiceAreaMatch) -> TravelResult:
        if run.fast_mode:
            if engineer.starting_postcode in run.batch_travel:
                return run.batch_travel[engineer.starting_postcode]
            # batch call failed or skipped this home
            return self._area_estimate(match)
        try:
            return await self.distance.travel_time(engineer.starting_postcode, run.postcode)
        except MappingError as e:
            minutes = config.DEFAULT_TRAVEL_MINUTES
            logger.warning(
                "Failed to get live distance for %s, using %d min estimate: %s",
                engineer.name or engineer.id, minutes, e,
            )
            return TravelResult(distance_miles=round(minutes / 2), duration_minutes=minutes)

    @staticmethod
    def _travel_ceiling(match: ServiceAreaMatch, settings: SchedulingSettings) -> int:
        if match.can_serve:
            return match.max_travel_minutes or config.SOFT_MATCH_TRAVEL_CEILING_MINUTES
        return settings.max_travel_minutes_fallback or 120

    async def _evaluate(self, engineer: EngineerSettings, run: _Run) -> tuple[Recommendation | None, list[str]]:
        label = engineer.name or engineer.id
        try:
            setup = validate_engineer_setup(engineer)
            if not setup.is_complete:
                logger.info("Engineer %s setup incomplete: %s", label, setup.missing_items)
                return None, [f"Missing: {item}" for item in setup.missing_items]
            engineer = setup.engineer

            settings = run.settings
            match = can_serve(engineer, run.postcode)
            if settings.require_service_area_match and not match.can_serve:
                logger.info("Engineer %s excluded, no service area for %s (strict mode)", label, run.postcode)
                return None, [f"No service area coverage for {run.postcode} (strict mode)"]

            travel = await self._travel(engineer, run, match)
            ceiling = self._travel_ceiling(match, settings)
            if travel.duration_minutes > ceiling:
                logger.info("Engineer %s travel time %d exceeds limit %d", label, travel.duration_minutes, ceiling)
                return None, [f"Travel time {travel.duration_minutes}min exceeds limit {ceiling}min"]

            if travel.distance_miles > settings.max_distance_miles:
                logger.info("Engineer %s too far: %s miles", label, travel.distance_miles)
                return None, [
                    f"Too far: {travel.distance_miles:g} miles > {settings.max_distance_miles:g} limit"
                ]

            available_date, workload, checked, limit = await self._first_available_date(engineer, run)
            if available_date is None:
                logger.info("Engineer %s has no availability within %d days", label, checked)
                return None, [f"No availability within {limit} days (checked {checked} days)"]

            rec = Recommendation(
                engineer=engineer,
                distance=travel.distance_miles,
                travel_time=travel.duration_minutes,
                score=calculate_engineer_score(
                    travel.distance_miles, travel.duration_minutes, available_date, self.clock.now(), workload
                ),
                reasons=generate_recommendation_reasons(
                    engineer,
                    travel.distance_miles,
                    travel.duration_minutes,
                    available_date,
                    workload,
                    match.can_serve,
                ),
                available_date=available_date,
                daily_workload_that_day=workload,
                service_area_match=match.can_serve,
            )
            return rec, []
        except Exception as e:
            logger.exception("Error evaluating engineer %s", label)
            return None, [f"Evaluation error: {e}"]

    def _search_limit(self, settings: SchedulingSettings, fast_mode: bool) -> int:
        horizon = settings.recommendation_search_horizon_days or 120
        if fast_mode:
            return min(horizon, config.FAST_MODE_SEARCH_DAYS)
        # a horizon shorter than a year keeps going to the extended limit
        return max(horizon, config.EXTENDED_SEARCH_DAYS)

    async def _first_available_date(
        self, engineer: EngineerSettings, run: _Run
    ) -> tuple[date | None, int, int, int]:
        """
        Walk forward one day at a time from the minimum date and stop at the
        first day that passes every check. Returns (date, workload that day,
        days checked, search limit).
        """
        settings = run.settings
        limit = self._search_limit(settings, run.fast_mode)
        cap = engineer.max_jobs_per_day or settings.max_jobs_per_day
        now = self.clock.now()

        for offset in range(limit):
            day = run.minimum_date + timedelta(days=offset)

            if day in run.blocked_dates:
                continue
            if not settings.allow_holiday_bookings and day in run.bank_holidays:
                continue
            if not is_engineer_available_on_date(engineer, day):
                continue
            if is_weekend(day) and not settings.allow_weekend_bookings:
                continue

            if run.workload_lookup is not None:
                workload = run.workload_lookup(engineer.id, day)
            else:
                workload = await self.repository.daily_workload(engineer.id, day, now)
            if workload >= cap:
                continue

            fit = await self.day_fit.calculate_day_fit(
                engineer, day, run.candidate, settings.day_lenience_minutes
            )
            if fit.can_fit:
                logger.debug(
                    "%s available on %s, workload %d/%d, %s",
                    engineer.name or engineer.id, day.isoformat(), workload, cap, ", ".join(fit.reasons),
                )
                return day, workload, offset + 1, limit

        return None, 0, limit, limit
