from fastapi import APIRouter, Depends, HTTPException, Request

from .adapters import candidate_from_job
from .clock import SYSTEM_CLOCK
from .day_fit import DayFitCalculator
from .day_fit_matrix import calculate_day_fit_matrix
from .distance import DistanceService
from .errors import InvalidTimeError, MappingError
from .recommendations import RecommendationEngine, RecommendationOptions
from .schemas import (
    DayFitRequest,
    DayFitResult,
    EngineerSettings,
    MatrixDayFitRequest,
    MatrixDayFitResult,
    RecommendationRequest,
    RecommendationResult,
    ServiceAreaMatch,
    TravelMatrix,
    TravelMatrixRequest,
    TravelResult,
    UsageSummary,
)
from .service_areas import can_serve
from .usage import UsageTracker

router = APIRouter()


# ---- Dependencies ----

def get_repository(request: Request):
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Scheduling storage is not configured")
    return repository


def get_distance(request: Request) -> DistanceService:
    return request.app.state.distance


def get_clock(request: Request):
    return getattr(request.app.state, "clock", SYSTEM_CLOCK)


def get_usage(request: Request) -> UsageTracker:
    return request.app.state.usage


def get_day_fit(
    repository=Depends(get_repository),
    distance=Depends(get_distance),
    clock=Depends(get_clock),
) -> DayFitCalculator:
    return DayFitCalculator(repository, distance, clock)


def get_recommendation_engine(
    repository=Depends(get_repository),
    distance=Depends(get_distance),
    clock=Depends(get_clock),
    day_fit: DayFitCalculator = Depends(get_day_fit),
) -> RecommendationEngine:
    return RecommendationEngine(repository, distance, clock, day_fit)


async def _engineer_or_404(repository, engineer_id: str) -> EngineerSettings:
    engineer = await repository.get_engineer(engineer_id)
    if not engineer:
        raise HTTPException(status_code=404, detail="Engineer not found")
    return engineer


# ---- Recommendations ----

@router.post("/recommendations", response_model=RecommendationResult)
async def recommend_engineers(
    data: RecommendationRequest,
    engine: RecommendationEngine = Depends(get_recommendation_engine),
):
    options = RecommendationOptions(
        start_date=data.start_date,
        fast_mode=data.fast_mode,
        bank_holidays=set(data.bank_holidays),
    )
    return await engine.get_smart_engineer_recommendations(data.job, data.postcode, options)


# ---- Day fit ----

@router.post("/engineers/{engineer_id}/day-fit", response_model=DayFitResult)
async def engineer_day_fit(
    engineer_id: str,
    data: DayFitRequest,
    repository=Depends(get_repository),
    day_fit: DayFitCalculator = Depends(get_day_fit),
):
    engineer = await _engineer_or_404(repository, engineer_id)
    candidate = candidate_from_job(data.candidate) if data.candidate else None
    virtual_jobs = [candidate_from_job(j) for j in data.virtual_jobs]

    try:
        return await day_fit.calculate_day_fit(
            engineer, data.day, candidate, data.leniency_minutes, virtual_jobs
        )
    except InvalidTimeError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/engineers/{engineer_id}/day-fit/matrix", response_model=MatrixDayFitResult)
async def engineer_day_fit_matrix(
    engineer_id: str,
    data: MatrixDayFitRequest,
    repository=Depends(get_repository),
    distance: DistanceService = Depends(get_distance),
    day_fit: DayFitCalculator = Depends(get_day_fit),
):
    engineer = await _engineer_or_404(repository, engineer_id)
    new_job = candidate_from_job(data.new_job)

    if data.existing_jobs:
        existing = [candidate_from_job(j) for j in data.existing_jobs]
    else:
        # nothing supplied: preview against what is already booked or held
        state = await day_fit.assemble_state(engineer, data.day)
        existing = state.jobs

    try:
        return await calculate_day_fit_matrix(
            engineer,
            data.day,
            new_job,
            existing,
            data.tolerance_multiplier,
            distance=distance,
        )
    except InvalidTimeError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/engineers/{engineer_id}/coverage", response_model=ServiceAreaMatch)
async def engineer_coverage(engineer_id: str, postcode: str, repository=Depends(get_repository)):
    engineer = await _engineer_or_404(repository, engineer_id)
    return can_serve(engineer, postcode)


# ---- Travel ----

@router.get("/travel", response_model=TravelResult)
async def travel(origin: str, destination: str, distance: DistanceService = Depends(get_distance)):
    try:
        return await distance.travel_time(origin, destination)
    except MappingError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/travel/matrix", response_model=TravelMatrix)
async def travel_matrix(data: TravelMatrixRequest, distance: DistanceService = Depends(get_distance)):
    try:
        return await distance.travel_matrix(data.locations)
    except MappingError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.delete("/travel/cache")
async def clear_travel_cache(include_persistent: bool = False, distance: DistanceService = Depends(get_distance)):
    cleared = await distance.clear(include_persistent=include_persistent)
    return {"message": "Distance cache cleared", "cleared": cleared}


# ---- Usage ----

@router.get("/usage/{session_id}", response_model=UsageSummary)
async def usage_summary(session_id: str, usage: UsageTracker = Depends(get_usage)):
    return usage.summary(session_id)
