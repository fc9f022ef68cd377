from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .postcodes import cache_key


# ---- Engineer (scheduling view) ----

class WorkingHours(BaseModel):
    # 0 = Sunday ... 6 = Saturday, as stored by the platform
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = "09:00"
    end_time: str = "17:00"
    is_available: bool = True


class ServiceArea(BaseModel):
    postcode_area: str
    max_travel_minutes: int | None = None


class TimeOff(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = None
    status: str = "approved"


class EngineerSettings(BaseModel):
    id: str
    name: str = ""
    email: str | None = None
    starting_postcode: str | None = None
    availability: bool = True
    service_areas: list[ServiceArea] = Field(default_factory=list)
    working_hours: list[WorkingHours] = Field(default_factory=list)
    time_off: list[TimeOff] = Field(default_factory=list)
    is_subcontractor: bool = False
    ignore_working_hours: bool = False
    max_jobs_per_day: int | None = None


class SetupValidation(BaseModel):
    is_complete: bool
    missing_items: list[str] = Field(default_factory=list)
    engineer: EngineerSettings


class ServiceAreaMatch(BaseModel):
    can_serve: bool
    max_travel_minutes: int | None = None
    match_type: Literal["area", "exact", "prefix"] | None = None


# ---- Jobs ----

class ClientInfo(BaseModel):
    id: str | None = None
    full_name: str | None = None
    postcode: str | None = None
    address: str | None = None


class Job(BaseModel):
    id: str
    order_number: str | None = None
    client_id: str | None = None
    postcode: str | None = None
    job_address: str | None = None
    client: ClientInfo | None = None
    estimated_duration_hours: float | None = None
    time_window: str | None = None
    engineer_id: str | None = None
    scheduled_install_date: date | None = None
    status: str | None = None


class ScheduleCandidate(BaseModel):
    """
    The only job shape the day-fit calculators see.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    postcode: str | None = None
    duration_minutes: int
    start_time: str | None = None


class ScheduleState(BaseModel):
    engineer: EngineerSettings
    day: date
    working_hours: WorkingHours | None = None
    leniency_minutes: int = 15
    jobs: list[ScheduleCandidate] = Field(default_factory=list)


# ---- Day fit ----

class DayFitResult(BaseModel):
    can_fit: bool
    total_minutes: int = 0
    work_day_minutes: int = 0
    overage_minutes: int = 0
    reasons: list[str] = Field(default_factory=list)


class ScheduleEntry(BaseModel):
    time: str
    location: str
    type: Literal["travel", "job"]
    duration: int


class MatrixDayFitResult(BaseModel):
    can_fit: bool
    total_travel_minutes: int = 0
    conflicts: list[str] = Field(default_factory=list)
    schedule: list[ScheduleEntry] = Field(default_factory=list)


# ---- Travel ----

class TravelResult(BaseModel):
    distance_miles: float
    duration_minutes: int


class TravelMatrix(BaseModel):
    locations: list[str]
    durations: list[list[int | None]]
    distances: list[list[float | None]]

    def index_of(self, location: str) -> int | None:
        key = cache_key(location)
        for i, loc in enumerate(self.locations):
            if cache_key(loc) == key:
                return i
        return None

    def duration(self, origin: str, destination: str) -> int | None:
        i = self.index_of(origin)
        j = self.index_of(destination)
        if i is None or j is None:
            return None
        return self.durations[i][j]


# ---- Recommendations ----

class SchedulingSettings(BaseModel):
    minimum_advance_hours: int = 48
    max_distance_miles: float = 50
    max_jobs_per_day: int = 3
    working_hours_start: str = "09:00"
    working_hours_end: str = "17:00"
    day_lenience_minutes: int = 15
    allow_weekend_bookings: bool = False
    allow_holiday_bookings: bool = False
    require_client_confirmation: bool = True
    recommendation_search_horizon_days: int = 120
    top_recommendations_count: int = 3
    require_service_area_match: bool = False
    max_travel_minutes_fallback: int = 120


class Recommendation(BaseModel):
    engineer: EngineerSettings
    distance: float
    travel_time: int
    score: int
    reasons: list[str] = Field(default_factory=list)
    available_date: date
    daily_workload_that_day: int = 0
    service_area_match: bool = False


class Diagnostics(BaseModel):
    total_engineers: int = 0
    excluded_engineers: int = 0
    exclusion_reasons: dict[str, list[str]] = Field(default_factory=dict)


class RecommendationResult(BaseModel):
    featured: list[Recommendation] = Field(default_factory=list)
    all: list[Recommendation] = Field(default_factory=list)
    settings: SchedulingSettings | None = None
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    error: str | None = None


class UsageSummary(BaseModel):
    session_id: str
    geocoding: int = 0
    directions: int = 0
    matrix: int = 0
    cache_hits: int = 0
    total: int = 0
    cache_hit_rate: float = 0.0


# ---- API requests ----

class RecommendationRequest(BaseModel):
    job: Job
    postcode: str | None = None
    start_date: date | None = None
    fast_mode: bool = False
    bank_holidays: list[date] = Field(default_factory=list)


class DayFitRequest(BaseModel):
    day: date
    candidate: Job | None = None
    leniency_minutes: int = 15
    virtual_jobs: list[Job] = Field(default_factory=list)


class MatrixDayFitRequest(BaseModel):
    day: date
    new_job: Job
    existing_jobs: list[Job] = Field(default_factory=list)
    tolerance_multiplier: float = 1.0


class TravelMatrixRequest(BaseModel):
    locations: list[str] = Field(min_length=1)
