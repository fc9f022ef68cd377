from datetime import date

import pytest
from conftest import make_engineer

from scheduling_service.day_fit import (
    DayFitCalculator,
    compute_day_fit,
    format_minutes,
    parse_time,
    work_day_minutes,
)
from scheduling_service.errors import InvalidTimeError
from scheduling_service.routing import NearestNeighborRoute, nearest_neighbor_order
from scheduling_service.schemas import ScheduleCandidate, ScheduleState, WorkingHours

MONDAY = date(2025, 1, 6)
SATURDAY = date(2025, 1, 11)


class FixedEstimator:
    def __init__(self, minutes):
        self.minutes = minutes
        self.calls = 0

    async def total_minutes(self, home, jobs):
        self.calls += 1
        return self.minutes


def job(job_id, postcode, minutes=180, start_time=None):
    return ScheduleCandidate(id=job_id, postcode=postcode, duration_minutes=minutes, start_time=start_time)


def legs(table, default=20):
    async def lookup(origin, destination):
        return table.get((origin, destination), default)
    return lookup


@pytest.mark.parametrize("value, minutes", [("09:00", 540), ("17:30:00", 1050), ("7:05", 425), ("24:00", 1440)])
def test_parse_time(value, minutes):
    assert parse_time(value) == minutes


@pytest.mark.parametrize("value", ["", "9am", "25:00", "12:60", "24:30"])
def test_parse_time_rejects_garbage(value):
    with pytest.raises(InvalidTimeError):
        parse_time(value)


def test_invalid_time_is_a_value_error():
    with pytest.raises(ValueError):
        parse_time("noon")


def test_format_minutes():
    assert format_minutes(495) == "8h 15m"
    assert format_minutes(0) == "0h 0m"


def test_work_day_includes_leniency():
    wh = WorkingHours(day_of_week=1, start_time="09:00", end_time="17:00")
    assert work_day_minutes(make_engineer(), wh, 15) == 495


def test_subcontractor_ignoring_hours_gets_full_day():
    wh = WorkingHours(day_of_week=1)
    engineer = make_engineer(is_subcontractor=True, ignore_working_hours=True)
    assert work_day_minutes(engineer, wh, 15) == 1440

    # both flags are needed
    assert work_day_minutes(make_engineer(ignore_working_hours=True), wh, 15) == 495


async def test_two_jobs_with_fallback_legs_fit(repo, distance, provider, clock):
    provider.fail_route = True
    engineer = make_engineer()
    repo.jobs[(engineer.id, MONDAY)] = [job("o1", "DA5 1AA", 120)]
    calculator = DayFitCalculator(repo, distance, clock)

    result = await calculator.calculate_day_fit(engineer, MONDAY, job("o2", "DA5 2BB", 180))

    # 120 + 180 of work, three 30 minute estimated legs
    assert result.can_fit is True
    assert result.total_minutes == 390
    assert result.work_day_minutes == 495
    assert result.overage_minutes == 0
    assert result.reasons == ["Fits within 8h 15m work day", "2 jobs, 6h 30m total"]


async def test_saturday_is_unavailable_without_lookups(repo, distance, provider, clock):
    calculator = DayFitCalculator(repo, distance, clock)

    result = await calculator.calculate_day_fit(make_engineer(), SATURDAY, job("o1", "DA5 1AA"))

    assert result.can_fit is False
    assert result.reasons == ["Engineer not available on this day"]
    assert sum(provider.calls.values()) == 0


async def test_empty_day(repo, distance, clock):
    calculator = DayFitCalculator(repo, distance, clock)

    result = await calculator.calculate_day_fit(make_engineer(), MONDAY)

    assert result.can_fit is True
    assert result.total_minutes == 0
    assert result.work_day_minutes == 495
    assert result.reasons == ["No jobs scheduled"]


async def test_overage_is_reported(repo, distance, clock):
    estimator = FixedEstimator(600)
    calculator = DayFitCalculator(repo, distance, clock, estimator=estimator)

    result = await calculator.calculate_day_fit(make_engineer(), MONDAY, job("o1", "DA5 1AA"))

    assert result.can_fit is False
    assert result.overage_minutes == 105
    assert result.reasons == ["Exceeds work day by 1h 45m", "1 job, 10h 0m total"]


async def test_exact_fit_is_allowed():
    state = ScheduleState(
        engineer=make_engineer(),
        day=MONDAY,
        working_hours=WorkingHours(day_of_week=1),
        leniency_minutes=15,
        jobs=[job("o1", "DA5 1AA")],
    )

    result = await compute_day_fit(state, FixedEstimator(495))

    assert result.can_fit is True
    assert result.overage_minutes == 0


async def test_missing_template_uses_default_hours(repo, distance, clock):
    calculator = DayFitCalculator(repo, distance, clock)

    result = await calculator.calculate_day_fit(make_engineer(working_hours=[]), MONDAY)

    assert result.work_day_minutes == 495


async def test_jobs_are_deduplicated_by_id(repo, distance, clock):
    engineer = make_engineer()
    repo.jobs[(engineer.id, MONDAY)] = [job("o1", "DA5 1AA")]
    repo.holds[(engineer.id, MONDAY)] = [job("o1", "DA5 1AA"), job("o2", "SE1 1AA")]
    calculator = DayFitCalculator(repo, distance, clock)

    state = await calculator.assemble_state(
        engineer,
        MONDAY,
        candidate=job("o1", "DA5 1AA"),
        virtual_jobs=[job("v1", "LU1 1AA"), job("o2", "SE1 1AA")],
    )

    assert [j.id for j in state.jobs] == ["o1", "o2", "v1"]
    assert state.working_hours.start_time == "09:00"


async def test_holds_and_virtual_jobs_count_towards_the_day(repo, distance, clock):
    engineer = make_engineer()
    repo.holds[(engineer.id, MONDAY)] = [job("h1", "DA5 1AA", 240)]
    calculator = DayFitCalculator(repo, distance, clock)

    result = await calculator.calculate_day_fit(
        engineer, MONDAY, job("o2", "DA5 2BB", 180), virtual_jobs=[job("v1", "DA5 3CC", 60)]
    )

    # 480 of work and four 20 minute legs
    assert result.total_minutes == 560
    assert result.can_fit is False
    assert result.reasons[0] == "Exceeds work day by 1h 5m"
    assert result.reasons[1] == "3 jobs, 9h 20m total"


async def test_no_home_counts_work_only():
    route = NearestNeighborRoute(legs({}))

    total = await route.total_minutes(None, [job("o1", "DA5 1AA", 120), job("o2", "SE1 1AA", 60)])

    assert total == 180


async def test_nearest_neighbour_walk():
    table = {
        ("HOME", "A"): 40,
        ("HOME", "B"): 10,
        ("B", "A"): 15,
        ("A", "HOME"): 30,
    }
    a, b = job("a", "A", 60), job("b", "B", 60)

    ordered = await nearest_neighbor_order("HOME", [a, b], legs(table))
    total = await NearestNeighborRoute(legs(table)).total_minutes("HOME", [a, b])

    assert [(j.id, m) for j, m in ordered] == [("b", 10), ("a", 15)]
    assert total == 120 + 10 + 15 + 30


async def test_nearest_neighbour_tie_keeps_first_job():
    a, b = job("a", "A"), job("b", "B")

    ordered = await nearest_neighbor_order("HOME", [a, b], legs({}, default=25))

    assert [j.id for j, _ in ordered] == ["a", "b"]


async def test_jobs_without_postcode_skip_the_walk():
    total = await NearestNeighborRoute(legs({})).total_minutes("HOME", [job("a", None, 60), job("b", "B", 60)])

    # home -> B and back, both legs 20
    assert total == 120 + 40


async def test_no_return_leg_when_last_job_is_at_home():
    table = {("HOME", "HOME"): 0}

    total = await NearestNeighborRoute(legs(table)).total_minutes("HOME", [job("a", "HOME", 60)])

    assert total == 60


async def test_would_exceed_capacity(repo, distance, clock):
    calculator = DayFitCalculator(repo, distance, clock, estimator=FixedEstimator(600))

    exceeds, reason = await calculator.would_exceed_capacity(make_engineer(), MONDAY, job("o1", "DA5 1AA"))

    assert exceeds is True
    assert reason == "Exceeds work day by 1h 45m, 1 job, 10h 0m total"


async def test_would_not_exceed_capacity_on_empty_day(repo, distance, clock):
    calculator = DayFitCalculator(repo, distance, clock, estimator=FixedEstimator(200))

    exceeds, reason = await calculator.would_exceed_capacity(make_engineer(), MONDAY, job("o1", "DA5 1AA"))

    assert exceeds is False
    assert reason.startswith("Fits within 8h 15m work day")
