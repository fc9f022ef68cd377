import logging
from datetime import date

from .schemas import EngineerSettings, SetupValidation, WorkingHours

logger = logging.getLogger(__name__)


def platform_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def is_weekend(day: date) -> bool:
    return platform_weekday(day) in (0, 6)


def default_working_hours() -> list[WorkingHours]:
    # Monday (1) .. Friday (5), 09:00-17:00
    return [
        WorkingHours(day_of_week=d, start_time="09:00", end_time="17:00", is_available=True)
        for d in range(1, 6)
    ]


def effective_working_hours(engineer: EngineerSettings) -> list[WorkingHours]:
    return engineer.working_hours or default_working_hours()


def working_hours_for(engineer: EngineerSettings, day: date) -> WorkingHours | None:
    weekday = platform_weekday(day)
    for wh in effective_working_hours(engineer):
        if wh.day_of_week == weekday:
            return wh
    return None


def validate_engineer_setup(engineer: EngineerSettings) -> SetupValidation:
    """
    A starting postcode is mandatory. Missing weekly hours are not a reason
    to drop the engineer: the returned copy carries the default template.
    """
    missing_items = []
    if not (engineer.starting_postcode or "").strip():
        missing_items.append("Starting postcode")

    if not engineer.working_hours:
        logger.info(
            "Engineer %s has no working hours configured, using default Mon-Fri 9-5",
            engineer.name or engineer.id,
        )
        engineer = engineer.model_copy(update={"working_hours": default_working_hours()})

    return SetupValidation(
        is_complete=not missing_items,
        missing_items=missing_items,
        engineer=engineer,
    )


def is_on_time_off(engineer: EngineerSettings, day: date) -> bool:
    for time_off in engineer.time_off:
        if time_off.status and time_off.status != "approved":
            continue
        if time_off.start_date <= day <= time_off.end_date:
            return True
    return False


def is_engineer_available_on_date(engineer: EngineerSettings, day: date) -> bool:
    if not engineer.availability:
        return False

    if is_on_time_off(engineer, day):
        return False

    wh = working_hours_for(engineer, day)
    return bool(wh and wh.is_available)
