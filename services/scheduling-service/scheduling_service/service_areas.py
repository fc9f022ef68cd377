import logging

from .postcodes import get_area_letters, get_outward_code, is_area_only
from .schemas import EngineerSettings, ServiceAreaMatch

logger = logging.getLogger(__name__)

DEFAULT_AREA_TRAVEL_MINUTES = 60


def can_serve(engineer: EngineerSettings, postcode: str | None) -> ServiceAreaMatch:
    """
    Tiered match of a job postcode against the engineer's declared areas.

    For each declared area, in order:
      1. letters-only area ("MK") vs the job's area letters -> "area"
      2. same outward code ("DA5" vs "DA5") -> "exact"
      3. same area letters ("DA1" vs "DA5") -> "prefix"
    The first area that matches wins and its travel ceiling is returned.
    """
    if not engineer.service_areas:
        return ServiceAreaMatch(can_serve=False)

    job_outward = get_outward_code(postcode)
    if not job_outward:
        return ServiceAreaMatch(can_serve=False)

    job_letters = get_area_letters(job_outward)

    for area in engineer.service_areas:
        configured = (area.postcode_area or "").upper().strip()
        if not configured:
            continue

        if is_area_only(configured) and job_letters == configured:
            return ServiceAreaMatch(
                can_serve=True,
                max_travel_minutes=area.max_travel_minutes,
                match_type="area",
            )

        area_outward = get_outward_code(configured)
        if area_outward and area_outward == job_outward:
            return ServiceAreaMatch(
                can_serve=True,
                max_travel_minutes=area.max_travel_minutes,
                match_type="exact",
            )

        area_letters = get_area_letters(area_outward)
        if area_letters and area_letters == job_letters:
            return ServiceAreaMatch(
                can_serve=True,
                max_travel_minutes=area.max_travel_minutes,
                match_type="prefix",
            )

    return ServiceAreaMatch(can_serve=False)


def engineers_for_postcode(
    engineers: list[EngineerSettings], postcode: str
) -> list[tuple[EngineerSettings, int]]:
    """
    Engineers whose areas cover the postcode, paired with their travel
    ceiling and sorted by it (shortest first).
    """
    matched = []
    for engineer in engineers:
        check = can_serve(engineer, postcode)
        if check.can_serve:
            matched.append((engineer, check.max_travel_minutes or DEFAULT_AREA_TRAVEL_MINUTES))

    matched.sort(key=lambda pair: pair[1])
    logger.debug("%d engineers cover %s", len(matched), postcode)
    return matched
