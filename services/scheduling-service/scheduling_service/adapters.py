"""
Conversions at the storage boundary: table rows -> scheduling views, and
jobs/orders/offers -> ScheduleCandidate.
"""
import re
from typing import Iterable

from . import config
from .postcodes import get_best_postcode
from .schemas import ClientInfo, EngineerSettings, Job, ScheduleCandidate, ServiceArea, TimeOff, WorkingHours

_START_TIME = re.compile(r"^\d{1,2}:\d{2}$")


def duration_minutes(hours: float | None) -> int:
    if hours is None or hours <= 0:
        hours = config.DEFAULT_JOB_DURATION_HOURS
    return int(round(hours * 60))


def _start_time(time_window: str | None) -> str | None:
    # only a concrete "HH:MM" is a time preference; "AM"/"PM" windows are not
    if time_window and _START_TIME.match(time_window.strip()):
        return time_window.strip()
    return None


def candidate_from_job(job: Job, postcode: str | None = None) -> ScheduleCandidate:
    return ScheduleCandidate(
        id=job.id,
        postcode=postcode or get_best_postcode(job),
        duration_minutes=duration_minutes(job.estimated_duration_hours),
        start_time=_start_time(job.time_window),
    )


def client_info(client) -> ClientInfo | None:
    if client is None:
        return None
    return ClientInfo(
        id=client.id,
        full_name=client.full_name,
        postcode=client.postcode,
        address=client.address,
    )


def job_from_order(order, client=None) -> Job:
    scheduled = order.scheduled_install_date
    return Job(
        id=order.id,
        order_number=order.order_number,
        client_id=order.client_id,
        postcode=order.postcode,
        job_address=order.job_address,
        client=client_info(client),
        estimated_duration_hours=order.estimated_duration_hours,
        time_window=order.time_window,
        engineer_id=order.engineer_id,
        scheduled_install_date=scheduled.date() if scheduled else None,
        status=order.status,
    )


def candidate_from_order(order, client=None) -> ScheduleCandidate:
    return candidate_from_job(job_from_order(order, client))


def candidate_from_offer(offer, order, client=None) -> ScheduleCandidate:
    # a hold occupies the slot of the order it was offered for, so it shares
    # the order's id and collapses with that order when both are present
    return candidate_from_order(order, client)


def engineer_from_rows(
    engineer,
    availability_rows: Iterable = (),
    area_rows: Iterable = (),
    time_off_rows: Iterable = (),
) -> EngineerSettings:
    return EngineerSettings(
        id=engineer.id,
        name=engineer.name or "",
        email=engineer.email,
        starting_postcode=engineer.starting_postcode,
        availability=bool(engineer.availability),
        service_areas=[
            ServiceArea(postcode_area=a.postcode_area, max_travel_minutes=a.max_travel_minutes)
            for a in area_rows
        ],
        working_hours=[
            WorkingHours(
                day_of_week=w.day_of_week,
                start_time=w.start_time,
                end_time=w.end_time,
                is_available=bool(w.is_available),
            )
            for w in sorted(availability_rows, key=lambda r: r.day_of_week)
        ],
        time_off=[
            TimeOff(start_date=t.start_date, end_date=t.end_date, reason=t.reason, status=t.status)
            for t in time_off_rows
        ],
        is_subcontractor=bool(engineer.is_subcontractor),
        ignore_working_hours=bool(engineer.ignore_working_hours),
        max_jobs_per_day=engineer.max_jobs_per_day,
    )
