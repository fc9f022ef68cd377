import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol

from sqlalchemy import and_, or_, select

from .adapters import candidate_from_offer, candidate_from_order, engineer_from_rows
from .models import (
    AdminSetting,
    Client,
    ClientBlockedDate,
    Engineer,
    EngineerAvailability,
    EngineerServiceArea,
    EngineerTimeOff,
    JobOffer,
    Order,
)
from .schemas import EngineerSettings, ScheduleCandidate, SchedulingSettings

logger = logging.getLogger(__name__)

WORKLOAD_STATUSES = ("scheduled", "in_progress", "completed")
SETTINGS_KEYS = ("scheduling_rules", "booking_rules")


class SchedulingRepository(Protocol):
    async def list_available_engineers(self) -> list[EngineerSettings]: ...

    async def get_engineer(self, engineer_id: str) -> EngineerSettings | None: ...

    async def jobs_on_date(self, engineer_id: str, day: date) -> list[ScheduleCandidate]: ...

    async def soft_holds_on_date(self, engineer_id: str, day: date, now: datetime) -> list[ScheduleCandidate]: ...

    async def daily_workload(self, engineer_id: str, day: date, now: datetime) -> int: ...

    async def workload_map(
        self, engineer_ids: list[str], start: date, days: int, now: datetime
    ) -> dict[tuple[str, date], int]: ...

    async def client_blocked_dates(self, client_id: str) -> set[date]: ...

    async def client_blocked_dates_map(self, client_ids: list[str]) -> dict[str, set[date]]: ...

    async def scheduling_settings(self) -> SchedulingSettings: ...


def _day_bounds(day: date, days: int = 1) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=days)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _valid_hold(now: datetime):
    # pending and not yet expired, or accepted while the order is still unscheduled
    return or_(
        and_(JobOffer.status == "pending", JobOffer.expires_at > _naive_utc(now)),
        and_(JobOffer.status == "accepted", Order.scheduled_install_date.is_(None)),
    )


class SqlSchedulingRepository:
    """
    Read-only queries against the platform tables. Every call opens its own
    short-lived session so concurrent engineer evaluations never share one.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _load_engineers(self, db, engineers) -> list[EngineerSettings]:
        ids = [e.id for e in engineers]
        if not ids:
            return []

        availability = defaultdict(list)
        for row in (await db.execute(
            select(EngineerAvailability).where(EngineerAvailability.engineer_id.in_(ids))
        )).scalars():
            availability[row.engineer_id].append(row)

        areas = defaultdict(list)
        for row in (await db.execute(
            select(EngineerServiceArea)
            .where(EngineerServiceArea.engineer_id.in_(ids))
            .order_by(EngineerServiceArea.id)
        )).scalars():
            areas[row.engineer_id].append(row)

        time_off = defaultdict(list)
        for row in (await db.execute(
            select(EngineerTimeOff).where(
                EngineerTimeOff.engineer_id.in_(ids),
                EngineerTimeOff.status == "approved",
            )
        )).scalars():
            time_off[row.engineer_id].append(row)

        return [
            engineer_from_rows(e, availability[e.id], areas[e.id], time_off[e.id])
            for e in engineers
        ]

    async def list_available_engineers(self) -> list[EngineerSettings]:
        async with self.session_factory() as db:
            res = await db.execute(
                select(Engineer).where(Engineer.availability.is_(True)).order_by(Engineer.name, Engineer.id)
            )
            return await self._load_engineers(db, res.scalars().all())

    async def get_engineer(self, engineer_id: str) -> EngineerSettings | None:
        async with self.session_factory() as db:
            engineer = await db.get(Engineer, engineer_id)
            if not engineer:
                return None
            loaded = await self._load_engineers(db, [engineer])
            return loaded[0]

    async def jobs_on_date(self, engineer_id: str, day: date) -> list[ScheduleCandidate]:
        start, end = _day_bounds(day)
        async with self.session_factory() as db:
            res = await db.execute(
                select(Order, Client)
                .outerjoin(Client, Client.id == Order.client_id)
                .where(
                    Order.engineer_id == engineer_id,
                    Order.scheduled_install_date >= start,
                    Order.scheduled_install_date < end,
                    Order.status != "completed",
                )
                .order_by(Order.scheduled_install_date, Order.id)
            )
            return [candidate_from_order(order, client) for order, client in res.all()]

    async def soft_holds_on_date(self, engineer_id: str, day: date, now: datetime) -> list[ScheduleCandidate]:
        start, end = _day_bounds(day)
        async with self.session_factory() as db:
            res = await db.execute(
                select(JobOffer, Order, Client)
                .join(Order, Order.id == JobOffer.order_id)
                .outerjoin(Client, Client.id == Order.client_id)
                .where(
                    JobOffer.engineer_id == engineer_id,
                    JobOffer.offered_date >= start,
                    JobOffer.offered_date < end,
                    _valid_hold(now),
                )
                .order_by(JobOffer.offered_date, JobOffer.id)
            )
            return [candidate_from_offer(offer, order, client) for offer, order, client in res.all()]

    async def _workload_rows(self, engineer_ids: list[str], start: datetime, end: datetime, now: datetime):
        async with self.session_factory() as db:
            orders = (await db.execute(
                select(Order.engineer_id, Order.id, Order.scheduled_install_date).where(
                    Order.engineer_id.in_(engineer_ids),
                    Order.scheduled_install_date >= start,
                    Order.scheduled_install_date < end,
                    Order.status.in_(WORKLOAD_STATUSES),
                )
            )).all()
            holds = (await db.execute(
                select(JobOffer.engineer_id, JobOffer.order_id, JobOffer.offered_date)
                .join(Order, Order.id == JobOffer.order_id)
                .where(
                    JobOffer.engineer_id.in_(engineer_ids),
                    JobOffer.offered_date >= start,
                    JobOffer.offered_date < end,
                    _valid_hold(now),
                )
            )).all()
        return [*orders, *holds]

    async def daily_workload(self, engineer_id: str, day: date, now: datetime) -> int:
        start, end = _day_bounds(day)
        rows = await self._workload_rows([engineer_id], start, end, now)
        return len({order_id for _, order_id, _ in rows})

    async def workload_map(
        self, engineer_ids: list[str], start: date, days: int, now: datetime
    ) -> dict[tuple[str, date], int]:
        if not engineer_ids:
            return {}

        range_start, range_end = _day_bounds(start, days)
        rows = await self._workload_rows(engineer_ids, range_start, range_end, now)

        orders_by_day = defaultdict(set)
        for engineer_id, order_id, when in rows:
            orders_by_day[(engineer_id, when.date())].add(order_id)

        logger.info("Precomputed workload for %d engineer-date combinations", len(orders_by_day))
        return {key: len(ids) for key, ids in orders_by_day.items()}

    async def client_blocked_dates(self, client_id: str) -> set[date]:
        async with self.session_factory() as db:
            res = await db.execute(
                select(ClientBlockedDate.blocked_date).where(ClientBlockedDate.client_id == client_id)
            )
            return set(res.scalars().all())

    async def client_blocked_dates_map(self, client_ids: list[str]) -> dict[str, set[date]]:
        blocked = {client_id: set() for client_id in client_ids}
        if not client_ids:
            return blocked

        async with self.session_factory() as db:
            res = await db.execute(
                select(ClientBlockedDate.client_id, ClientBlockedDate.blocked_date).where(
                    ClientBlockedDate.client_id.in_(client_ids)
                )
            )
            for client_id, blocked_date in res.all():
                blocked[client_id].add(blocked_date)
        return blocked

    async def scheduling_settings(self) -> SchedulingSettings:
        try:
            async with self.session_factory() as db:
                res = await db.execute(
                    select(AdminSetting).where(AdminSetting.setting_key.in_(SETTINGS_KEYS))
                )
                rows = {row.setting_key: row.setting_value or {} for row in res.scalars()}
        except Exception:
            logger.exception("Could not load scheduling settings, using defaults")
            return SchedulingSettings()

        merged = {}
        for key in SETTINGS_KEYS:
            merged.update(rows.get(key) or {})

        try:
            return SchedulingSettings.model_validate(merged)
        except ValueError:
            logger.exception("Invalid scheduling settings stored, using defaults")
            return SchedulingSettings()
