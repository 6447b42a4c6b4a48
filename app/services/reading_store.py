"""Reading store: every query and write the billing and alert pipeline needs.

Each public method opens its own session, so a failed write never leaves
half of a unit of work pending in a shared session. SQLAlchemy errors are
re-raised as ``PersistenceError`` with the original exception chained.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import PersistenceError
from app.models.bill import Bill
from app.models.meter_reading import MeterReading
from app.models.notification import NotificationRecord
from app.models.user import User
from app.schemas.bill import BillDetail

logger = logging.getLogger(__name__)

# Smallest step that keeps per-device timestamps strictly increasing
TIMESTAMP_STEP = timedelta(microseconds=1)


@dataclass(frozen=True)
class PushDestination:
    """A user that can receive push alerts."""

    user_id: int
    token: str


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc)
        raise PersistenceError(f"{operation} failed", operation=operation) from exc


def last_reading_query(user_id: int, device_id: int) -> Select:
    """Latest reading of one device; ties broken by insertion order."""
    return (
        select(MeterReading)
        .where(
            and_(
                MeterReading.user_id == user_id,
                MeterReading.device_id == device_id,
            )
        )
        .order_by(MeterReading.timestamp.desc(), MeterReading.reading_id.desc())
        .limit(1)
    )


def user_lock_query(user_id: int) -> Select:
    """Row lock that serializes reading inserts for one user."""
    return select(User.user_id).where(User.user_id == user_id).with_for_update()


class ReadingStore:
    """Persistence handle backed by an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    # ---- Users ----

    async def get_user(self, user_id: int) -> User | None:
        """Get a user by ID."""
        with _translate_errors("get_user"):
            async with self._session_factory() as db:
                result = await db.execute(select(User).where(User.user_id == user_id))
                return result.scalar_one_or_none()

    async def set_push_token(self, user_id: int, token: str) -> bool:
        """Save a push token for a user. Returns False if the user does not exist."""
        with _translate_errors("set_push_token"):
            async with self._session_factory() as db:
                user = await db.get(User, user_id)
                if user is None:
                    return False
                user.expo_push_token = token
                await db.commit()
                return True

    async def get_users_with_push_destination(self) -> list[PushDestination]:
        """Users whose push token is set and non-empty."""
        with _translate_errors("get_users_with_push_destination"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(User.user_id, User.expo_push_token)
                    .where(
                        and_(
                            User.expo_push_token.is_not(None),
                            User.expo_push_token != "",
                        )
                    )
                    .order_by(User.user_id)
                )
                return [PushDestination(user_id=row[0], token=row[1]) for row in result.all()]

    # ---- Readings ----

    async def get_last_reading(self, user_id: int, device_id: int) -> MeterReading | None:
        """Most recent reading for a (user, device) pair."""
        with _translate_errors("get_last_reading"):
            async with self._session_factory() as db:
                result = await db.execute(last_reading_query(user_id, device_id))
                return result.scalar_one_or_none()

    async def insert_reading(
        self,
        user_id: int,
        device_id: int,
        raw_value: int,
        consumption_rule: Callable[[int, int], int],
    ) -> MeterReading:
        """Append a reading computed against the device's latest one.

        The user row is locked first (``FOR UPDATE`` where the backend
        supports it), so the lookup and the insert are one unit even across
        processes. The timestamp is bumped past the latest one if the clock
        has not moved, so ordering by timestamp stays unambiguous.
        """
        with _translate_errors("insert_reading"):
            async with self._session_factory() as db:
                await db.execute(user_lock_query(user_id))
                result = await db.execute(last_reading_query(user_id, device_id))
                last = result.scalar_one_or_none()
                previous_value = last.current_reading if last else 0

                timestamp = self._clock()
                if last is not None and timestamp <= last.timestamp:
                    timestamp = last.timestamp + TIMESTAMP_STEP

                reading = MeterReading(
                    user_id=user_id,
                    device_id=device_id,
                    reading_5digit=raw_value,
                    previous_reading=previous_value,
                    current_reading=raw_value,
                    consumption=consumption_rule(raw_value, previous_value),
                    timestamp=timestamp,
                )
                db.add(reading)
                await db.commit()
                return reading

    async def get_recent_consumption(self, user_id: int, limit: int) -> list[int]:
        """Consumption values across all of a user's devices, newest first."""
        with _translate_errors("get_recent_consumption"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(MeterReading.consumption)
                    .where(MeterReading.user_id == user_id)
                    .order_by(MeterReading.timestamp.desc(), MeterReading.reading_id.desc())
                    .limit(limit)
                )
                return [value or 0 for value in result.scalars().all()]

    async def get_consumption_history(self, user_id: int, limit: int) -> list[MeterReading]:
        """The user's first readings, oldest first."""
        with _translate_errors("get_consumption_history"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(MeterReading)
                    .where(MeterReading.user_id == user_id)
                    .order_by(MeterReading.timestamp.asc(), MeterReading.reading_id.asc())
                    .limit(limit)
                )
                return list(result.scalars().all())

    # ---- Bills ----

    async def insert_bill(
        self,
        user_id: int,
        reading_id: int,
        bill_number: str,
        period_start: datetime,
        period_end: datetime,
        due_date: datetime,
        amount_to_pay: Decimal,
    ) -> Bill:
        """Persist a bill for a reading."""
        with _translate_errors("insert_bill"):
            async with self._session_factory() as db:
                bill = Bill(
                    user_id=user_id,
                    reading_id=reading_id,
                    bill_number=bill_number,
                    period_start=period_start,
                    period_end=period_end,
                    due_date=due_date,
                    amount_to_pay=amount_to_pay,
                )
                db.add(bill)
                await db.commit()
                return bill

    async def list_bills_with_readings(self, user_id: int) -> list[BillDetail]:
        """Bills joined with their readings, newest period first."""
        with _translate_errors("list_bills_with_readings"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        Bill.bill_number,
                        Bill.period_start,
                        Bill.period_end,
                        Bill.due_date,
                        Bill.amount_to_pay,
                        MeterReading.previous_reading,
                        MeterReading.current_reading,
                        MeterReading.consumption,
                    )
                    .outerjoin(MeterReading, Bill.reading_id == MeterReading.reading_id)
                    .where(Bill.user_id == user_id)
                    .order_by(Bill.period_end.desc(), Bill.bill_id.desc())
                )
                return [BillDetail(**row._asdict()) for row in result.all()]

    # ---- Notifications ----

    async def insert_notification_record(
        self,
        user_id: int,
        title: str,
        body: str,
        category: str,
        data: dict[str, Any],
        delivered: bool,
    ) -> NotificationRecord:
        """Append a notification record."""
        with _translate_errors("insert_notification_record"):
            async with self._session_factory() as db:
                record = NotificationRecord(
                    user_id=user_id,
                    title=title,
                    body=body,
                    category=category,
                    data=data,
                    delivered=delivered,
                    created_at=self._clock(),
                )
                db.add(record)
                await db.commit()
                return record

    async def get_last_notification_at(self, user_id: int, category: str) -> datetime | None:
        """When the user was last sent a notification of this category."""
        with _translate_errors("get_last_notification_at"):
            async with self._session_factory() as db:
                return await db.scalar(
                    select(func.max(NotificationRecord.created_at)).where(
                        and_(
                            NotificationRecord.user_id == user_id,
                            NotificationRecord.category == category,
                        )
                    )
                )
