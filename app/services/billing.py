"""Billing engine: turns a raw register value into a stored reading and its bill."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from app.core.database import MAX_ID
from app.core.errors import NotFoundError, PartialBillingError, PersistenceError, ValidationError
from app.models.bill import Bill
from app.models.meter_reading import MeterReading
from app.services.reading_store import ReadingStore

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class BillDates:
    """Billing period and due date derived from a reading timestamp."""

    period_start: datetime
    period_end: datetime
    due_date: datetime


@dataclass(frozen=True)
class BillingResult:
    """A stored reading and the bill generated from it."""

    reading: MeterReading
    bill: Bill


def compute_consumption(raw_value: int, previous_value: int) -> int:
    """Consumption since the previous reading, floored at zero.

    A smaller register value (rollover, reset, typo) yields zero.
    """
    return max(raw_value - previous_value, 0)


def compute_amount(consumption: int, rate_per_unit: Decimal) -> Decimal:
    """Amount to pay for a consumption, rounded to cents."""
    return (Decimal(consumption) * rate_per_unit).quantize(CENTS)


def compute_bill_dates(timestamp: datetime, period_days: int = 29, due_days: int = 5) -> BillDates:
    """Period ends at the reading; starts ``period_days`` before, due ``due_days`` after."""
    return BillDates(
        period_start=timestamp - timedelta(days=period_days),
        period_end=timestamp,
        due_date=timestamp + timedelta(days=due_days),
    )


def make_bill_number(user_id: int, reading_id: int, timestamp: datetime) -> str:
    """Format: BILL-<user_id>-<reading_id>-<year>."""
    return f"BILL-{user_id}-{reading_id}-{timestamp.year}"


class DeviceLocks:
    """Per-(user, device) asyncio locks.

    Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[int, int], asyncio.Lock] = {}
        self._users: dict[tuple[int, int], int] = {}

    @asynccontextmanager
    async def hold(self, user_id: int, device_id: int) -> AsyncIterator[None]:
        key = (user_id, device_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class BillingEngine:
    """Records readings and generates their bills."""

    def __init__(
        self,
        store: ReadingStore,
        rate_per_unit: Decimal = Decimal("15.0"),
        max_register_value: int = 99999,
        period_days: int = 29,
        due_days: int = 5,
        locks: DeviceLocks | None = None,
    ) -> None:
        self.store = store
        self.rate_per_unit = rate_per_unit
        self.max_register_value = max_register_value
        self.period_days = period_days
        self.due_days = due_days
        self.locks = locks or DeviceLocks()

    def validate(self, user_id: int, device_id: int, raw_value: int) -> None:
        """Check the submission before touching the store."""
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValidationError("Reading must be an integer", field="reading_5digit")
        if raw_value < 0 or raw_value > self.max_register_value:
            raise ValidationError(
                f"Reading must be between 0 and {self.max_register_value}",
                field="reading_5digit",
            )
        if not 1 <= user_id <= MAX_ID:
            raise ValidationError("Invalid user_id", field="user_id")
        if not 1 <= device_id <= MAX_ID:
            raise ValidationError("Invalid device_id", field="device_id")

    async def record_reading_and_bill(
        self,
        user_id: int,
        device_id: int,
        raw_value: int,
    ) -> BillingResult:
        """Store a reading and generate its bill.

        Raises:
            ValidationError: If the value is outside the register range
            NotFoundError: If the user does not exist
            PersistenceError: If the reading could not be stored
            PartialBillingError: If the reading was stored but the bill was not

        """
        self.validate(user_id, device_id, raw_value)

        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User not found", user_id=user_id)

        # Read-compute-write must not interleave for the same meter
        async with self.locks.hold(user_id, device_id):
            reading = await self.store.insert_reading(
                user_id=user_id,
                device_id=device_id,
                raw_value=raw_value,
                consumption_rule=compute_consumption,
            )
        consumption = reading.consumption
        amount = compute_amount(consumption, self.rate_per_unit)

        dates = compute_bill_dates(reading.timestamp, self.period_days, self.due_days)
        try:
            bill = await self.store.insert_bill(
                user_id=user_id,
                reading_id=reading.reading_id,
                bill_number=make_bill_number(user_id, reading.reading_id, reading.timestamp),
                period_start=dates.period_start,
                period_end=dates.period_end,
                due_date=dates.due_date,
                amount_to_pay=amount,
            )
        except PersistenceError as exc:
            logger.error(
                "Reading %s stored for user %s device %s but bill write failed",
                reading.reading_id,
                user_id,
                device_id,
            )
            raise PartialBillingError(
                "Bill write failed after reading was stored",
                reading=reading,
                user_id=user_id,
            ) from exc

        logger.info(
            "Bill %s generated: consumption=%s amount=%s",
            bill.bill_number,
            consumption,
            amount,
        )
        return BillingResult(reading=reading, bill=bill)
