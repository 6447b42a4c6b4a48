"""Tests for the billing engine."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from app.core.errors import NotFoundError, PartialBillingError, PersistenceError, ValidationError
from app.models.bill import Bill
from app.services.billing import (
    BillingEngine,
    compute_amount,
    compute_bill_dates,
    compute_consumption,
    make_bill_number,
)
from app.services.reading_store import ReadingStore, user_lock_query
from tests.conftest import StepClock


class TestComputeConsumption:
    """Unit tests for the consumption rule."""

    def test_increase(self) -> None:
        assert compute_consumption(150, 100) == 50

    def test_first_reading_counts_from_zero(self) -> None:
        assert compute_consumption(100, 0) == 100

    def test_equal_values_give_zero(self) -> None:
        assert compute_consumption(100, 100) == 0

    def test_rollover_is_floored_at_zero(self) -> None:
        """A smaller register value never produces negative consumption."""
        assert compute_consumption(12, 99990) == 0


class TestComputeAmount:
    """Unit tests for the amount calculation."""

    def test_amount_uses_rate(self) -> None:
        assert compute_amount(50, Decimal("15.0")) == Decimal("750.00")

    def test_zero_consumption(self) -> None:
        assert compute_amount(0, Decimal("15.0")) == Decimal("0.00")

    def test_no_float_drift(self) -> None:
        assert compute_amount(3, Decimal("0.1")) == Decimal("0.30")


class TestBillDates:
    """Period and due date arithmetic."""

    def test_period_and_due_date(self) -> None:
        ts = datetime(2024, 6, 15, 9, 30, tzinfo=UTC)
        dates = compute_bill_dates(ts)
        assert dates.period_end == ts
        assert dates.period_start == datetime(2024, 5, 17, 9, 30, tzinfo=UTC)
        assert dates.due_date == datetime(2024, 6, 20, 9, 30, tzinfo=UTC)

    def test_leap_year_february(self) -> None:
        ts = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        dates = compute_bill_dates(ts)
        assert dates.period_start == datetime(2024, 2, 1, 12, 0, tzinfo=UTC)
        assert dates.due_date == datetime(2024, 3, 6, 12, 0, tzinfo=UTC)

    def test_year_rollover(self) -> None:
        ts = datetime(2023, 12, 29, 23, 0, tzinfo=UTC)
        dates = compute_bill_dates(ts)
        assert dates.period_start == datetime(2023, 11, 30, 23, 0, tzinfo=UTC)
        assert dates.due_date == datetime(2024, 1, 3, 23, 0, tzinfo=UTC)

    def test_bill_number_format(self) -> None:
        ts = datetime(2025, 2, 1, tzinfo=UTC)
        assert make_bill_number(7, 42, ts) == "BILL-7-42-2025"


class FailingBillStore(ReadingStore):
    """Store whose bill writes always fail."""

    async def insert_bill(self, **kwargs):
        raise PersistenceError("insert_bill failed")


class FailingReadingStore(ReadingStore):
    """Store whose reading writes always fail."""

    async def insert_reading(self, **kwargs):
        raise PersistenceError("insert_reading failed")


class SlowInsertStore(ReadingStore):
    """Store that yields to the event loop before every reading insert."""

    async def insert_reading(self, **kwargs):
        await asyncio.sleep(0.01)
        return await super().insert_reading(**kwargs)


class TestBillingEngine:
    """Tests for record_reading_and_bill against a real database."""

    @pytest.mark.asyncio
    async def test_two_readings_end_to_end(self, billing, make_user) -> None:
        """Readings 100 then 150 give bills for 100 and 50 units."""
        user_id = await make_user("alice")

        first = await billing.record_reading_and_bill(user_id, 1, 100)
        second = await billing.record_reading_and_bill(user_id, 1, 150)

        assert first.reading.previous_reading == 0
        assert first.reading.consumption == 100
        assert first.bill.amount_to_pay == Decimal("1500.00")

        assert second.reading.previous_reading == 100
        assert second.reading.current_reading == 150
        assert second.reading.consumption == 50
        assert second.bill.amount_to_pay == Decimal("750.00")
        assert second.bill.reading_id == second.reading.reading_id

    @pytest.mark.asyncio
    async def test_bill_dates_follow_reading_timestamp(self, session_factory, make_user) -> None:
        clock = StepClock(datetime(2024, 3, 1, 12, 0, tzinfo=UTC))
        engine = BillingEngine(ReadingStore(session_factory, clock=clock))
        user_id = await make_user("bob")

        result = await engine.record_reading_and_bill(user_id, 1, 10)

        assert result.reading.timestamp == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        assert result.bill.period_end == result.reading.timestamp
        assert result.bill.period_start == datetime(2024, 2, 1, 12, 0, tzinfo=UTC)
        assert result.bill.due_date == datetime(2024, 3, 6, 12, 0, tzinfo=UTC)
        assert result.bill.bill_number == f"BILL-{user_id}-{result.reading.reading_id}-2024"

    @pytest.mark.asyncio
    async def test_rollover_bills_zero(self, billing, make_user) -> None:
        user_id = await make_user("carol")
        await billing.record_reading_and_bill(user_id, 1, 99990)

        result = await billing.record_reading_and_bill(user_id, 1, 15)

        assert result.reading.previous_reading == 99990
        assert result.reading.consumption == 0
        assert result.bill.amount_to_pay == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_devices_are_billed_independently(self, billing, make_user) -> None:
        user_id = await make_user("dave")
        await billing.record_reading_and_bill(user_id, 1, 500)

        other = await billing.record_reading_and_bill(user_id, 2, 80)

        assert other.reading.previous_reading == 0
        assert other.reading.consumption == 80

    @pytest.mark.asyncio
    async def test_same_instant_timestamps_stay_ordered(self, session_factory, make_user) -> None:
        frozen = datetime(2024, 5, 5, 5, 5, tzinfo=UTC)
        engine = BillingEngine(ReadingStore(session_factory, clock=lambda: frozen))
        user_id = await make_user("erin")

        first = await engine.record_reading_and_bill(user_id, 1, 10)
        second = await engine.record_reading_and_bill(user_id, 1, 25)

        assert second.reading.timestamp > first.reading.timestamp
        assert second.reading.previous_reading == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [-1, 100000])
    async def test_out_of_range_value_rejected(self, billing, make_user, value) -> None:
        user_id = await make_user("frank")
        with pytest.raises(ValidationError):
            await billing.record_reading_and_bill(user_id, 1, value)

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user_id, device_id", [(2**63, 1), (1, 2**64), (0, 1), (1, 0)]
    )
    async def test_out_of_range_ids_rejected(self, billing, user_id, device_id) -> None:
        with pytest.raises(ValidationError):
            await billing.record_reading_and_bill(user_id, device_id, 10)

    @pytest.mark.asyncio
    async def test_unknown_user(self, billing) -> None:
        with pytest.raises(NotFoundError):
            await billing.record_reading_and_bill(9999, 1, 10)

    @pytest.mark.asyncio
    async def test_bill_write_failure_is_partial(self, session_factory, make_user) -> None:
        """The reading survives and the failure is reported as partial."""
        store = FailingBillStore(session_factory)
        engine = BillingEngine(store)
        user_id = await make_user("grace")

        with pytest.raises(PartialBillingError) as exc_info:
            await engine.record_reading_and_bill(user_id, 1, 42)

        orphan = exc_info.value.reading
        last = await store.get_last_reading(user_id, 1)
        assert last is not None
        assert last.reading_id == orphan.reading_id
        assert last.consumption == 42

        async with session_factory() as db:
            assert await db.scalar(select(func.count()).select_from(Bill)) == 0

    @pytest.mark.asyncio
    async def test_reading_write_failure_is_not_partial(self, session_factory, make_user) -> None:
        engine = BillingEngine(FailingReadingStore(session_factory))
        user_id = await make_user("heidi")

        with pytest.raises(PersistenceError) as exc_info:
            await engine.record_reading_and_bill(user_id, 1, 42)
        assert not isinstance(exc_info.value, PartialBillingError)

    @pytest.mark.asyncio
    async def test_concurrent_submissions_are_serialized(self, session_factory, make_user) -> None:
        """Each reading's previous value is the one stored just before it."""
        store = SlowInsertStore(session_factory)
        engine = BillingEngine(store)
        user_id = await make_user("ivan")

        results = await asyncio.gather(
            *(engine.record_reading_and_bill(user_id, 1, v) for v in (100, 200, 300, 400))
        )

        readings = sorted((r.reading for r in results), key=lambda r: r.timestamp)
        assert readings[0].previous_reading == 0
        for before, after in zip(readings, readings[1:]):
            assert after.previous_reading == before.current_reading
        assert len(engine.locks) == 0

    @pytest.mark.asyncio
    async def test_bills_reference_their_readings(self, billing, make_user, session_factory) -> None:
        user_id = await make_user("judy")
        results = [await billing.record_reading_and_bill(user_id, 1, v) for v in (5, 9, 30)]

        async with session_factory() as db:
            bills = (await db.execute(select(Bill).order_by(Bill.bill_id))).scalars().all()

        assert [b.reading_id for b in bills] == [r.reading.reading_id for r in results]
        assert len({b.bill_number for b in bills}) == 3


def test_bill_dates_span_is_exact() -> None:
    ts = datetime(2025, 1, 31, tzinfo=UTC)
    dates = compute_bill_dates(ts)
    assert dates.period_end - dates.period_start == timedelta(days=29)
    assert dates.due_date - dates.period_end == timedelta(days=5)


class TestUserLock:
    """The reading insert locks the user row where the backend can."""

    def test_postgres_uses_for_update(self) -> None:
        sql = str(user_lock_query(7).compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql

    def test_sqlite_omits_for_update(self) -> None:
        sql = str(user_lock_query(7).compile(dialect=sqlite.dialect()))
        assert "FOR UPDATE" not in sql

    @pytest.mark.asyncio
    async def test_engines_without_shared_locks_still_chain(self, store, make_user) -> None:
        """Separate lock registries, as in two processes, still see each other's readings."""
        user_id = await make_user("olivia")
        first = BillingEngine(store)
        second = BillingEngine(store)

        await first.record_reading_and_bill(user_id, 1, 100)
        result = await second.record_reading_and_bill(user_id, 1, 130)

        assert result.reading.previous_reading == 100
        assert result.reading.consumption == 30
