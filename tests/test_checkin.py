import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from parking_engine import crud
from parking_engine.checkin import calculate_current_cost, check_in, check_out_vehicle, normalize_plate
from parking_engine.errors import (
    ErrorKind,
    InvalidPlate,
    InvalidVehicleType,
    PermissionDenied,
    RatesNotFound,
    SessionAlreadyActive,
    SessionAlreadyClosed,
    SessionNotFound,
    SpotNotAvailable,
    SpotNotFound,
    Unauthenticated,
    UpstreamFailure,
)
from parking_engine.models import PaymentStatus, SpotStatus
from parking_engine.spot_state import clear_maintenance, set_maintenance
from parking_engine.stats import get_parking_stats
from tests.support import ADMIN, CUSTOMER, OTHER_CUSTOMER, DatabaseTestCase


class TestNormalizePlate(unittest.TestCase):

    def test_trims_and_uppercases(self):
        self.assertEqual(normalize_plate(" abc-123 "), "ABC-123")

    def test_too_short(self):
        for plate in ("", "   ", "a", " b ", None):
            with self.assertRaises(InvalidPlate):
                normalize_plate(plate)


class TestCheckIn(DatabaseTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.lot = await self.make_lot()
        self.spot = await self.make_spot(self.lot)

    async def test_check_in_opens_session(self):
        session = await check_in(self.db, CUSTOMER, self.spot.id, " abc-123 ", vehicle_type="van", now=self.now)

        self.assertEqual(session.vehicle_plate, "ABC-123")
        self.assertEqual(session.vehicle_type, "van")
        self.assertEqual(session.check_in_time, self.now)
        self.assertIsNone(session.check_out_time)
        self.assertIsNone(session.total_amount)
        self.assertEqual(session.payment_status, PaymentStatus.PENDING.value)
        self.assertEqual(session.hourly_rate, Decimal("10.00"))
        self.assertEqual(session.daily_rate, Decimal("100.00"))
        self.assertEqual(session.monthly_rate, Decimal("1500.00"))
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.OCCUPIED.value)

        activity = await crud.list_activity(self.db)
        self.assertEqual(activity[0].action, "INSERT")
        self.assertEqual(activity[0].table_name, "parking_sessions")
        self.assertEqual(activity[0].record_id, str(session.id))
        self.assertEqual(activity[0].user_id, CUSTOMER.id)

    async def test_requires_principal(self):
        with self.assertRaises(Unauthenticated):
            await check_in(self.db, None, self.spot.id, "ABC-123")

    async def test_short_plate_rejected(self):
        with self.assertRaises(InvalidPlate) as ctx:
            await check_in(self.db, CUSTOMER, self.spot.id, " x ")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.AVAILABLE.value)

    async def test_unknown_vehicle_type_rejected(self):
        with self.assertRaises(InvalidVehicleType):
            await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123", vehicle_type="spaceship")

    async def test_missing_spot(self):
        with self.assertRaises(SpotNotFound):
            await check_in(self.db, CUSTOMER, 999, "ABC-123")

    async def test_second_check_in_conflicts(self):
        first = await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123", now=self.now)

        with self.assertRaises(SpotNotAvailable) as ctx:
            await check_in(self.db, ADMIN, self.spot.id, "XYZ-999")
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)

        open_session = await crud.get_open_session(self.db, self.spot.id)
        self.assertEqual(open_session.id, first.id)
        self.assertEqual(open_session.vehicle_plate, "ABC-123")
        self.assertEqual(len(await crud.list_active_sessions(self.db)), 1)

    async def test_reserved_spot_not_available(self):
        spot = await self.make_spot(self.lot, spot_number="B-1", status=SpotStatus.RESERVED)
        with self.assertRaises(SpotNotAvailable):
            await check_in(self.db, CUSTOMER, spot.id, "ABC-123")

    async def test_open_session_on_stale_available_spot(self):
        await self.make_open_session(self.spot)
        with self.assertRaises(SessionAlreadyActive) as ctx:
            await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123")
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)

    async def test_race_surfaces_uniqueness_failure(self):
        # Both check-ins passed the open-session read before either wrote
        await self.make_open_session(self.spot)
        with patch("parking_engine.crud.get_open_session", new=AsyncMock(return_value=None)):
            with self.assertRaises(SessionAlreadyActive):
                await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123")
        self.assertEqual(len(await crud.list_active_sessions(self.db)), 1)

    async def test_customer_cannot_check_in_for_others(self):
        with self.assertRaises(PermissionDenied):
            await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123", user_id="someone-else")
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.AVAILABLE.value)

    async def test_admin_can_check_in_for_others(self):
        session = await check_in(self.db, ADMIN, self.spot.id, "ABC-123", user_id="customer-1")
        self.assertEqual(session.user_id, "customer-1")

    async def test_customer_can_name_themselves(self):
        session = await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123", user_id=CUSTOMER.id)
        self.assertEqual(session.user_id, CUSTOMER.id)

    async def test_spot_without_lot(self):
        spot = await self.make_spot(spot_number="Z-9")
        with self.assertRaises(RatesNotFound) as ctx:
            await check_in(self.db, CUSTOMER, spot.id, "ABC-123")
        self.assertEqual(ctx.exception.message, "Parking spot has no associated lot")
        self.assertEqual(await self.spot_status(spot.id), SpotStatus.AVAILABLE.value)

    async def test_failed_session_creation_releases_spot(self):
        failing = AsyncMock(side_effect=UpstreamFailure("insert failed"))
        with patch("parking_engine.crud.create_session", new=failing):
            with self.assertRaises(UpstreamFailure) as ctx:
                await check_in(self.db, CUSTOMER, self.spot.id, "ABC-123")

        self.assertEqual(ctx.exception.message, "insert failed")
        failing.assert_awaited_once()
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.AVAILABLE.value)
        self.assertIsNone(await crud.get_open_session(self.db, self.spot.id))


class TestCheckOut(DatabaseTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.lot = await self.make_lot()
        self.spot = await self.make_spot(self.lot)
        self.session = await check_in(self.db, CUSTOMER, self.spot.id, "abc-123", now=self.now)

    async def test_check_out_bills_and_frees_spot(self):
        result = await check_out_vehicle(
            self.db, CUSTOMER, self.session.id, payment_method="card",
            now=self.now + timedelta(hours=2, minutes=5),
        )

        self.assertEqual(result.amount, Decimal("30"))
        self.assertEqual(result.duration, "2h 5m")
        self.assertEqual(result.payment_method, "card")
        self.assertEqual(result.session.check_out_time, self.now + timedelta(hours=2, minutes=5))
        self.assertEqual(result.session.total_amount, Decimal("30.00"))
        self.assertEqual(result.session.payment_status, PaymentStatus.COMPLETED.value)
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.AVAILABLE.value)

        payment = await crud.get_payment_for_session(self.db, self.session.id)
        self.assertEqual(payment.amount, Decimal("30.00"))
        self.assertEqual(payment.payment_method, "card")
        self.assertEqual(payment.status, PaymentStatus.COMPLETED.value)

    async def test_daily_rate_after_a_day(self):
        result = await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=25))
        self.assertEqual(result.amount, Decimal("200"))
        self.assertEqual(result.payment_method, "cash")

    async def test_immediate_check_out_bills_one_hour(self):
        result = await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now)
        self.assertEqual(result.amount, Decimal("10"))
        self.assertEqual(result.duration, "0m")

    async def test_uses_rate_snapshot(self):
        self.lot.hourly_rate = Decimal("99.00")
        await self.db.commit()

        result = await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(minutes=30))
        self.assertEqual(result.amount, Decimal("10"))

    async def test_second_check_out_rejected(self):
        await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=1))

        with self.assertRaises(SessionAlreadyClosed) as ctx:
            await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=5))
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)

        session = await crud.get_session(self.db, self.session.id)
        self.assertEqual(session.total_amount, Decimal("10.00"))

    async def test_missing_session(self):
        with self.assertRaises(SessionNotFound):
            await check_out_vehicle(self.db, CUSTOMER, 999)

    async def test_spot_checked_in_again_after_check_out(self):
        await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=1))
        second = await check_in(self.db, CUSTOMER, self.spot.id, "NEW-42", now=self.now + timedelta(hours=2))
        self.assertNotEqual(second.id, self.session.id)

    async def test_current_cost_is_read_only(self):
        estimate = await calculate_current_cost(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(minutes=61))
        self.assertEqual(estimate.current_cost, Decimal("20"))
        self.assertEqual(estimate.duration, "1h 1m")
        self.assertEqual(estimate.hourly_rate, Decimal("10.00"))
        self.assertEqual(estimate.daily_rate, Decimal("100.00"))

        session = await crud.get_session(self.db, self.session.id)
        self.assertIsNone(session.check_out_time)
        self.assertIsNone(session.total_amount)

    async def test_current_cost_missing_session(self):
        with self.assertRaises(SessionNotFound):
            await calculate_current_cost(self.db, CUSTOMER, 999)

    async def test_check_out_of_spot_under_maintenance_still_pays(self):
        await set_maintenance(self.db, ADMIN, self.spot.id)

        result = await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=1))

        self.assertEqual(result.amount, Decimal("10"))
        self.assertEqual(result.session.payment_status, PaymentStatus.COMPLETED.value)
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.MAINTENANCE.value)
        payment = await crud.get_payment_for_session(self.db, self.session.id)
        self.assertIsNotNone(payment)
        self.assertEqual(payment.amount, Decimal("10.00"))

        with self.assertRaises(SessionAlreadyClosed):
            await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=2))

    async def test_check_out_after_maintenance_cleared(self):
        await set_maintenance(self.db, ADMIN, self.spot.id)
        await clear_maintenance(self.db, ADMIN, self.spot.id)

        result = await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=1))

        self.assertEqual(result.payment.session_id, self.session.id)
        self.assertEqual(await self.spot_status(self.spot.id), SpotStatus.AVAILABLE.value)

    async def test_only_owner_or_admin_checks_out(self):
        spot = await self.make_spot(self.lot, spot_number="C-3")
        owned = await check_in(self.db, ADMIN, spot.id, "OWN-7", user_id=CUSTOMER.id, now=self.now)

        with self.assertRaises(PermissionDenied):
            await check_out_vehicle(self.db, OTHER_CUSTOMER, owned.id, now=self.now + timedelta(hours=1))
        self.assertIsNone((await crud.get_session(self.db, owned.id)).check_out_time)
        self.assertEqual(await self.spot_status(spot.id), SpotStatus.OCCUPIED.value)

        result = await check_out_vehicle(self.db, ADMIN, owned.id, now=self.now + timedelta(hours=1))
        self.assertEqual(result.amount, Decimal("10"))

    async def test_only_owner_or_admin_sees_cost(self):
        spot = await self.make_spot(self.lot, spot_number="C-4")
        owned = await check_in(self.db, ADMIN, spot.id, "OWN-8", user_id=CUSTOMER.id, now=self.now)
        later = self.now + timedelta(minutes=30)

        with self.assertRaises(PermissionDenied):
            await calculate_current_cost(self.db, OTHER_CUSTOMER, owned.id, now=later)
        with self.assertRaises(Unauthenticated):
            await calculate_current_cost(self.db, None, owned.id, now=later)

        self.assertEqual((await calculate_current_cost(self.db, CUSTOMER, owned.id, now=later)).current_cost, Decimal("10"))
        self.assertEqual((await calculate_current_cost(self.db, ADMIN, owned.id, now=later)).current_cost, Decimal("10"))

    async def test_stats_for_the_day(self):
        other_spot = await self.make_spot(self.lot, spot_number="A-2")
        await check_in(self.db, CUSTOMER, other_spot.id, "OPEN-1", now=self.now + timedelta(minutes=10))
        await check_out_vehicle(self.db, CUSTOMER, self.session.id, now=self.now + timedelta(hours=2))

        stats = await get_parking_stats(self.db, ADMIN, now=self.now + timedelta(hours=3))
        self.assertEqual(stats["total_revenue"], Decimal("20"))
        self.assertEqual(stats["active_sessions"], 1)
        self.assertEqual(stats["completed_sessions"], 1)
        self.assertEqual(stats["average_session_duration"], "2h 0m")

        other_lot_stats = await get_parking_stats(self.db, ADMIN, lot_id=self.lot.id + 1, now=self.now)
        self.assertEqual(other_lot_stats["active_sessions"], 0)
        self.assertEqual(other_lot_stats["average_session_duration"], "0m")

    async def test_stats_require_reporting_permission(self):
        with self.assertRaises(PermissionDenied):
            await get_parking_stats(self.db, CUSTOMER, now=self.now)


if __name__ == "__main__":
    unittest.main()
