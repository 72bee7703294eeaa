"""
Shared fixtures: an in-memory database per test and seed helpers.
"""
import unittest
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from parking_engine import crud
from parking_engine.database import Base
from parking_engine.models import ParkingLot, ParkingSession, ParkingSpot, SpotStatus
from parking_engine.roles import Principal, Role

ADMIN = Principal(id="admin-1", role=Role.ADMIN)
CUSTOMER = Principal(id="customer-1", role=Role.CUSTOMER)
OTHER_CUSTOMER = Principal(id="customer-2", role=Role.CUSTOMER)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs each test against a fresh in-memory SQLite database."""

    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.db = async_sessionmaker(self.engine, expire_on_commit=False)()
        self.now = datetime(2026, 10, 19, 9, 0, 0)

    async def asyncTearDown(self):
        await self.db.close()
        await self.engine.dispose()

    async def add(self, row):
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        return row

    async def make_lot(self, hourly_rate="10.00", daily_rate="100.00", monthly_rate="1500.00"):
        return await self.add(ParkingLot(
            name="Main Street Garage",
            hourly_rate=Decimal(hourly_rate),
            daily_rate=Decimal(daily_rate),
            monthly_rate=Decimal(monthly_rate),
        ))

    async def make_spot(self, lot=None, spot_number="A-1", status=SpotStatus.AVAILABLE):
        return await self.add(ParkingSpot(
            lot_id=lot.id if lot is not None else None,
            spot_number=spot_number,
            status=status.value,
        ))

    async def make_open_session(self, spot, plate="OLD-001"):
        return await self.add(ParkingSession(
            spot_id=spot.id,
            vehicle_plate=plate,
            vehicle_type="car",
            check_in_time=self.now,
            hourly_rate=Decimal("10.00"),
            daily_rate=Decimal("100.00"),
        ))

    async def spot_status(self, spot_id):
        spot = await crud.get_spot(self.db, spot_id)
        return spot.status
