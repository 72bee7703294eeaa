from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from parking_engine.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the TIMESTAMP columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SpotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class SpotType(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    TRUCK = "truck"
    VAN = "van"
    OTHER = "other"


# Vehicles use the same categories as spots
VEHICLE_TYPES = {t.value for t in SpotType}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParkingLot(Base):
    __tablename__ = "parking_lots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=False)
    monthly_rate = Column(Numeric(10, 2), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)


class ParkingSpot(Base):
    __tablename__ = "parking_spots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(Integer, ForeignKey("parking_lots.id"), nullable=True, index=True)
    spot_number = Column(String(20), nullable=False)
    spot_type = Column(String(20), nullable=False, default=SpotType.CAR.value)
    # Written only through spot_state transitions
    status = Column(String(20), nullable=False, default=SpotStatus.AVAILABLE.value)
    is_accessible = Column(Boolean, default=False)
    has_ev_charging = Column(Boolean, default=False)
    created_at = Column(TIMESTAMP, default=utcnow)


class ParkingSession(Base):
    __tablename__ = "parking_sessions"
    __table_args__ = (
        # At most one open session per spot
        Index(
            "uq_parking_sessions_open_spot",
            "spot_id",
            unique=True,
            sqlite_where=text("check_out_time IS NULL"),
            postgresql_where=text("check_out_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    spot_id = Column(Integer, ForeignKey("parking_spots.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    vehicle_plate = Column(String(20), nullable=False)
    vehicle_type = Column(String(20), nullable=False, default=SpotType.CAR.value)
    check_in_time = Column(TIMESTAMP, nullable=False, default=utcnow)
    check_out_time = Column(TIMESTAMP, nullable=True)
    # Rate snapshot copied from the lot at check-in
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=False)
    monthly_rate = Column(Numeric(10, 2), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    spot_id = Column(Integer, ForeignKey("parking_spots.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    start_time = Column(TIMESTAMP, nullable=False)
    end_time = Column(TIMESTAMP, nullable=False)
    open_ended = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)
    vehicle_plate = Column(String(20), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("parking_sessions.id"), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    processed_at = Column(TIMESTAMP, default=utcnow)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(20), nullable=False)
    table_name = Column(String(64), nullable=False)
    record_id = Column(String(64), nullable=True)
    user_id = Column(String(64), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
