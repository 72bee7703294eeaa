from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from parking_engine.errors import SessionAlreadyActive, UpstreamFailure
from parking_engine.models import (
    ActivityLog,
    ParkingLot,
    ParkingSession,
    ParkingSpot,
    Payment,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def row_to_dict(row) -> dict:
    """Column values of an ORM row as JSON-friendly values."""
    values = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        values[column.key] = value
    return values


# Spots and lots

async def get_spot(db: AsyncSession, spot_id: int):
    return await db.get(ParkingSpot, spot_id, populate_existing=True)


async def get_lot(db: AsyncSession, lot_id: int):
    return await db.get(ParkingLot, lot_id)


async def transition_spot_status(db: AsyncSession, spot_id: int, from_statuses, to_status):
    """
    Conditionally move a spot to ``to_status``.

    The update only matches while the spot is in one of ``from_statuses``;
    returns the refreshed spot, or None when no row matched.
    """
    try:
        result = await db.execute(
            update(ParkingSpot)
            .where(
                ParkingSpot.id == spot_id,
                ParkingSpot.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure(f"Failed to update status of spot {spot_id}") from e

    if result.rowcount == 0:
        return None
    return await get_spot(db, spot_id)


# Sessions

async def get_session(db: AsyncSession, session_id: int):
    return await db.get(ParkingSession, session_id, populate_existing=True)


async def get_open_session(db: AsyncSession, spot_id: int):
    result = await db.execute(
        select(ParkingSession).where(
            ParkingSession.spot_id == spot_id,
            ParkingSession.check_out_time.is_(None),
        )
    )
    return result.scalars().first()


async def create_session(db: AsyncSession, **fields):
    new_session = ParkingSession(**fields)
    try:
        db.add(new_session)
        await db.commit()
        await db.refresh(new_session)
        return new_session
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Open session uniqueness violated for spot {fields.get('spot_id')}")
        raise SessionAlreadyActive() from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure("Failed to create parking session") from e


async def close_session(db: AsyncSession, session_id: int, check_out_time: datetime, total_amount):
    """Close an open session once; returns None if it was already closed."""
    try:
        result = await db.execute(
            update(ParkingSession)
            .where(
                ParkingSession.id == session_id,
                ParkingSession.check_out_time.is_(None),
            )
            .values(
                check_out_time=check_out_time,
                total_amount=total_amount,
                payment_status=PaymentStatus.COMPLETED.value,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure(f"Failed to close session {session_id}") from e

    if result.rowcount == 0:
        return None
    return await get_session(db, session_id)


def _in_lot(query, lot_id):
    if lot_id is None:
        return query
    return query.join(ParkingSpot, ParkingSpot.id == ParkingSession.spot_id).where(
        ParkingSpot.lot_id == lot_id
    )


async def list_active_sessions(db: AsyncSession, lot_id: int = None):
    query = select(ParkingSession).where(ParkingSession.check_out_time.is_(None))
    query = _in_lot(query, lot_id).order_by(ParkingSession.check_in_time.desc())
    result = await db.execute(query)
    return result.scalars().all()


async def list_sessions_checked_in_between(db: AsyncSession, start: datetime, end: datetime, lot_id: int = None):
    query = select(ParkingSession).where(
        ParkingSession.check_in_time >= start,
        ParkingSession.check_in_time < end,
    )
    result = await db.execute(_in_lot(query, lot_id))
    return result.scalars().all()


# Reservations

async def get_reservation(db: AsyncSession, reservation_id: int):
    return await db.get(Reservation, reservation_id, populate_existing=True)


async def get_reservations_for_spot(db: AsyncSession, spot_id: int, active_only: bool = True, now: datetime = None):
    """
    Reservations of a spot ordered by start time.

    With ``active_only`` only non-cancelled reservations that have not ended
    by ``now`` are returned.
    """
    query = select(Reservation).where(Reservation.spot_id == spot_id)
    if active_only:
        query = query.where(
            Reservation.status != ReservationStatus.CANCELLED.value,
            Reservation.end_time >= (now or utcnow()),
        )
    result = await db.execute(query.order_by(Reservation.start_time.asc(), Reservation.id.asc()))
    return result.scalars().all()


async def create_reservation(db: AsyncSession, **fields):
    reservation = Reservation(**fields)
    try:
        db.add(reservation)
        await db.commit()
        await db.refresh(reservation)
        return reservation
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure("Failed to create reservation") from e


async def update_reservation(db: AsyncSession, reservation_id: int, **fields):
    try:
        await db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure(f"Failed to update reservation {reservation_id}") from e
    return await get_reservation(db, reservation_id)


# Payments

async def create_payment(db: AsyncSession, session_id: int, amount, payment_method: str, processed_at: datetime = None):
    try:
        new_payment = Payment(
            session_id=session_id,
            amount=amount,
            payment_method=payment_method,
            status=PaymentStatus.COMPLETED.value,
            processed_at=processed_at or utcnow(),
        )
        db.add(new_payment)
        await db.commit()
        await db.refresh(new_payment)
        return new_payment
    except SQLAlchemyError as e:
        await db.rollback()
        raise UpstreamFailure(f"Failed to record payment for session {session_id}") from e


async def get_payment_for_session(db: AsyncSession, session_id: int):
    result = await db.execute(select(Payment).where(Payment.session_id == session_id))
    return result.scalars().first()


# Activity log

async def log_activity(db: AsyncSession, action: str, table_name: str, record_id, old_values=None, new_values=None, user_id: str = None):
    """Best-effort audit entry; failures are logged and never propagate."""
    try:
        entry = ActivityLog(
            action=action,
            table_name=table_name,
            record_id=str(record_id) if record_id is not None else None,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=f"{action} on {table_name}",
        )
        db.add(entry)
        await db.commit()
        return entry
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning(f"Activity logging failed for {action} on {table_name} {record_id}: {e}")
        return None


async def list_activity(db: AsyncSession, limit: int = 50):
    result = await db.execute(
        select(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
    )
    return result.scalars().all()
