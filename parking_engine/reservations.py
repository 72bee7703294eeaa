"""
Reservation lifecycle: create, cancel and look up the next reservation of a spot.

A spot is RESERVED while it has at least one non-cancelled reservation that
has not ended; cancelling the last such reservation makes it AVAILABLE again.
A reservation whose spot cannot be moved to RESERVED is withdrawn (cancelled)
before the error reaches the caller.
"""
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.checkin import normalize_plate
from parking_engine.conflicts import ReservationWindow, ensure_no_conflict
from parking_engine.errors import (
    ParkingError,
    PermissionDenied,
    ReservationAlreadyCancelled,
    ReservationNotFound,
    SpotNotFound,
)
from parking_engine.models import ReservationStatus, utcnow
from parking_engine.roles import Principal, require_principal
from parking_engine.spot_state import SpotEvent, apply_transition, can_transition, next_status

logger = logging.getLogger(__name__)


def _blank_to_none(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_customer_info(name=None, email=None, phone=None) -> dict:
    return {
        "customer_name": _blank_to_none(name),
        "customer_email": _blank_to_none(email),
        "customer_phone": _blank_to_none(phone),
    }


async def create_reservation(
    db: AsyncSession,
    principal: Principal,
    spot_id: int,
    start_time: datetime,
    end_time: datetime = None,
    user_id: str = None,
    vehicle_plate: str = None,
    customer_name: str = None,
    customer_email: str = None,
    customer_phone: str = None,
    now: datetime = None,
):
    principal = require_principal(principal)
    window = ReservationWindow.from_times(start_time, end_time)

    if not principal.can_act_for(user_id):
        raise PermissionDenied("Only administrators can reserve spots for other users")

    spot = await crud.get_spot(db, spot_id)
    if not spot:
        raise SpotNotFound()
    # Fail before inserting anything if the spot cannot become RESERVED
    next_status(spot.status, SpotEvent.RESERVE)

    await ensure_no_conflict(db, spot_id, window, now=now)

    plate = _blank_to_none(vehicle_plate)
    reservation = await crud.create_reservation(
        db,
        spot_id=spot_id,
        user_id=user_id or principal.id,
        start_time=window.start,
        end_time=window.effective_end,
        open_ended=window.is_open_ended,
        status=ReservationStatus.PENDING.value,
        vehicle_plate=normalize_plate(plate) if plate else None,
        **normalize_customer_info(customer_name, customer_email, customer_phone),
    )

    try:
        await apply_transition(db, spot_id, SpotEvent.RESERVE)
    except ParkingError as e:
        logger.error(f"Spot {spot_id} could not be reserved, withdrawing reservation {reservation.id}: {e}")
        await crud.update_reservation(db, reservation.id, status=ReservationStatus.CANCELLED.value)
        raise

    logger.info(
        f"Reserved spot {spot.spot_number} from {window.start.isoformat()} "
        f"({'open-ended' if window.is_open_ended else 'until ' + window.effective_end.isoformat()}), "
        f"reservation {reservation.id}"
    )
    await crud.log_activity(
        db, "INSERT", "reservations", reservation.id,
        new_values=crud.row_to_dict(reservation), user_id=principal.id,
    )
    return reservation


async def cancel_reservation(db: AsyncSession, principal: Principal, reservation_id: int, now: datetime = None):
    principal = require_principal(principal)

    reservation = await crud.get_reservation(db, reservation_id)
    if not reservation:
        raise ReservationNotFound()

    if reservation.status == ReservationStatus.CANCELLED:
        raise ReservationAlreadyCancelled()

    if not principal.can_act_for(reservation.user_id):
        raise PermissionDenied("User cannot cancel this reservation")

    old_values = crud.row_to_dict(reservation)
    cancelled = await crud.update_reservation(db, reservation_id, status=ReservationStatus.CANCELLED.value)

    remaining = await crud.get_reservations_for_spot(db, reservation.spot_id, active_only=True, now=now or utcnow())
    if not remaining:
        spot = await crud.get_spot(db, reservation.spot_id)
        # Only a RESERVED spot is freed; an occupied or maintained spot keeps its status
        if spot is not None and can_transition(spot.status, SpotEvent.CANCEL_RESERVATION):
            await apply_transition(db, reservation.spot_id, SpotEvent.CANCEL_RESERVATION)

    logger.info(
        f"Cancelled reservation {reservation_id} on spot {reservation.spot_id}; "
        f"{len(remaining)} active reservation(s) remain"
    )
    await crud.log_activity(
        db, "UPDATE", "reservations", reservation_id,
        old_values=old_values, new_values=crud.row_to_dict(cancelled), user_id=principal.id,
    )
    return cancelled


async def get_spot_reservation(db: AsyncSession, spot_id: int, now: datetime = None):
    """Earliest non-cancelled reservation of the spot that has not ended, or None."""
    reservations = await crud.get_reservations_for_spot(db, spot_id, active_only=True, now=now)
    return reservations[0] if reservations else None
