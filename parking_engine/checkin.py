"""
Check-in and check-out of vehicles.

Check-in validates, marks the spot occupied and then opens the session; if
the session cannot be created the spot is released again before the error
propagates. Check-out closes the session, frees the spot and records the
payment, in that order and without compensation. A spot an administrator
took out of OCCUPIED in the meantime keeps its status; the session is still
closed and paid.

Once the writing phase of either operation has started it runs to completion
even if the caller is cancelled.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.billing import billed_amount, elapsed_millis, format_duration
from parking_engine.config import DEFAULT_PAYMENT_METHOD, DEFAULT_VEHICLE_TYPE, MIN_PLATE_LENGTH
from parking_engine.errors import (
    InvalidPlate,
    InvalidTransition,
    InvalidVehicleType,
    ParkingError,
    PermissionDenied,
    RatesNotFound,
    SessionAlreadyActive,
    SessionAlreadyClosed,
    SessionNotFound,
    SpotNotAvailable,
    SpotNotFound,
)
from parking_engine.models import VEHICLE_TYPES, PaymentStatus, SpotStatus, utcnow
from parking_engine.roles import Principal, require_principal
from parking_engine.spot_state import SpotEvent, apply_transition

logger = logging.getLogger(__name__)


@dataclass
class CheckOutResult:
    session: object
    payment: object
    duration: str
    amount: Decimal
    payment_method: str


@dataclass
class CostEstimate:
    current_cost: Decimal
    duration: str
    hourly_rate: Decimal
    daily_rate: Decimal


def normalize_plate(vehicle_plate: str) -> str:
    plate = (vehicle_plate or "").strip()
    if len(plate) < MIN_PLATE_LENGTH:
        raise InvalidPlate()
    return plate.upper()


async def check_in(
    db: AsyncSession,
    principal: Principal,
    spot_id: int,
    vehicle_plate: str,
    vehicle_type: str = DEFAULT_VEHICLE_TYPE,
    user_id: str = None,
    now: datetime = None,
):
    principal = require_principal(principal)

    spot = await crud.get_spot(db, spot_id)
    if not spot:
        logger.warning(f"Check-in on missing spot {spot_id}")
        raise SpotNotFound()

    if spot.status != SpotStatus.AVAILABLE:
        logger.warning(f"Check-in rejected: spot {spot.spot_number} is {spot.status}")
        raise SpotNotAvailable(f"Spot {spot.spot_number} is not available (Status: {spot.status})")

    # The status may be stale; an open session is the authoritative signal
    if await crud.get_open_session(db, spot_id):
        logger.warning(f"Check-in rejected: spot {spot_id} already has an open session")
        raise SessionAlreadyActive()

    plate = normalize_plate(vehicle_plate)
    if vehicle_type not in VEHICLE_TYPES:
        raise InvalidVehicleType(f"Unknown vehicle type: {vehicle_type}")

    if not principal.can_act_for(user_id):
        logger.warning(f"User {principal.id} ({principal.role.value}) may not check in for user {user_id}")
        raise PermissionDenied("Only administrators can check in vehicles for other users")

    if spot.lot_id is None:
        raise RatesNotFound("Parking spot has no associated lot")
    lot = await crud.get_lot(db, spot.lot_id)
    if not lot:
        raise RatesNotFound()

    fields = dict(
        spot_id=spot_id,
        user_id=user_id,
        vehicle_plate=plate,
        vehicle_type=vehicle_type,
        check_in_time=now or utcnow(),
        hourly_rate=lot.hourly_rate,
        daily_rate=lot.daily_rate,
        monthly_rate=lot.monthly_rate,
        payment_status=PaymentStatus.PENDING.value,
    )
    session = await asyncio.shield(_occupy_and_open(db, spot_id, fields))

    logger.info(f"Checked in {plate} at spot {spot.spot_number} (session {session.id})")
    await crud.log_activity(
        db, "INSERT", "parking_sessions", session.id,
        new_values=crud.row_to_dict(session), user_id=principal.id,
    )
    return session


async def _occupy_and_open(db: AsyncSession, spot_id: int, fields: dict):
    await apply_transition(db, spot_id, SpotEvent.CHECK_IN)
    try:
        return await crud.create_session(db, **fields)
    except Exception as e:
        logger.error(f"Session creation failed for spot {spot_id}, releasing spot: {e}")
        await _release_spot(db, spot_id)
        raise


async def _release_spot(db: AsyncSession, spot_id: int):
    try:
        await apply_transition(db, spot_id, SpotEvent.RELEASE)
    except ParkingError as e:
        logger.error(f"Could not release spot {spot_id} after failed check-in: {e}")


async def check_out_vehicle(
    db: AsyncSession,
    principal: Principal,
    session_id: int,
    payment_method: str = DEFAULT_PAYMENT_METHOD,
    now: datetime = None,
) -> CheckOutResult:
    principal = require_principal(principal)

    session = await crud.get_session(db, session_id)
    if not session:
        logger.warning(f"Check-out of missing session {session_id}")
        raise SessionNotFound()

    if not principal.can_act_for(session.user_id):
        logger.warning(f"User {principal.id} may not check out session {session_id} of user {session.user_id}")
        raise PermissionDenied("User cannot check out this session")

    if session.check_out_time is not None:
        logger.warning(f"Check-out rejected: session {session_id} already closed")
        raise SessionAlreadyClosed()

    check_out_time = now or utcnow()
    duration_ms = elapsed_millis(session.check_in_time, check_out_time)
    # Billed at the rates captured when the vehicle checked in
    amount = billed_amount(duration_ms, session.hourly_rate, session.daily_rate)

    old_values = crud.row_to_dict(session)
    closed, payment = await asyncio.shield(
        _close_and_pay(db, session, check_out_time, amount, payment_method)
    )

    logger.info(f"Checked out session {session_id}: {format_duration(duration_ms)}, amount {amount}")
    await crud.log_activity(
        db, "UPDATE", "parking_sessions", session_id,
        old_values=old_values, new_values=crud.row_to_dict(closed), user_id=principal.id,
    )
    return CheckOutResult(
        session=closed,
        payment=payment,
        duration=format_duration(duration_ms),
        amount=amount,
        payment_method=payment_method,
    )


async def _close_and_pay(db: AsyncSession, session, check_out_time: datetime, amount: Decimal, payment_method: str):
    closed = await crud.close_session(db, session.id, check_out_time, amount)
    if closed is None:
        raise SessionAlreadyClosed()
    await _free_spot(db, session.spot_id)
    payment = await crud.create_payment(db, session.id, amount, payment_method, processed_at=check_out_time)
    return closed, payment


async def _free_spot(db: AsyncSession, spot_id: int):
    try:
        await apply_transition(db, spot_id, SpotEvent.CHECK_OUT)
    except InvalidTransition as e:
        # An administrator moved the spot out of OCCUPIED; it keeps that status
        logger.warning(f"Spot {spot_id} left unchanged on check-out: {e}")


async def calculate_current_cost(
    db: AsyncSession,
    principal: Principal,
    session_id: int,
    now: datetime = None,
) -> CostEstimate:
    """Cost of a session so far; closed sessions are priced up to their check-out."""
    principal = require_principal(principal)

    session = await crud.get_session(db, session_id)
    if not session:
        raise SessionNotFound()

    if not principal.can_act_for(session.user_id):
        raise PermissionDenied("User cannot view this session")

    until = session.check_out_time or now or utcnow()
    duration_ms = elapsed_millis(session.check_in_time, until)
    return CostEstimate(
        current_cost=billed_amount(duration_ms, session.hourly_rate, session.daily_rate),
        duration=format_duration(duration_ms),
        hourly_rate=session.hourly_rate,
        daily_rate=session.daily_rate,
    )
