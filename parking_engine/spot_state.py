"""
Parking spot state machine.

Every status change of a spot goes through ``apply_transition``. Each event
names the states it may start from and the state it leads to; the change is
written as one conditional update, so a spot that moved on in the meantime
fails the transition instead of being overwritten.
"""
from enum import Enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.errors import InvalidTransition, SpotNotAvailable, SpotNotFound
from parking_engine.models import SpotStatus
from parking_engine.roles import MANAGE_PARKING, require_permission

logger = logging.getLogger(__name__)


class SpotEvent(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    RESERVE = "reserve"
    CANCEL_RESERVATION = "cancel_reservation"
    SET_MAINTENANCE = "set_maintenance"
    CLEAR = "clear"
    # Compensation for a check-in whose session could not be created
    RELEASE = "release"


ALL_STATUSES = frozenset(SpotStatus)

# event -> (allowed source states, target state)
TRANSITIONS = {
    SpotEvent.CHECK_IN: (frozenset({SpotStatus.AVAILABLE}), SpotStatus.OCCUPIED),
    SpotEvent.CHECK_OUT: (frozenset({SpotStatus.OCCUPIED}), SpotStatus.AVAILABLE),
    SpotEvent.RESERVE: (frozenset({SpotStatus.AVAILABLE, SpotStatus.RESERVED}), SpotStatus.RESERVED),
    SpotEvent.CANCEL_RESERVATION: (frozenset({SpotStatus.RESERVED}), SpotStatus.AVAILABLE),
    SpotEvent.SET_MAINTENANCE: (ALL_STATUSES, SpotStatus.MAINTENANCE),
    SpotEvent.CLEAR: (frozenset({SpotStatus.MAINTENANCE}), SpotStatus.AVAILABLE),
    SpotEvent.RELEASE: (frozenset({SpotStatus.OCCUPIED}), SpotStatus.AVAILABLE),
}


def can_transition(current, event: SpotEvent) -> bool:
    allowed, _ = TRANSITIONS[event]
    return SpotStatus(current) in allowed


def next_status(current, event: SpotEvent) -> SpotStatus:
    """Target state of ``event`` from ``current``; raises if not allowed."""
    allowed, target = TRANSITIONS[event]
    current = SpotStatus(current)
    if current not in allowed:
        raise _rejection(event, current)
    return target


def _rejection(event: SpotEvent, current: SpotStatus, spot_number: str = None):
    suffix = f" {spot_number}" if spot_number else ""
    if event in (SpotEvent.CHECK_IN, SpotEvent.RESERVE):
        return SpotNotAvailable(f"Spot{suffix} is not available (Status: {current.value})")
    return InvalidTransition(f"Cannot {event.value.replace('_', ' ')} while spot{suffix} is {current.value}")


async def apply_transition(db: AsyncSession, spot_id: int, event: SpotEvent):
    """Apply ``event`` to the spot and return the updated row."""
    allowed, target = TRANSITIONS[event]
    spot = await crud.transition_spot_status(db, spot_id, allowed, target)
    if spot is not None:
        logger.info(f"Spot {spot_id}: {event.value} -> {target.value}")
        return spot

    current = await crud.get_spot(db, spot_id)
    if current is None:
        logger.warning(f"Transition {event.value} on missing spot {spot_id}")
        raise SpotNotFound()

    logger.warning(f"Rejected {event.value} on spot {spot_id} in status {current.status}")
    raise _rejection(event, SpotStatus(current.status), current.spot_number)


async def set_maintenance(db: AsyncSession, principal, spot_id: int):
    """Administrative override: take a spot out of service from any state."""
    return await _administer(db, principal, spot_id, SpotEvent.SET_MAINTENANCE)


async def clear_maintenance(db: AsyncSession, principal, spot_id: int):
    return await _administer(db, principal, spot_id, SpotEvent.CLEAR)


async def _administer(db: AsyncSession, principal, spot_id: int, event: SpotEvent):
    principal = require_permission(principal, MANAGE_PARKING)

    before = await crud.get_spot(db, spot_id)
    if before is None:
        raise SpotNotFound()
    old_values = crud.row_to_dict(before)

    spot = await apply_transition(db, spot_id, event)
    await crud.log_activity(
        db, "UPDATE", "parking_spots", spot_id,
        old_values=old_values, new_values=crud.row_to_dict(spot), user_id=principal.id,
    )
    return spot
