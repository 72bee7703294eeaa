"""
Reservation windows and time-conflict detection.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.config import OPEN_ENDED_RESERVATION_YEARS
from parking_engine.errors import InvalidTimeRange, ReservationConflict, ReservationInPast
from parking_engine.models import utcnow

logger = logging.getLogger(__name__)

OPEN_ENDED_SPAN = timedelta(days=365 * OPEN_ENDED_RESERVATION_YEARS)


@dataclass(frozen=True)
class Bounded:
    end: datetime


@dataclass(frozen=True)
class OpenEnded:
    pass


@dataclass(frozen=True)
class ReservationWindow:
    start: datetime
    end: Union[Bounded, OpenEnded]

    @classmethod
    def from_times(cls, start: datetime, end: Optional[datetime] = None) -> "ReservationWindow":
        if end is None:
            return cls(start, OpenEnded())
        if end <= start:
            raise InvalidTimeRange(
                f"Reservation end {end.isoformat()} must be after its start {start.isoformat()}"
            )
        return cls(start, Bounded(end))

    @classmethod
    def of(cls, reservation) -> "ReservationWindow":
        """Window of a stored reservation."""
        if reservation.open_ended:
            return cls(reservation.start_time, OpenEnded())
        return cls(reservation.start_time, Bounded(reservation.end_time))

    @property
    def is_open_ended(self) -> bool:
        return isinstance(self.end, OpenEnded)

    @property
    def effective_end(self) -> datetime:
        """Concrete end; open-ended windows run ``OPEN_ENDED_SPAN`` past their start."""
        if isinstance(self.end, Bounded):
            return self.end.end
        return self.start + OPEN_ENDED_SPAN

    def overlaps(self, other: "ReservationWindow") -> bool:
        # Inclusive on both sides: windows that only touch still conflict
        return self.start <= other.effective_end and self.effective_end >= other.start


def find_conflicts(window: ReservationWindow, reservations) -> List:
    return [r for r in reservations if ReservationWindow.of(r).overlaps(window)]


async def ensure_no_conflict(db: AsyncSession, spot_id: int, window: ReservationWindow, now: datetime = None):
    """
    Reject ``window`` if it starts in the past or overlaps a non-cancelled
    reservation of the spot.
    """
    now = now or utcnow()
    if window.start < now:
        logger.warning(f"Reservation for spot {spot_id} starts in the past: {window.start.isoformat()}")
        raise ReservationInPast()

    # Reservations that ended before `now` cannot reach a window starting at or after it
    existing = await crud.get_reservations_for_spot(db, spot_id, active_only=True, now=now)
    conflicts = find_conflicts(window, existing)
    if conflicts:
        logger.warning(
            f"Reservation window on spot {spot_id} conflicts with reservation(s) {[r.id for r in conflicts]}"
        )
        raise ReservationConflict()
