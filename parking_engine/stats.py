from datetime import datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.billing import average_duration
from parking_engine.models import utcnow
from parking_engine.roles import VIEW_REPORTS, require_permission

logger = logging.getLogger(__name__)


async def get_parking_stats(db: AsyncSession, principal, lot_id: int = None, now: datetime = None) -> dict:
    """Revenue and session counts for the day containing ``now``."""
    require_permission(principal, VIEW_REPORTS)

    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)

    today_sessions = await crud.list_sessions_checked_in_between(db, today, tomorrow, lot_id=lot_id)
    active_sessions = await crud.list_active_sessions(db, lot_id=lot_id)

    total_revenue = sum((s.total_amount or Decimal("0") for s in today_sessions), Decimal("0"))
    completed = [s for s in today_sessions if s.check_out_time is not None]

    logger.info(f"Stats for lot {lot_id or 'all'} on {today.date()}: {len(completed)} completed, revenue {total_revenue}")
    return {
        "total_revenue": total_revenue,
        "active_sessions": len(active_sessions),
        "completed_sessions": len(completed),
        "average_session_duration": average_duration(completed),
    }
