import uvicorn
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from parking_engine import crud
from parking_engine.checkin import calculate_current_cost, check_in, check_out_vehicle
from parking_engine.config import LOG_LEVEL, PARKING_SERVICE_PORT
from parking_engine.database import get_db, init_db
from parking_engine.errors import ParkingError, parking_error_to_http
from parking_engine.reservations import cancel_reservation, create_reservation, get_spot_reservation
from parking_engine.roles import VIEW_ALL_DATA, Principal, require_permission
from parking_engine.schemas import (
    ActivityList,
    ActivityResponse,
    CheckInRequest,
    CheckOutRequest,
    CheckOutResponse,
    CostResponse,
    PaymentDetail,
    ReservationCreate,
    ReservationResponse,
    SessionResponse,
    SpotResponse,
    StatsResponse,
)
from parking_engine.services import get_current_user
from parking_engine.spot_state import clear_maintenance, set_maintenance
from parking_engine.stats import get_parking_stats

logging.basicConfig(level=LOG_LEVEL)
app = FastAPI(title="Parking Engine", version="1.0.0")


@app.on_event("startup")
async def on_startup():
    await init_db()


async def current_principal(authorization: Optional[str] = Header(None)) -> Principal:
    try:
        return await get_current_user(authorization)
    except ParkingError as e:
        raise parking_error_to_http(e)


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, ParkingError):
        return parking_error_to_http(e)
    if isinstance(e, SQLAlchemyError):
        logging.error(f"Database error: {e}")
        return HTTPException(status_code=502, detail={"kind": "upstream_failure", "message": "Database unavailable"})
    logging.error(f"Unexpected error: {e}")
    return HTTPException(status_code=500, detail="Internal Server Error")


def _utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert aware inputs to match."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@app.post("/api/v1/sessions/check-in", response_model=SessionResponse)
async def check_in_vehicle(
    request: CheckInRequest,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        logging.info(f"Check-in request for plate {request.vehicle_plate} at spot {request.spot_id}")
        session = await check_in(
            db,
            principal,
            request.spot_id,
            request.vehicle_plate,
            vehicle_type=request.vehicle_type,
            user_id=request.user_id,
        )
        return SessionResponse.model_validate(session)
    except Exception as e:
        raise _to_http(e)


@app.post("/api/v1/sessions/{session_id}/check-out", response_model=CheckOutResponse)
async def check_out(
    session_id: int,
    request: CheckOutRequest,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await check_out_vehicle(db, principal, session_id, payment_method=request.payment_method)
        return CheckOutResponse(
            session=SessionResponse.model_validate(result.session),
            payment=PaymentDetail.model_validate(result.payment),
            duration=result.duration,
            amount=result.amount,
            payment_method=result.payment_method,
        )
    except Exception as e:
        raise _to_http(e)


@app.get("/api/v1/sessions/active", response_model=List[SessionResponse])
async def active_sessions(
    lot_id: Optional[int] = Query(None, description="Restrict to one parking lot."),
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        sessions = await crud.list_active_sessions(db, lot_id=lot_id)
        return [SessionResponse.model_validate(s) for s in sessions]
    except Exception as e:
        raise _to_http(e)


@app.get("/api/v1/sessions/{session_id}/cost", response_model=CostResponse)
async def current_cost(
    session_id: int,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        estimate = await calculate_current_cost(db, principal, session_id)
        return CostResponse(
            current_cost=estimate.current_cost,
            duration=estimate.duration,
            hourly_rate=estimate.hourly_rate,
            daily_rate=estimate.daily_rate,
        )
    except Exception as e:
        raise _to_http(e)


@app.post("/api/v1/reservations", response_model=ReservationResponse)
async def reserve_spot(
    request: ReservationCreate,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        logging.info(f"Reservation request for spot {request.spot_id} from {request.start_time}")
        reservation = await create_reservation(
            db,
            principal,
            request.spot_id,
            _utc_naive(request.start_time),
            end_time=_utc_naive(request.end_time),
            user_id=request.user_id,
            vehicle_plate=request.vehicle_plate,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_phone=request.customer_phone,
        )
        return ReservationResponse.model_validate(reservation)
    except Exception as e:
        raise _to_http(e)


@app.post("/api/v1/reservations/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel(
    reservation_id: int,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        reservation = await cancel_reservation(db, principal, reservation_id)
        return ReservationResponse.model_validate(reservation)
    except Exception as e:
        raise _to_http(e)


@app.get("/api/v1/spots/{spot_id}/reservation", response_model=Optional[ReservationResponse])
async def spot_reservation(
    spot_id: int,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        reservation = await get_spot_reservation(db, spot_id)
        return ReservationResponse.model_validate(reservation) if reservation else None
    except Exception as e:
        raise _to_http(e)


@app.post("/api/v1/spots/{spot_id}/maintenance", response_model=SpotResponse)
async def spot_maintenance(
    spot_id: int,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        return SpotResponse.model_validate(await set_maintenance(db, principal, spot_id))
    except Exception as e:
        raise _to_http(e)


@app.post("/api/v1/spots/{spot_id}/clear", response_model=SpotResponse)
async def spot_clear(
    spot_id: int,
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        return SpotResponse.model_validate(await clear_maintenance(db, principal, spot_id))
    except Exception as e:
        raise _to_http(e)


@app.get("/api/v1/stats", response_model=StatsResponse)
async def stats(
    lot_id: Optional[int] = Query(None, description="Restrict to one parking lot."),
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        return StatsResponse(**await get_parking_stats(db, principal, lot_id=lot_id))
    except Exception as e:
        raise _to_http(e)


@app.get("/api/v1/activity", response_model=ActivityList)
async def activity(
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        require_permission(principal, VIEW_ALL_DATA)
        entries = await crud.list_activity(db, limit=limit)
        return ActivityList(activity=[ActivityResponse.model_validate(e) for e in entries])
    except Exception as e:
        raise _to_http(e)


if __name__ == "__main__":
    uvicorn.run("parking_engine.main:app", host="0.0.0.0", port=PARKING_SERVICE_PORT, reload=True)
