from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class CheckInRequest(BaseModel):
    spot_id: int
    vehicle_plate: str
    vehicle_type: str = "car"
    user_id: Optional[str] = None  # set when checking in on behalf of another user


class CheckOutRequest(BaseModel):
    payment_method: str = "cash"


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    spot_id: int
    user_id: Optional[str] = None
    vehicle_plate: str
    vehicle_type: str
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    hourly_rate: float
    daily_rate: float
    monthly_rate: Optional[float] = None
    total_amount: Optional[float] = None
    payment_status: str


class PaymentDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    amount: float
    payment_method: str
    status: str
    processed_at: datetime


class CheckOutResponse(BaseModel):
    session: SessionResponse
    payment: PaymentDetail
    duration: str
    amount: float
    payment_method: str


class CostResponse(BaseModel):
    current_cost: float
    duration: str
    hourly_rate: float
    daily_rate: float


class ReservationCreate(BaseModel):
    spot_id: int
    start_time: datetime
    end_time: Optional[datetime] = None  # omitted for open-ended reservations
    user_id: Optional[str] = None
    vehicle_plate: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    spot_id: int
    user_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    open_ended: bool
    status: str
    vehicle_plate: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


class SpotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lot_id: Optional[int] = None
    spot_number: str
    spot_type: str
    status: str
    is_accessible: Optional[bool] = None
    has_ev_charging: Optional[bool] = None


class StatsResponse(BaseModel):
    total_revenue: float
    active_sessions: int
    completed_sessions: int
    average_session_duration: str


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    table_name: str
    record_id: Optional[str] = None
    user_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime


class ActivityList(BaseModel):
    activity: List[ActivityResponse]
