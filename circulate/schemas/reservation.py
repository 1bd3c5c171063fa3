from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circulate.core.models import ReservationStatus

class Reservation(BaseModel):
    id: int
    user_id: int
    book_id: int
    status: ReservationStatus
    reservation_date: datetime
    notification_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    class Config:
        from_attributes = True
