from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circulate.core.models import FineStatus

class Fine(BaseModel):
    """A stored fine, or the running fine of a loan still out (`is_virtual`)."""
    id: str
    loan_id: int
    user_id: int
    amount: int
    days_overdue: int
    status: FineStatus
    payment_date: Optional[datetime] = None
    is_virtual: bool = False

    class Config:
        from_attributes = True

class Outstanding(BaseModel):
    user_id: int
    amount: int
