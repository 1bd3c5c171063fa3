from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circulate.core.models import RequestStatus

class LoanRequest(BaseModel):
    id: int
    user_id: int
    book_id: int
    status: RequestStatus
    request_date: datetime
    review_date: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True

class RenewalRequest(BaseModel):
    id: int
    loan_id: int
    user_id: int
    status: RequestStatus
    request_date: datetime
    review_date: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True
