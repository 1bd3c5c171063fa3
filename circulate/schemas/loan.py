from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circulate.core.models import LoanStatus

class Loan(BaseModel):
    id: int
    user_id: int
    book_id: int
    loan_date: datetime
    due_date: datetime
    status: LoanStatus
    return_date: Optional[datetime] = None
    renewal_count: int

    class Config:
        from_attributes = True

class LoanReturn(BaseModel):
    loan: Loan
    fine_amount: int
    days_overdue: int
    notified_reservation_id: Optional[int] = None

class Renewal(BaseModel):
    loan_id: int
    new_due_date: datetime
