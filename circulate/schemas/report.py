from pydantic import BaseModel
from circulate.schemas.book import Book
from circulate.schemas.user import User

class DashboardStats(BaseModel):
    total_books: int
    available_books: int
    total_copies: int
    total_available_copies: int
    total_users: int
    active_loans: int
    overdue_loans: int
    pending_fines: int
    total_fines_amount: int
    total_pending_amount: int
    paid_fines_amount: int
    blocked_users: int

    class Config:
        from_attributes = True

class PopularBook(BaseModel):
    book: Book
    loan_count: int

    class Config:
        from_attributes = True

class ActiveUser(BaseModel):
    user: User
    loan_count: int

    class Config:
        from_attributes = True
