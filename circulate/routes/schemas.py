from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from circulate.core.models import Role, Tag

class NewUser(BaseModel):
    name: str
    email: EmailStr
    role: Role = Role.STUDENT
    phone: Optional[str] = None

class NewBook(BaseModel):
    title: str
    author: str
    tag: Tag = Tag.WHITE
    total_copies: int = Field(1, ge=1)
    isbn: Optional[str] = None

class CopiesRequest(BaseModel):
    available_copies: int = Field(..., ge=0)

class LoanRequestBody(BaseModel):
    user_id: int
    book_id: int

class ReservationRequest(BaseModel):
    user_id: int
    book_id: int

class RenewalRequestBody(BaseModel):
    loan_id: int
    user_id: int

class ReviewNotes(BaseModel):
    notes: Optional[str] = None

class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    phone: Optional[str] = None

class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    tag: Optional[Tag] = None
    isbn: Optional[str] = None
    total_copies: Optional[int] = Field(None, ge=1)
