from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime
from circulate.core.models import Role

class User(BaseModel):
    id: int
    name: str
    email: EmailStr
    phone: Optional[str] = None
    role: Role
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
