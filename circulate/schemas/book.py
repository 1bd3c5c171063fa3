from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circulate.core.models import Tag

class Book(BaseModel):
    id: int
    title: str
    author: str
    isbn: Optional[str] = None
    tag: Tag
    total_copies: int
    available_copies: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
