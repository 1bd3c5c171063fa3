from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class Notification(BaseModel):
    id: Optional[int] = None
    user_id: int
    type: str
    message: str
    date: Optional[datetime] = None
    is_read: Optional[bool] = False

    class Config:
        from_attributes = True
