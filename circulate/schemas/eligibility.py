from pydantic import BaseModel
from typing import Optional

class Eligibility(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
