from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from simpus.core.models import LoanStatus

class LoanOut(BaseModel):
    id: int
    user_id: str
    book_id: int
    loan_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: LoanStatus
    fine: int = 0
    book_title: Optional[str] = None
    username: Optional[str] = None

    class Config:
        from_attributes = True

class BorrowRequest(BaseModel):
    book_id: int
    duration: Optional[int] = 0  # days; <= 0 uses the standard loan duration

class ReturnRequest(BaseModel):
    loan_id: int
