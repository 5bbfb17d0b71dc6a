from simpus.schemas.user import UserOut, RegisterRequest, LoginRequest, LoginResponse, UserUpdate, ProfileUpdate
from simpus.schemas.book import BookOut, CategoryOut, CategoryCreate
from simpus.schemas.loan import LoanOut, BorrowRequest, ReturnRequest
from simpus.schemas.notification import NotificationOut, SendNotificationRequest

__all__ = [
    "UserOut", "RegisterRequest", "LoginRequest", "LoginResponse", "UserUpdate", "ProfileUpdate",
    "BookOut", "CategoryOut", "CategoryCreate",
    "LoanOut", "BorrowRequest", "ReturnRequest",
    "NotificationOut", "SendNotificationRequest",
]
