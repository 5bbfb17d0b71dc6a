#!/usr/bin/env python

"""
    API routes for SIMPUS,
    covering accounts, the book catalog, loans and notifications.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
import datetime
from typing import Optional, List
from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
    status,
)
from simpus.configs import TOKEN_TTL, CURRENCY, SCHEME
from simpus.core import auth
from simpus.core.auth import Identity
from simpus.core.policy import Role, Operation, is_allowed
from simpus.core.exceptions import SimpusError
from simpus.schemas import (
    UserOut,
    RegisterRequest,
    LoginRequest,
    LoginResponse,
    UserUpdate,
    ProfileUpdate,
    BookOut,
    CategoryOut,
    CategoryCreate,
    LoanOut,
    BorrowRequest,
    ReturnRequest,
    NotificationOut,
    SendNotificationRequest,
)
from simpus.routes.deps import (
    http_error,
    get_identity,
    requires,
    get_engine,
    get_catalog,
    get_categories,
    get_users,
    get_sink,
    get_settings,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"
BROADCAST = "all"

router = APIRouter()


def borrow_message(loan):
    return f"Borrow successful: {loan.book_title or 'Book'}. Due date: {loan.due_date:%d %b %Y}"


def return_message(loan):
    return f"Return successful: {loan.book_title or 'Book'}. Fine: {CURRENCY} {loan.fine}"


def notify(sink, user_id, message):
    """Loan side-effect notification; a failure here never undoes the loan."""
    try:
        sink.create(user_id, message)
    except SimpusError as e:
        logger.warning(f"Failed to notify user {user_id}: {e}")


def parse_date_range(start_date: Optional[str], end_date: Optional[str]):
    """Both dates as YYYY-MM-DD, or (None, None) when either is missing or malformed."""
    if not (start_date and end_date):
        return None, None
    try:
        return (
            datetime.datetime.strptime(start_date, DATE_FORMAT).date(),
            datetime.datetime.strptime(end_date, DATE_FORMAT).date(),
        )
    except ValueError:
        logger.info(f"Ignoring malformed date range {start_date!r}..{end_date!r}")
        return None, None


def set_token_cookie(response: Response, token: str):
    response.set_cookie(
        key="token",
        value=token,
        max_age=TOKEN_TTL,
        httponly=True,
        secure=SCHEME == "https",
        samesite="Lax",
        path="/"
    )


# Accounts

@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=UserOut)
def register(payload: RegisterRequest, users=Depends(get_users)):
    """Self-service sign up; admin accounts are only granted by an admin."""
    if (payload.role or "").strip().lower() == Role.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin accounts can not be self-registered"
        )
    try:
        return users.register(**payload.model_dump())
    except SimpusError as e:
        raise http_error(e)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, response: Response, users=Depends(get_users)):
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    try:
        user = users.authenticate(payload.username, payload.password)
    except SimpusError as e:
        raise http_error(e)
    token = auth.create_token(user.id, user.username, user.role)
    set_token_cookie(response, token)
    return LoginResponse(token=token, username=user.username, role=user.role)


@router.api_route("/logout", methods=["GET", "POST"])
def logout(response: Response):
    response.delete_cookie(key="token", path="/", samesite="Lax")
    return {"success": True, "message": "Logged out successfully"}


@router.get("/profile")
def profile(identity: Identity = Depends(get_identity), users=Depends(get_users),
            engine=Depends(get_engine)):
    try:
        user = users.get(identity.user_id)
    except SimpusError as e:
        raise http_error(e)
    return {
        **UserOut.model_validate(user).model_dump(mode="json"),
        "active_loans": engine.count_active(user.id),
    }


@router.put("/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate,
                   identity: Identity = Depends(requires(Operation.EDIT_PROFILE)),
                   users=Depends(get_users)):
    try:
        return users.update_profile(identity.user_id, **payload.model_dump())
    except SimpusError as e:
        raise http_error(e)


@router.get("/users", response_model=List[UserOut])
def get_users_list(q: Optional[str] = None,
                   identity: Identity = Depends(requires(Operation.MANAGE_USERS)),
                   users=Depends(get_users)):
    return users.search(q) if q else users.list()


@router.put("/users/{user_id}", response_model=UserOut)
def update_user(user_id: str, payload: UserUpdate,
                identity: Identity = Depends(requires(Operation.MANAGE_USERS)),
                users=Depends(get_users)):
    try:
        return users.update(user_id, **payload.model_dump())
    except SimpusError as e:
        raise http_error(e)


@router.delete("/users/{user_id}")
def delete_user(user_id: str,
                identity: Identity = Depends(requires(Operation.MANAGE_USERS)),
                users=Depends(get_users)):
    try:
        users.delete(user_id)
    except SimpusError as e:
        raise http_error(e)
    return {"message": "User deleted"}


# Catalog

@router.get("/books", response_model=List[BookOut])
def get_books(q: Optional[str] = None, offset: Optional[int] = None,
              limit: Optional[int] = None, catalog=Depends(get_catalog)):
    return catalog.search(q) if q else catalog.list(offset=offset, limit=limit)


@router.get("/books/{book_id}", response_model=BookOut)
def get_book(book_id: int, catalog=Depends(get_catalog)):
    try:
        return catalog.get(book_id)
    except SimpusError as e:
        raise http_error(e)


@router.post("/books", status_code=status.HTTP_201_CREATED, response_model=BookOut)
def create_book(
    title: str = Form(..., description="Book title (required)"),
    author: str = Form(""),
    category: Optional[str] = Form(None),
    stock: int = Form(0, description="Copies on the shelf (must be >= 0)"),
    published_year: Optional[int] = Form(None),
    image: Optional[UploadFile] = File(None, description="Optional cover image"),
    identity: Identity = Depends(requires(Operation.MANAGE_BOOKS)),
    catalog=Depends(get_catalog),
):
    try:
        image_url = catalog.save_cover(image) if image and image.filename else None
        return catalog.create(
            title=title, author=author, category=category, stock=stock,
            published_year=published_year, image_url=image_url
        )
    except SimpusError as e:
        raise http_error(e)


@router.put("/books/{book_id}", response_model=BookOut)
def update_book(
    book_id: int,
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    stock: Optional[int] = Form(None),
    published_year: Optional[int] = Form(None),
    image: Optional[UploadFile] = File(None),
    identity: Identity = Depends(requires(Operation.MANAGE_BOOKS)),
    catalog=Depends(get_catalog),
):
    try:
        catalog.get(book_id)
        image_url = catalog.save_cover(image) if image and image.filename else None
        return catalog.update(
            book_id, title=title, author=author, category=category, stock=stock,
            published_year=published_year, image_url=image_url
        )
    except SimpusError as e:
        raise http_error(e)


@router.delete("/books/{book_id}")
def delete_book(book_id: int,
                identity: Identity = Depends(requires(Operation.MANAGE_BOOKS)),
                catalog=Depends(get_catalog)):
    try:
        catalog.delete(book_id)
    except SimpusError as e:
        raise http_error(e)
    return {"message": "Book deleted"}


@router.get("/categories", response_model=List[CategoryOut])
def get_categories_list(identity: Identity = Depends(requires(Operation.VIEW_CATEGORIES)),
                        categories=Depends(get_categories)):
    return categories.list()


@router.post("/categories", status_code=status.HTTP_201_CREATED, response_model=CategoryOut)
def create_category(payload: CategoryCreate,
                    identity: Identity = Depends(requires(Operation.MANAGE_CATEGORIES)),
                    categories=Depends(get_categories)):
    try:
        return categories.create(payload.name)
    except SimpusError as e:
        raise http_error(e)


@router.delete("/categories/{category_id}")
def delete_category(category_id: int,
                    identity: Identity = Depends(requires(Operation.MANAGE_CATEGORIES)),
                    categories=Depends(get_categories)):
    try:
        categories.delete(category_id)
    except SimpusError as e:
        raise http_error(e)
    return {"message": "Category deleted"}


# Loans

@router.get("/loans", response_model=List[LoanOut])
def list_loans(start_date: Optional[str] = None, end_date: Optional[str] = None,
               identity: Identity = Depends(requires(Operation.LIST_OWN_LOANS)),
               engine=Depends(get_engine)):
    """All loans for admins (optionally by loan date), otherwise the caller's own."""
    if is_allowed(identity.role, Operation.LIST_ALL_LOANS):
        start, end = parse_date_range(start_date, end_date)
        return engine.list_all(start, end)
    return engine.list_for_user(identity.user_id)


@router.post("/loans", status_code=status.HTTP_201_CREATED, response_model=LoanOut)
def borrow(payload: BorrowRequest,
           identity: Identity = Depends(requires(Operation.BORROW)),
           engine=Depends(get_engine), sink=Depends(get_sink)):
    try:
        loan = engine.borrow(identity.user_id, payload.book_id, payload.duration)
    except SimpusError as e:
        raise http_error(e)
    notify(sink, identity.user_id, borrow_message(loan))
    return loan


@router.post("/loans/return", response_model=LoanOut)
def return_book(payload: ReturnRequest,
                identity: Identity = Depends(requires(Operation.RETURN)),
                engine=Depends(get_engine), sink=Depends(get_sink)):
    try:
        loan = engine.return_loan(payload.loan_id)
    except SimpusError as e:
        raise http_error(e)
    notify(sink, loan.user_id, return_message(loan))
    return loan


@router.get("/loans/overdue", response_model=List[LoanOut])
def overdue_loans(identity: Identity = Depends(requires(Operation.LIST_OWN_LOANS)),
                  engine=Depends(get_engine)):
    return engine.list_overdue(identity.user_id)


@router.get("/loans/{loan_id}", response_model=LoanOut)
def get_loan(loan_id: int,
             identity: Identity = Depends(requires(Operation.LIST_OWN_LOANS)),
             engine=Depends(get_engine)):
    try:
        loan = engine.get(loan_id)
    except SimpusError as e:
        raise http_error(e)
    if loan.user_id != identity.user_id and not is_allowed(identity.role, Operation.LIST_ALL_LOANS):
        raise HTTPException(status_code=404, detail=f"Loan {loan_id} not found")
    return loan


@router.post("/loans/{loan_id}/extend", response_model=LoanOut)
def extend_loan(loan_id: int,
                identity: Identity = Depends(requires(Operation.EXTEND_OWN)),
                engine=Depends(get_engine)):
    owner_id = None if is_allowed(identity.role, Operation.EXTEND_ANY) else identity.user_id
    try:
        return engine.extend(loan_id, owner_id=owner_id)
    except SimpusError as e:
        raise http_error(e)


# Notifications

@router.get("/notifications", response_model=List[NotificationOut])
def get_notifications(identity: Identity = Depends(requires(Operation.READ_NOTIFICATIONS)),
                      sink=Depends(get_sink)):
    return sink.list(identity.user_id)


@router.post("/notifications/send", status_code=status.HTTP_201_CREATED)
def send_notification(payload: SendNotificationRequest,
                      identity: Identity = Depends(requires(Operation.SEND_NOTIFICATIONS)),
                      sink=Depends(get_sink), users=Depends(get_users)):
    try:
        if payload.user_id == BROADCAST:
            sent = sink.broadcast(payload.message)
        else:
            users.get(payload.user_id)
            sent = int(sink.create(payload.user_id, payload.message))
    except SimpusError as e:
        raise http_error(e)
    return {"message": "Notification sent", "sent": sent}


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(notification_id: int,
                           identity: Identity = Depends(requires(Operation.READ_NOTIFICATIONS)),
                           sink=Depends(get_sink)):
    try:
        return sink.mark_read(notification_id, user_id=identity.user_id)
    except SimpusError as e:
        raise http_error(e)


@router.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int,
                        identity: Identity = Depends(requires(Operation.READ_NOTIFICATIONS)),
                        sink=Depends(get_sink)):
    try:
        sink.delete(notification_id, user_id=identity.user_id)
    except SimpusError as e:
        raise http_error(e)
    return {"message": "Notification deleted"}


@router.get("/settings")
def lending_policy(identity: Identity = Depends(get_identity), settings=Depends(get_settings)):
    """Current lending policy: loan limit, loan duration and fine per day."""
    return {**settings.get()._asdict(), "currency": CURRENCY}


@router.get("/reports")
def report(start_date: Optional[str] = None, end_date: Optional[str] = None,
           identity: Identity = Depends(requires(Operation.VIEW_REPORTS)),
           engine=Depends(get_engine)):
    """Loan report for admins, optionally limited to a loan date range."""
    start, end = parse_date_range(start_date, end_date)
    return engine.summary(start, end)


@router.get("/stats")
def stats(identity: Identity = Depends(requires(Operation.VIEW_STATS)),
          engine=Depends(get_engine), catalog=Depends(get_catalog),
          users=Depends(get_users), sink=Depends(get_sink)):
    """Dashboard counters."""
    return {
        "users": users.count(),
        "books": catalog.count(),
        "active_loans": engine.count_active(),
        "my_active_loans": engine.count_active(identity.user_id),
        "my_overdue_loans": len(engine.list_overdue(identity.user_id)),
        "unread_notifications": sink.unread_count(identity.user_id),
    }
