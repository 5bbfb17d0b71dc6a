#!/usr/bin/env python

"""
    Request dependencies shared by the SIMPUS routers:
    database sessions, caller identity, authorization and services.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from typing import Optional
from fastapi import Cookie, Depends, HTTPException, Request, status
from simpus.core import auth
from simpus.core.auth import Identity
from simpus.core.db import get_db
from simpus.core.policy import authorize
from simpus.core.catalog import Catalog, Categories
from simpus.core.loans import LoanEngine
from simpus.core.notifications import NotificationSink
from simpus.core.settings import SettingsProvider
from simpus.core.users import Users
from simpus.core.exceptions import (
    SimpusError,
    NotFoundError,
    InvalidCredentialsError,
    ForbiddenError,
    FileTooLargeError,
    UserExistsError,
    CategoryExistsError,
    BookInUseError,
    ValidationError,
    LoanError,
    StorageError,
)

# First match wins, so subclasses come before their bases
STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (FileTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (UserExistsError, status.HTTP_409_CONFLICT),
    (CategoryExistsError, status.HTTP_409_CONFLICT),
    (BookInUseError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (LoanError, status.HTTP_400_BAD_REQUEST),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def http_error(e: SimpusError) -> HTTPException:
    for error_cls, code in STATUS_CODES:
        if isinstance(e, error_cls):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def resolve_identity(request: Request, token: Optional[str] = None) -> Optional[Identity]:
    """Token from `Authorization: Bearer` first, then the `token` cookie."""
    token = auth.token_from_header(request.headers.get("Authorization")) or token
    return auth.decode_token(token)


def optional_identity(request: Request, token: Optional[str] = Cookie(None)) -> Optional[Identity]:
    return resolve_identity(request, token)


def get_identity(identity: Optional[Identity] = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token"
        )
    return identity


def requires(operation):
    """Dependency that resolves the caller and checks `operation` against POLICY."""
    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        try:
            authorize(identity.role, operation)
        except ForbiddenError as e:
            raise http_error(e)
        return identity
    return dependency


def get_hub(request: Request):
    return getattr(request.app.state, "hub", None)


def get_engine(db=Depends(get_db)) -> LoanEngine:
    return LoanEngine(db)


def get_catalog(db=Depends(get_db)) -> Catalog:
    return Catalog(db)


def get_categories(db=Depends(get_db)) -> Categories:
    return Categories(db)


def get_users(db=Depends(get_db)) -> Users:
    return Users(db)


def get_settings(db=Depends(get_db)) -> SettingsProvider:
    return SettingsProvider(db)


def get_sink(db=Depends(get_db), hub=Depends(get_hub)) -> NotificationSink:
    return NotificationSink(db, hub=hub)
