#!/usr/bin/env python

"""
    Server-rendered pages for SIMPUS.

    Pages are thin shells: they resolve the caller from the `token`
    cookie, pick a template, and leave data loading to the JSON API.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from simpus.configs import CURRENCY
from simpus.core import auth
from simpus.core.auth import Identity
from simpus.core.exceptions import SimpusError
from simpus.routes.deps import optional_identity, get_users
from simpus.routes.api import set_token_cookie

logger = logging.getLogger(__name__)

router = APIRouter()

ADMIN_PAGES = {
    "books": "admin_books.html",
    "members": "admin_members.html",
    "transactions": "admin_transactions.html",
    "reports": "admin_reports.html",
}


def render(request: Request, template: str, identity: Optional[Identity] = None, **context):
    context.update({"request": request, "identity": identity, "currency": CURRENCY})
    return request.app.templates.TemplateResponse(template, context)


def to_login():
    return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/")
def home(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return render(request, "index.html")


@router.post("/login")
def login(request: Request, username: str = Form(""), password: str = Form(""),
          users=Depends(get_users)):
    try:
        user = users.authenticate(username, password)
    except SimpusError as e:
        logger.info(f"Failed page login for {username!r}: {e}")
        return render(request, "index.html", error=str(e), username=username)
    response = RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    set_token_cookie(response, auth.create_token(user.id, user.username, user.role))
    return response


@router.get("/logout")
def logout():
    response = to_login()
    response.delete_cookie(key="token", path="/", samesite="Lax")
    return response


@router.get("/dashboard")
def dashboard(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    return render(request, "dashboard.html", identity)


@router.get("/catalog")
def catalog(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    return render(request, "catalog.html", identity)


@router.get("/loans")
def loans(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    return render(request, "loans.html", identity)


@router.get("/profile")
def profile(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    return render(request, "profile.html", identity)


@router.get("/notifications")
def notifications(request: Request, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    return render(request, "notifications.html", identity)


@router.get("/admin/{page}")
def admin(request: Request, page: str, identity: Optional[Identity] = Depends(optional_identity)):
    if identity is None:
        return to_login()
    if not identity.is_admin or page not in ADMIN_PAGES:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return render(request, ADMIN_PAGES[page], identity)
