#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: an in-memory database per test, user and book
    factories, and an API client wired to the test database.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import os
import tempfile

os.environ["TESTING"] = "true"
os.environ.setdefault("SIMPUS_UPLOAD_DIR", tempfile.mkdtemp(prefix="simpus-upload-"))

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from simpus.core import auth
from simpus.core.db import Base, make_engine, get_db
from simpus.core import models  # noqa: F401
from simpus.core.catalog import Catalog
from simpus.core.policy import Role
from simpus.core.settings import SettingsProvider
from simpus.core.users import Users


@pytest.fixture
def db_session():
    engine = make_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = SessionLocal()
    SettingsProvider(session).seed()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory(db_session):
    """Factory handing out the test session, for code that opens its own."""
    class NonClosingSession:
        def __init__(self, session):
            self._session = session

        def __getattr__(self, name):
            return getattr(self._session, name)

        def close(self):
            pass

    return lambda: NonClosingSession(db_session)


@pytest.fixture
def make_user(db_session):
    def factory(username="siswa", password="rahasia", role=Role.MEMBER, **fields):
        return Users(db_session).register(username, password, role=role, **fields)
    return factory


@pytest.fixture
def make_book(db_session):
    def factory(title="Laskar Pelangi", author="Andrea Hirata", stock=1, **fields):
        return Catalog(db_session).create(title=title, author=author, stock=stock, **fields)
    return factory


@pytest.fixture
def client(db_session):
    from simpus.app import create_app

    app = create_app(sweep=False)

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c


@pytest.fixture
def bearer():
    def headers(user):
        token = auth.create_token(user.id, user.username, user.role)
        return {"Authorization": f"Bearer {token}"}
    return headers
