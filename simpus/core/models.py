#!/usr/bin/env python

"""
    Models for SIMPUS,
    including the users, books, loans, settings, categories
    and notifications tables.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
import uuid
import datetime
from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, Text, ForeignKey,
    CheckConstraint, Enum as SQLAlchemyEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from simpus.core.db import Base
from simpus.core.policy import Role


def _values(enum_cls):
    return [member.value for member in enum_cls]


class LoanStatus(str, enum.Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(SQLAlchemyEnum(Role, values_callable=_values, native_enum=False, length=20),
                  default=Role.MEMBER, nullable=False)
    fullname = Column(String(255))
    nip = Column(String(50))
    contact = Column(String(255))
    created_at = Column(DateTime, default=datetime.datetime.now)

    loans = relationship('Loan', back_populates='user', cascade='all, delete-orphan')
    notifications = relationship('Notification', back_populates='user', cascade='all, delete-orphan')

    @hybrid_property
    def is_admin(self):
        return self.role == Role.ADMIN


class Book(Base):
    __tablename__ = 'books'
    __table_args__ = (CheckConstraint('stock >= 0', name='ck_books_stock_nonnegative'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False, default='')
    category = Column(String(255))
    stock = Column(Integer, default=0, nullable=False)
    image_url = Column(String(255))
    published_year = Column(Integer)
    created_at = Column(DateTime, default=datetime.datetime.now)

    loans = relationship('Loan', back_populates='book')

    @hybrid_property
    def is_available(self):
        """True while at least one copy is on the shelf."""
        return self.stock > 0


class Loan(Base):
    __tablename__ = 'loans'
    __table_args__ = (CheckConstraint('fine >= 0', name='ck_loans_fine_nonnegative'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey('books.id'), nullable=False, index=True)
    loan_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(SQLAlchemyEnum(LoanStatus, values_callable=_values, native_enum=False, length=20),
                    default=LoanStatus.BORROWED, nullable=False, index=True)
    fine = Column(Integer, default=0, nullable=False)

    user = relationship('User', back_populates='loans')
    book = relationship('Book', back_populates='loans')

    @hybrid_property
    def is_borrowed(self):
        return self.status == LoanStatus.BORROWED

    def is_overdue(self, now=None):
        now = now or datetime.datetime.now()
        return self.status == LoanStatus.BORROWED and now > self.due_date

    @property
    def book_title(self):
        return self.book.title if self.book else None

    @property
    def username(self):
        return self.user.username if self.user else None


class Settings(Base):
    __tablename__ = 'settings'

    id = Column(Integer, primary_key=True)
    max_loan_books = Column(Integer, default=3, nullable=False)
    loan_duration = Column(Integer, default=7, nullable=False)
    fine_per_day = Column(Integer, default=5000, nullable=False)


class Category(Base):
    __tablename__ = 'categories'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.now)

    user = relationship('User', back_populates='notifications')
