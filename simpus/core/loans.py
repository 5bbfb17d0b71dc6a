#!/usr/bin/env python

"""
    Loan engine for SIMPUS: borrow, return and extend.

    Borrow and return each run as one database transaction that keeps
    `books.stock` in step with the number of borrowed loans. Stock is
    re-checked by a conditional UPDATE inside the transaction, so two
    borrowers racing for the last copy cannot both win. Any error rolls
    the whole transaction back.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
import datetime
from collections import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload
from simpus.core.models import Book, Loan, LoanStatus, User
from simpus.core.settings import SettingsProvider
from simpus.core.exceptions import (
    SimpusError,
    StorageError,
    UserNotFoundError,
    BookNotFoundError,
    LoanNotFoundError,
    OutOfStockError,
    LoanLimitExceededError,
    InvalidDurationError,
    AlreadyReturnedError,
    OverdueError,
)

logger = logging.getLogger(__name__)

EXTENSION_DAYS = 7
END_OF_DAY = datetime.time(23, 59, 59)


def compute_fine(due_date, returned_at, fine_per_day) -> int:
    """Fine owed when a loan due at `due_date` comes back at `returned_at`.

    Whole days late are counted by truncating the lateness in hours / 24.
    Less than a full day late is free when it is still the due date's
    calendar day, and counts as one day once the date has changed.
    """
    if not returned_at > due_date:
        return 0
    days_late = int((returned_at - due_date).total_seconds() / 86400)
    if days_late < 1:
        days_late = 0 if returned_at.date() == due_date.date() else 1
    return days_late * fine_per_day


class LoanEngine:

    def __init__(self, db, settings=None):
        self.db = db
        self.settings = settings or SettingsProvider(db)

    def _loans(self):
        return self.db.query(Loan).options(joinedload(Loan.book), joinedload(Loan.user))

    def get(self, loan_id) -> Loan:
        loan = self._loans().filter(Loan.id == loan_id).first()
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def count_active(self, user_id=None) -> int:
        q = self.db.query(Loan).filter(Loan.is_borrowed)
        if user_id is not None:
            q = q.filter(Loan.user_id == user_id)
        return q.count()

    def borrow(self, user_id, book_id, duration_days=None, now=None) -> Loan:
        """
        Lend one copy of a book to a user.

        Args:
            user_id: Borrowing user's id.
            book_id: Book to borrow.
            duration_days: Requested loan length; zero, negative or None
                means the standard loan duration.
            now: Loan timestamp, defaults to the current local time.

        Returns:
            The new Loan, status `borrowed`.

        Raises:
            LoanLimitExceededError: User already holds the maximum.
            InvalidDurationError: Requested duration exceeds the standard one.
            BookNotFoundError: No such book.
            OutOfStockError: No copies left.
            StorageError: The transaction failed.
        """
        policy = self.settings.get()
        now = now or datetime.datetime.now()
        try:
            # Row lock on the borrower serializes their concurrent borrows
            user = self.db.query(User).filter(User.id == user_id).with_for_update().first()
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")

            if self.count_active(user_id) >= policy.max_loan_books:
                raise LoanLimitExceededError(
                    f"Loan limit reached ({policy.max_loan_books} books)")

            duration = duration_days if duration_days and duration_days > 0 else policy.loan_duration
            if duration > policy.loan_duration:
                raise InvalidDurationError(
                    f"Maximum loan duration is {policy.loan_duration} days")

            book = self.db.query(Book).filter(Book.id == book_id).with_for_update().first()
            if book is None:
                raise BookNotFoundError(f"Book {book_id} not found")
            if book.stock <= 0:
                raise OutOfStockError(f"'{book.title}' is out of stock")

            taken = self.db.query(Book).filter(
                Book.id == book_id,
                Book.stock > 0
            ).update({Book.stock: Book.stock - 1}, synchronize_session=False)
            if not taken:
                raise OutOfStockError(f"'{book.title}' is out of stock")

            loan = Loan(
                user_id=user_id,
                book_id=book_id,
                loan_date=now,
                due_date=now + datetime.timedelta(days=duration),
                status=LoanStatus.BORROWED,
                fine=0
            )
            self.db.add(loan)
            self.db.flush()
            if self.count_active(user_id) > policy.max_loan_books:
                raise LoanLimitExceededError(
                    f"Loan limit reached ({policy.max_loan_books} books)")
            self.db.commit()
        except SimpusError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to borrow book: {e}") from e

        logger.info(f"User {user_id} borrowed book {book_id} until {loan.due_date}")
        return loan

    def return_loan(self, loan_id, now=None) -> Loan:
        """Closes a loan, charging the overdue fine and restocking the book."""
        fine_per_day = self.settings.get().fine_per_day
        now = now or datetime.datetime.now()
        try:
            loan = self.db.query(Loan).filter(Loan.id == loan_id).with_for_update().first()
            if loan is None:
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            if loan.status == LoanStatus.RETURNED:
                raise AlreadyReturnedError(f"Loan {loan_id} was already returned")

            fine = compute_fine(loan.due_date, now, fine_per_day)
            closed = self.db.query(Loan).filter(
                Loan.id == loan_id,
                Loan.status == LoanStatus.BORROWED
            ).update({
                Loan.return_date: now,
                Loan.status: LoanStatus.RETURNED,
                Loan.fine: fine,
            }, synchronize_session=False)
            if not closed:
                raise AlreadyReturnedError(f"Loan {loan_id} was already returned")

            self.db.query(Book).filter(Book.id == loan.book_id).update(
                {Book.stock: Book.stock + 1}, synchronize_session=False)
            self.db.commit()
        except SimpusError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to return book: {e}") from e

        logger.info(f"Loan {loan_id} returned with fine {fine}")
        return self.get(loan_id)

    def extend(self, loan_id, owner_id=None, now=None) -> Loan:
        """Pushes the due date back EXTENSION_DAYS while the loan is not overdue.

        When `owner_id` is given, loans belonging to anyone else are
        reported as not found.
        """
        now = now or datetime.datetime.now()
        try:
            loan = self.db.query(Loan).filter(Loan.id == loan_id).with_for_update().first()
            if loan is None or (owner_id is not None and loan.user_id != owner_id):
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            if loan.status != LoanStatus.BORROWED:
                raise AlreadyReturnedError(f"Loan {loan_id} is not borrowed")
            if now > loan.due_date:
                raise OverdueError(f"Loan {loan_id} is overdue and cannot be extended")

            loan.due_date = loan.due_date + datetime.timedelta(days=EXTENSION_DAYS)
            self.db.commit()
        except SimpusError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to extend loan: {e}") from e

        logger.info(f"Loan {loan_id} extended until {loan.due_date}")
        return loan

    def list_for_user(self, user_id):
        return self._loans().filter(
            Loan.user_id == user_id
        ).order_by(Loan.loan_date.desc(), Loan.id.desc()).all()

    def list_all(self, start=None, end=None):
        """All loans, newest first; filtered by loan date when both
        `start` and `end` dates are given (end date inclusive)."""
        q = self._loans()
        if start is not None and end is not None:
            q = q.filter(
                Loan.loan_date >= datetime.datetime.combine(start, datetime.time.min),
                Loan.loan_date <= datetime.datetime.combine(end, END_OF_DAY)
            )
        return q.order_by(Loan.loan_date.desc(), Loan.id.desc()).all()

    def list_borrowed(self):
        return self._loans().filter(Loan.is_borrowed).all()

    def list_overdue(self, user_id, now=None):
        now = now or datetime.datetime.now()
        return self._loans().filter(
            Loan.user_id == user_id,
            Loan.status == LoanStatus.BORROWED,
            Loan.due_date < now
        ).order_by(Loan.due_date).all()

    def summary(self, start=None, end=None, now=None, top=5) -> dict:
        """Report over `list_all(start, end)`: loan counts, fines collected
        and the `top` most borrowed titles."""
        now = now or datetime.datetime.now()
        loans = self.list_all(start, end)
        borrowed = [loan for loan in loans if loan.status == LoanStatus.BORROWED]
        popular = Counter(loan.book_title for loan in loans).most_common(top)
        return {
            "total_loans": len(loans),
            "active_loans": len(borrowed),
            "returned_loans": len(loans) - len(borrowed),
            "overdue_loans": sum(1 for loan in borrowed if loan.is_overdue(now)),
            "fines_collected": sum(loan.fine for loan in loans),
            "popular_books": [{"title": title, "loans": count} for title, count in popular],
        }
