import logging
import datetime
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from simpus.core import auth
from simpus.core.models import User, Book, Loan, LoanStatus, Notification
from simpus.core.db import contains_pattern, LIKE_ESCAPE
from simpus.core.policy import Role
from simpus.core.exceptions import (
    StorageError,
    ValidationError,
    UserExistsError,
    UserNotFoundError,
    InvalidCredentialsError,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("fullname", "nip", "contact")


def _parse_role(value, default=None):
    try:
        return Role.parse(value, default=default)
    except ValueError as e:
        raise ValidationError(str(e)) from e


class Users:

    def __init__(self, db):
        self.db = db

    def _commit(self, action):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to {action}: {e}") from e

    def register(self, username, password, fullname=None, nip=None, contact=None,
                 role=None, now=None) -> User:
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username & password required")
        role = _parse_role(role, default=Role.MEMBER)
        if self.db.query(User).filter(User.username == username).first():
            raise UserExistsError(f"User '{username}' already exists")

        user = User(
            username=username,
            password=auth.hash_password(password),
            role=role,
            fullname=fullname or None,
            nip=nip or None,
            contact=contact or None,
            created_at=now or datetime.datetime.now()
        )
        try:
            self.db.add(user)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise UserExistsError(f"User '{username}' already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create user: {e}") from e
        logger.info(f"Registered user {username} ({role.value})")
        return user

    def authenticate(self, username, password) -> User:
        try:
            user = self.get_by_username((username or "").strip())
        except UserNotFoundError as e:
            raise InvalidCredentialsError("Invalid username or password") from e
        if not auth.verify_password(password or "", user.password):
            raise InvalidCredentialsError("Invalid username or password")
        return user

    def get(self, user_id) -> User:
        if user := self.db.get(User, user_id):
            return user
        raise UserNotFoundError(f"User {user_id} not found")

    def get_by_username(self, username) -> User:
        if user := self.db.query(User).filter(User.username == username).first():
            return user
        raise UserNotFoundError(f"User '{username}' not found")

    def list(self):
        return self.db.query(User).order_by(User.created_at.desc()).all()

    def search(self, query):
        q = contains_pattern(query)
        return self.db.query(User).filter(or_(
            User.username.like(q, escape=LIKE_ESCAPE),
            User.fullname.like(q, escape=LIKE_ESCAPE),
            User.nip.like(q, escape=LIKE_ESCAPE),
        )).order_by(User.created_at.desc()).all()

    def count(self) -> int:
        return self.db.query(User).count()

    def update(self, user_id, role=None, **fields) -> User:
        """Admin update of profile fields and role; None leaves a field as is."""
        user = self.get(user_id)
        if role is not None:
            user.role = _parse_role(role)
        for key in PROFILE_FIELDS:
            if fields.get(key) is not None:
                setattr(user, key, fields[key] or None)
        self._commit("update user")
        return user

    def update_profile(self, user_id, fullname=None, nip=None, contact=None, password=None) -> User:
        """Self-service update; the role can not be changed here."""
        user = self.get(user_id)
        for key, value in (("fullname", fullname), ("nip", nip), ("contact", contact)):
            if value is not None:
                setattr(user, key, value or None)
        if password:
            user.password = auth.hash_password(password)
        self._commit("update profile")
        return user

    def delete(self, user_id):
        """Deletes a user along with their notifications and loan history
        in one transaction. Copies still out on loan go back into stock."""
        user = self.get(user_id)
        try:
            outstanding = self.db.query(Loan.book_id, func.count(Loan.id)).filter(
                Loan.user_id == user_id,
                Loan.status == LoanStatus.BORROWED
            ).group_by(Loan.book_id).all()
            for book_id, copies in outstanding:
                self.db.query(Book).filter(Book.id == book_id).update(
                    {Book.stock: Book.stock + copies}, synchronize_session=False)
            self.db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
            self.db.query(Loan).filter(Loan.user_id == user_id).delete(synchronize_session=False)
            self.db.delete(user)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete user: {e}") from e
        logger.info(f"Deleted user {user_id}")
