import logging
from typing import NamedTuple
from sqlalchemy.exc import SQLAlchemyError
from simpus.core.models import Settings

logger = logging.getLogger(__name__)

SETTINGS_ID = 1


class Policy(NamedTuple):
    max_loan_books: int
    loan_duration: int
    fine_per_day: int


DEFAULT_POLICY = Policy(max_loan_books=3, loan_duration=7, fine_per_day=5000)


class SettingsProvider:
    """Read-only access to the lending policy, degrading to DEFAULT_POLICY."""

    def __init__(self, db):
        self.db = db

    def get(self) -> Policy:
        try:
            row = self.db.get(Settings, SETTINGS_ID)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load settings, using defaults: {e}")
            self.db.rollback()
            return DEFAULT_POLICY
        if row is None:
            return DEFAULT_POLICY
        return Policy(row.max_loan_books, row.loan_duration, row.fine_per_day)

    def seed(self):
        """Inserts the default policy row if none exists yet."""
        if self.db.get(Settings, SETTINGS_ID) is None:
            self.db.add(Settings(id=SETTINGS_ID, **DEFAULT_POLICY._asdict()))
            self.db.commit()
