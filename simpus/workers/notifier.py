#!/usr/bin/env python

"""
    Overdue sweep for SIMPUS.

    Scans every borrowed loan, warns about overdue ones (with the fine
    accrued so far) and reminds borrowers whose loan falls due within the
    next 24 hours. Messages go through the NotificationSink, whose dedup
    keeps repeated sweeps from re-sending the same text.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import asyncio
import logging
import datetime
from contextlib import suppress
from sqlalchemy.exc import SQLAlchemyError
from simpus.configs import SWEEP_INTERVAL, CURRENCY
from simpus.core.db import SessionLocal
from simpus.core.loans import LoanEngine
from simpus.core.settings import SettingsProvider
from simpus.core.notifications import NotificationSink
from simpus.core.exceptions import SimpusError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Book"
REMINDER_WINDOW = datetime.timedelta(hours=24)


def estimated_days_late(due_date, now) -> int:
    """Whole days past due, at least 1 once the due date has passed.

    Unlike the fine charged on return there is no same-calendar-day
    grace here.
    """
    return max(1, int((now - due_date).total_seconds() / 86400))


def overdue_message(title, days_late, fine):
    unit = "day" if days_late == 1 else "days"
    return (f"WARNING: Book '{title}' is {days_late} {unit} late. "
            f"Current fine: {CURRENCY} {fine}. Please return it immediately!")


def reminder_message(title, due_date):
    return f"REMINDER: Book '{title}' is due tomorrow ({due_date:%d %b %Y})."


class OverdueNotifier:

    def __init__(self, session_factory=SessionLocal, hub=None, interval=SWEEP_INTERVAL):
        self.session_factory = session_factory
        self.hub = hub
        self.interval = interval
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check(self, now=None) -> int:
        """Runs one sweep and returns how many notifications were stored."""
        logger.info("Checking for overdue books and reminders...")
        db = self.session_factory()
        try:
            return self._sweep(db, now or datetime.datetime.now())
        finally:
            db.close()

    def _sweep(self, db, now) -> int:
        loans = LoanEngine(db).list_borrowed()
        fine_per_day = SettingsProvider(db).get().fine_per_day
        sink = NotificationSink(db, hub=self.hub)

        sent = 0
        for loan in loans:
            try:
                sent += self._notify(sink, loan, now, fine_per_day)
            except (SimpusError, SQLAlchemyError) as e:
                logger.error(f"Failed to notify loan {loan.id}: {e}")
        logger.info(f"Sweep finished: {len(loans)} active loans, {sent} notifications")
        return sent

    def _notify(self, sink, loan, now, fine_per_day) -> int:
        title = loan.book_title or DEFAULT_TITLE
        sent = 0
        if now > loan.due_date:
            days_late = estimated_days_late(loan.due_date, now)
            message = overdue_message(title, days_late, days_late * fine_per_day)
            sent += sink.create(loan.user_id, message, now=now)

        until_due = loan.due_date - now
        if datetime.timedelta(0) < until_due < REMINDER_WINDOW:
            sent += sink.create(loan.user_id, reminder_message(title, loan.due_date), now=now)
        return sent

    async def run(self):
        """Sweeps immediately, then once every `interval` seconds."""
        while True:
            try:
                await asyncio.to_thread(self.check)
            except Exception as e:
                logger.exception(f"Overdue sweep failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self.run())
            logger.info(f"Overdue sweep scheduled every {self.interval}s")
        return self._task

    async def stop(self):
        if self.running:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
