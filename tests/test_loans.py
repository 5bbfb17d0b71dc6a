import datetime
import threading
import pytest
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from simpus.core.db import Base, make_engine
from simpus.core.catalog import Catalog
from simpus.core.users import Users
from simpus.core.loans import LoanEngine, compute_fine, EXTENSION_DAYS
from simpus.core.models import Loan, LoanStatus, Settings
from simpus.core.settings import SettingsProvider, DEFAULT_POLICY
from simpus.core.exceptions import (
    OutOfStockError,
    LoanLimitExceededError,
    InvalidDurationError,
    AlreadyReturnedError,
    OverdueError,
    BookNotFoundError,
    UserNotFoundError,
    LoanNotFoundError,
    StorageError,
    SimpusError,
)

NOW = datetime.datetime(2025, 3, 10, 10, 0, 0)
DAY = datetime.timedelta(days=1)


@pytest.fixture
def engine(db_session):
    return LoanEngine(db_session)


def test_borrow_last_copy_then_out_of_stock(engine, make_user, make_book):
    alice, bob = make_user("alice"), make_user("bob")
    book = make_book(stock=1)

    loan = engine.borrow(alice.id, book.id, 7, now=NOW)
    assert loan.status == LoanStatus.BORROWED
    assert loan.loan_date == NOW
    assert loan.due_date == NOW + 7 * DAY
    assert loan.fine == 0
    assert book.stock == 0

    with pytest.raises(OutOfStockError):
        engine.borrow(bob.id, book.id, 7, now=NOW)
    assert book.stock == 0
    assert engine.count_active(bob.id) == 0


def test_stock_tracks_borrows_and_returns(engine, make_user, make_book):
    users = [make_user(f"user{i}") for i in range(3)]
    book = make_book(stock=5)

    loans = [engine.borrow(u.id, book.id, now=NOW) for u in users]
    assert book.stock == 2
    engine.return_loan(loans[0].id, now=NOW)
    assert book.stock == 3


def test_borrow_at_limit_fails_without_mutation(engine, make_user, make_book):
    user = make_user()
    books = [make_book(title=f"Book {i}", stock=2) for i in range(4)]
    for book in books[:3]:
        engine.borrow(user.id, book.id, now=NOW)

    with pytest.raises(LoanLimitExceededError):
        engine.borrow(user.id, books[3].id, now=NOW)
    assert books[3].stock == 2
    assert engine.count_active(user.id) == DEFAULT_POLICY.max_loan_books


def test_limit_frees_up_after_return(engine, make_user, make_book):
    user = make_user()
    book = make_book(stock=4)
    loans = [engine.borrow(user.id, book.id, now=NOW) for _ in range(3)]
    engine.return_loan(loans[0].id, now=NOW)
    assert engine.borrow(user.id, book.id, now=NOW).status == LoanStatus.BORROWED


@pytest.mark.parametrize("requested, expected_days", [
    (None, 7),
    (0, 7),
    (-3, 7),
    (3, 3),
    (7, 7),
])
def test_borrow_duration(engine, make_user, make_book, requested, expected_days):
    loan = engine.borrow(make_user().id, make_book().id, requested, now=NOW)
    assert loan.due_date - loan.loan_date == expected_days * DAY


def test_borrow_longer_than_policy(engine, make_user, make_book):
    book = make_book()
    with pytest.raises(InvalidDurationError):
        engine.borrow(make_user().id, book.id, 8, now=NOW)
    assert book.stock == 1


def test_borrow_unknown_book_or_user(engine, make_user, make_book):
    with pytest.raises(BookNotFoundError):
        engine.borrow(make_user().id, 999, now=NOW)
    with pytest.raises(UserNotFoundError):
        engine.borrow("no-such-user", make_book().id, now=NOW)


def test_return_ten_days_late(engine, make_user, make_book):
    book = make_book(stock=1)
    loan = engine.borrow(make_user().id, book.id, 7, now=NOW - 17 * DAY)
    assert loan.due_date == NOW - 10 * DAY

    returned = engine.return_loan(loan.id, now=NOW)
    assert returned.status == LoanStatus.RETURNED
    assert returned.return_date == NOW
    assert returned.fine == 50000
    assert book.stock == 1


def test_return_twice(engine, make_user, make_book):
    book = make_book(stock=1)
    loan = engine.borrow(make_user().id, book.id, now=NOW - 9 * DAY)
    engine.return_loan(loan.id, now=NOW)

    with pytest.raises(AlreadyReturnedError):
        engine.return_loan(loan.id, now=NOW + 5 * DAY)
    loan = engine.get(loan.id)
    assert loan.fine == 10000
    assert loan.return_date == NOW
    assert book.stock == 1


def test_return_unknown_loan(engine):
    with pytest.raises(LoanNotFoundError):
        engine.return_loan(42, now=NOW)


def test_fine_uses_stored_policy(engine, db_session, make_user, make_book):
    db_session.get(Settings, 1).fine_per_day = 1000
    db_session.commit()
    loan = engine.borrow(make_user().id, make_book().id, now=NOW - 10 * DAY)
    assert engine.return_loan(loan.id, now=NOW).fine == 3000


@pytest.mark.parametrize("due, returned, fine", [
    # on time
    (NOW, NOW - DAY, 0),
    (NOW, NOW, 0),
    # late, but still the due date
    (datetime.datetime(2025, 3, 10, 9, 0), datetime.datetime(2025, 3, 10, 20, 0), 0),
    # under 24h late across midnight counts as a day
    (datetime.datetime(2025, 3, 10, 20, 0), datetime.datetime(2025, 3, 11, 8, 0), 5000),
    # partial days are truncated
    (NOW, NOW + datetime.timedelta(days=2, hours=12), 10000),
    (NOW, NOW + 10 * DAY, 50000),
])
def test_compute_fine(due, returned, fine):
    assert compute_fine(due, returned, 5000) == fine


def test_extend_before_due(engine, make_user, make_book):
    user = make_user()
    loan = engine.borrow(user.id, make_book().id, now=NOW)
    due = loan.due_date

    extended = engine.extend(loan.id, owner_id=user.id, now=NOW + 6 * DAY)
    assert extended.due_date == due + EXTENSION_DAYS * DAY
    assert extended.status == LoanStatus.BORROWED


def test_extend_overdue(engine, make_user, make_book):
    loan = engine.borrow(make_user().id, make_book().id, now=NOW)
    due = loan.due_date
    with pytest.raises(OverdueError):
        engine.extend(loan.id, now=due + datetime.timedelta(seconds=1))
    assert engine.get(loan.id).due_date == due


def test_extend_returned_or_foreign(engine, make_user, make_book):
    owner, other = make_user("owner"), make_user("other")
    loan = engine.borrow(owner.id, make_book(stock=2).id, now=NOW)

    with pytest.raises(LoanNotFoundError):
        engine.extend(loan.id, owner_id=other.id, now=NOW)

    engine.return_loan(loan.id, now=NOW)
    with pytest.raises(AlreadyReturnedError):
        engine.extend(loan.id, now=NOW)


def test_list_for_user_newest_first(engine, make_user, make_book):
    user, other = make_user("a"), make_user("b")
    book = make_book(stock=5)
    first = engine.borrow(user.id, book.id, now=NOW - 2 * DAY)
    second = engine.borrow(user.id, book.id, now=NOW)
    engine.borrow(other.id, book.id, now=NOW)

    loans = engine.list_for_user(user.id)
    assert [l.id for l in loans] == [second.id, first.id]
    assert loans[0].book_title == "Laskar Pelangi"


def test_list_all_date_range_includes_end_of_day(engine, make_user, make_book):
    book = make_book(stock=5)
    users = [make_user(f"u{i}") for i in range(4)]
    early = engine.borrow(users[0].id, book.id, now=datetime.datetime(2025, 3, 1, 0, 0))
    late = engine.borrow(users[1].id, book.id, now=datetime.datetime(2025, 3, 5, 23, 59))
    engine.borrow(users[2].id, book.id, now=datetime.datetime(2025, 3, 6, 0, 0, 30))
    engine.borrow(users[3].id, book.id, now=datetime.datetime(2025, 2, 28, 23, 59))

    loans = engine.list_all(datetime.date(2025, 3, 1), datetime.date(2025, 3, 5))
    assert [l.id for l in loans] == [late.id, early.id]
    assert loans[0].username == "u1"

    assert len(engine.list_all()) == 4
    assert len(engine.list_all(datetime.date(2025, 3, 1), None)) == 4


def test_list_overdue(engine, make_user, make_book):
    user = make_user()
    book = make_book(stock=3)
    overdue = engine.borrow(user.id, book.id, now=NOW - 8 * DAY)
    engine.borrow(user.id, book.id, now=NOW)
    returned = engine.borrow(user.id, book.id, now=NOW - 9 * DAY)
    engine.return_loan(returned.id, now=NOW)

    assert [l.id for l in engine.list_overdue(user.id, now=NOW)] == [overdue.id]
    assert engine.get(overdue.id).is_overdue(NOW)


def test_settings_fall_back_to_defaults(db_session, make_user, make_book):
    db_session.query(Settings).delete()
    db_session.commit()
    assert SettingsProvider(db_session).get() == DEFAULT_POLICY

    loan = LoanEngine(db_session).borrow(make_user().id, make_book().id, now=NOW)
    assert loan.due_date == NOW + DEFAULT_POLICY.loan_duration * DAY


def test_stored_loan_limit(db_session, make_user, make_book):
    db_session.get(Settings, 1).max_loan_books = 1
    db_session.commit()
    engine = LoanEngine(db_session)
    user, book = make_user(), make_book(stock=2)
    engine.borrow(user.id, book.id, now=NOW)
    with pytest.raises(LoanLimitExceededError):
        engine.borrow(user.id, book.id, now=NOW)
    assert db_session.query(Loan).count() == 1


def test_limit_is_rechecked_after_insert(engine, make_user, make_book):
    user = make_user()
    books = [make_book(title=f"Book {i}") for i in range(4)]
    for book in books[:3]:
        engine.borrow(user.id, book.id, now=NOW)

    # first count is stale, as if another borrow committed right after it
    real_count = LoanEngine.count_active
    calls = []

    def stale_count(self, user_id=None):
        calls.append(user_id)
        active = real_count(self, user_id)
        return active - 1 if len(calls) == 1 else active

    with patch.object(LoanEngine, "count_active", stale_count):
        with pytest.raises(LoanLimitExceededError):
            engine.borrow(user.id, books[3].id, now=NOW)

    assert engine.count_active(user.id) == 3
    assert books[3].stock == 1


def test_failed_borrow_rolls_back(engine, db_session, make_user, make_book):
    user, book = make_user(), make_book(stock=1)
    with patch.object(db_session, "commit", side_effect=SQLAlchemyError("disk I/O error")):
        with pytest.raises(StorageError):
            engine.borrow(user.id, book.id, now=NOW)

    assert book.stock == 1
    assert db_session.query(Loan).count() == 0


def test_failed_return_rolls_back(engine, db_session, make_user, make_book):
    book = make_book(stock=1)
    loan = engine.borrow(make_user().id, book.id, now=NOW - 10 * DAY)
    with patch.object(db_session, "commit", side_effect=SQLAlchemyError("disk I/O error")):
        with pytest.raises(StorageError):
            engine.return_loan(loan.id, now=NOW)

    loan = engine.get(loan.id)
    assert (loan.status, loan.fine, loan.return_date) == (LoanStatus.BORROWED, 0, None)
    assert book.stock == 0


def test_settings_read_error_falls_back(db_session):
    db_session.get(Settings, 1).loan_duration = 14
    db_session.commit()
    with patch.object(db_session, "get", side_effect=SQLAlchemyError("no such table: settings")):
        assert SettingsProvider(db_session).get() == DEFAULT_POLICY
    assert SettingsProvider(db_session).get().loan_duration == 14


def test_summary(engine, make_user, make_book):
    alice, bob = make_user("alice"), make_user("bob")
    bumi, kamus = make_book(title="Bumi", stock=3), make_book(title="Kamus", stock=3)
    late = engine.borrow(alice.id, bumi.id, now=NOW - 10 * DAY)
    engine.return_loan(late.id, now=NOW)
    engine.borrow(bob.id, kamus.id, now=NOW)
    engine.borrow(bob.id, bumi.id, now=NOW - 8 * DAY)

    report = engine.summary(now=NOW)
    assert report == {
        "total_loans": 3,
        "active_loans": 2,
        "returned_loans": 1,
        "overdue_loans": 1,
        "fines_collected": 15000,
        "popular_books": [{"title": "Bumi", "loans": 2}, {"title": "Kamus", "loans": 1}],
    }
    assert engine.summary(datetime.date(2025, 3, 10), datetime.date(2025, 3, 10), now=NOW)["total_loans"] == 1


@pytest.fixture
def shared_db(tmp_path):
    """File database so each thread gets its own connection."""
    db_engine = make_engine(f"sqlite:///{tmp_path / 'simpus.db'}", echo=False)
    Base.metadata.create_all(db_engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    setup = Session()
    SettingsProvider(setup).seed()
    setup.close()
    yield Session
    db_engine.dispose()


def borrow_together(Session, requests):
    """Runs each (user_id, book_id) borrow in its own thread and session, all
    of them lined up right after their loan-limit check."""
    real_count = LoanEngine.count_active
    barrier = threading.Barrier(len(requests), timeout=5)
    local = threading.local()
    results = []

    def count_then_wait(self, user_id=None):
        active = real_count(self, user_id)
        if not getattr(local, "waited", False):
            local.waited = True
            barrier.wait()
        return active

    def run(user_id, book_id):
        session = Session()
        try:
            LoanEngine(session).borrow(user_id, book_id, now=NOW)
            results.append("ok")
        except (SimpusError, threading.BrokenBarrierError) as e:
            results.append(e)
        finally:
            session.close()

    with patch.object(LoanEngine, "count_active", count_then_wait):
        threads = [threading.Thread(target=run, args=args) for args in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
    return results


def test_concurrent_borrows_of_last_copy(shared_db):
    session = shared_db()
    alice, bob = Users(session).register("alice", "x"), Users(session).register("bob", "x")
    book = Catalog(session).create(title="Last copy", stock=1)
    requests = [(alice.id, book.id), (bob.id, book.id)]

    results = borrow_together(shared_db, requests)

    assert results.count("ok") == 1
    assert all(r == "ok" or isinstance(r, (OutOfStockError, StorageError)) for r in results)
    session.expire_all()
    assert Catalog(session).get(book.id).stock == 0
    assert session.query(Loan).count() == 1
    session.close()


def test_concurrent_borrows_at_limit(shared_db):
    session = shared_db()
    user = Users(session).register("alice", "x")
    books = [Catalog(session).create(title=f"Book {i}", stock=1) for i in range(4)]
    engine = LoanEngine(session)
    for book in books[:2]:
        engine.borrow(user.id, book.id, now=NOW)

    results = borrow_together(shared_db, [(user.id, books[2].id), (user.id, books[3].id)])

    assert results.count("ok") == 1
    assert all(r == "ok" or isinstance(r, (LoanLimitExceededError, StorageError)) for r in results)
    session.expire_all()
    assert LoanEngine(session).count_active(user.id) == DEFAULT_POLICY.max_loan_books
    assert sum(Catalog(session).get(b.id).stock for b in books[2:]) == 1
    session.close()
