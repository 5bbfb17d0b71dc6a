import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from simpus.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)


def make_engine(uri=DB_URI, echo=DEBUG):
    # In-memory SQLite must share one connection across threads
    engine_kwargs = {'echo': echo}
    if uri.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in uri or uri == 'sqlite://':
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['client_encoding'] = 'utf8'
    return create_engine(uri, **engine_kwargs)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class SimpusBase:
    @classmethod
    def get_many(cls, db, offset=None, limit=None, order_by=()):
        return db.query(cls).order_by(*order_by).offset(offset).limit(limit).all()

Base = declarative_base(cls=SimpusBase)


def get_db():
    """Yields one session per request; FastAPI closes it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init(bind=None):
    """Creates all tables and seeds the default lending policy."""
    from simpus.core import models  # noqa: F401 registers tables on Base
    from simpus.core.settings import SettingsProvider

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    db = sessionmaker(bind=bind, autocommit=False, autoflush=False)()
    try:
        SettingsProvider(db).seed()
    finally:
        db.close()
    logger.info("Database initialized")


LIKE_ESCAPE = "\\"


def contains_pattern(text):
    """LIKE pattern matching `text` literally anywhere; use with escape=LIKE_ESCAPE."""
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return f"%{text}%"
