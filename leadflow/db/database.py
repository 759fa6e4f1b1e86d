from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from leadflow import config


class Base(DeclarativeBase):
    pass


def make_session_factory(url: str = config.DATABASE_URL) -> sessionmaker:
    """Session factory for `url`.

    SQLite connections are used from both the request thread pool and the
    queue's event loop thread.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return sessionmaker(bind=create_engine(url, connect_args=connect_args))


SessionLocal = make_session_factory()
engine = SessionLocal.kw["bind"]


def init_db(bind=None):
    from leadflow.db import tables  # noqa: F401 - registers table models
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
