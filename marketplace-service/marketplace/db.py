from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from . import config
from .models import Base


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # TestClient and the threadpool share one SQLite connection pool
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def transaction(session: Session):
    """Run a block of statements atomically.

    Commits when the block exits normally; on any exception every statement
    issued inside the block is rolled back and the exception propagates.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
