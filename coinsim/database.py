from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def unit_of_work(db: Session):
    """
    Commit everything done inside the block as one unit, or nothing.

    On any exception the session is rolled back and the exception re-raised,
    so no partially applied change survives.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
