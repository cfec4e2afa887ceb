from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=False, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)

# Messages the supported backends use when a table has not been created yet.
MISSING_TABLE_MARKERS = ("does not exist", "no such table", "undefined table", "undefinedtable")


def get_db():
    """FastAPI dependency: one session per request. Routes commit explicitly."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_missing_table_error(exc: Exception) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in MISSING_TABLE_MARKERS)
