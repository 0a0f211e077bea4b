import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ledgerbook.config import settings

LOGGER = logging.getLogger(__name__)

DEFAULT_ROLES = {
    "admin": "Full access to every book and payout",
    "managers": "End users managing their own books",
    "staff": "Members invited into a business",
    "auditor": "Read-only access for reconciliation",
}


class StoreUnavailable(RuntimeError):
    pass


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+psycopg://", 1)
    return raw_url


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


DATABASE_URL = _build_database_url(settings.database_url)
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
)
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive timestamps; every stored value is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def init_db() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured")
    from ledgerbook.models import otp as _otp  # noqa: F401
    from ledgerbook.models import payout as _payout  # noqa: F401
    from ledgerbook.models import user as _user  # noqa: F401

    Base.metadata.create_all(bind=engine)
    seed_roles()


def seed_roles() -> None:
    from ledgerbook.models.user import RoleEntry

    with session_scope() as session:
        existing = set(session.execute(select(RoleEntry.name)).scalars().all())
        for name, description in DEFAULT_ROLES.items():
            if name not in existing:
                session.add(RoleEntry(name=name, description=description))


def dialect_insert(session: Session, model):
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Upserts are not supported on {dialect}")
    return insert(model)


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        if exc.connection_invalidated or _is_connectivity_error(exc):
            LOGGER.exception("Database is unavailable")
            raise StoreUnavailable("Database is unavailable") from exc
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _is_connectivity_error(exc: DBAPIError) -> bool:
    message = str(exc.orig).lower()
    return any(
        marker in message
        for marker in (
            "could not connect",
            "connection refused",
            "connection timed out",
            "server closed the connection",
            "unable to open database",
            "database is locked",
        )
    )
