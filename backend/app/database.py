"""Database engine, session factory and commit helper."""
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings
from .domain_errors import DependencyFailure

logger = logging.getLogger(__name__)

engine = create_engine(
    settings.DATABASE_URL,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_raise(db, *, action: str, conflict: Exception | None = None) -> None:
    """Commit, translating storage failures into domain errors.

    An IntegrityError is re-raised as ``conflict`` when one is supplied.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if conflict is not None:
            raise conflict from exc
        logger.exception("Integrity error while trying to %s", action)
        raise DependencyFailure(code="STORAGE_FAILURE", message=f"Failed to {action}") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while trying to %s", action)
        raise DependencyFailure(code="STORAGE_FAILURE", message=f"Failed to {action}") from exc
