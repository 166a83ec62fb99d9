from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings
from .errors import StoreError
from .log import get_logger

logger = get_logger(__name__)

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@lru_cache()
def get_engine():
    settings = get_settings().database
    engine = create_engine(
        settings.url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_recycle=settings.pool_recycle,
        pool_pre_ping=True,
        echo=settings.echo,
    )
    logger.info("database_engine_created", host=settings.host, database=settings.name)
    return engine


def dispose_engine():
    if get_engine.cache_info().currsize:
        get_engine().dispose()
        get_engine.cache_clear()
        logger.info("database_connection_closed")


# Dependency
def get_db():
    db = SessionLocal(bind=get_engine())
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors(db: Session, message: str):
    """Roll back and re-raise any SQLAlchemy failure as a StoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("store_error", message=message, exc_info=exc)
        raise StoreError(message) from exc
