# database.py
# Establishes the async connection to the SQL database and the ORM base.

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from .config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def get_db_url():
    """Get the database URL for use in Alembic migrations and maintenance scripts."""
    return settings.DATABASE_URL


# NullPool: no pooling, a new connection per session (safest with async workers)
engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    poolclass=NullPool,
)

SessionLocal = async_sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

Base = declarative_base()
