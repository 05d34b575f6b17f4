from contextlib import contextmanager
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from orderdesk.core.config import settings
from orderdesk.core.exceptions import ConcurrentModificationError, DatabaseError

engine = create_async_engine(str(settings.DATABASE_URL), echo=settings.DATABASE_ECHO)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

Base = declarative_base()

# SQLSTATE for unique_violation on PostgreSQL
UNIQUE_VIOLATION = "23505"

async def create_tables(bind: AsyncEngine = engine):
    # models must be imported so their tables are registered on Base.metadata
    from orderdesk.data import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@contextmanager
def db_errors(action: str):
    """Translate SQLAlchemy failures raised inside the block into service errors."""
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrentModificationError(
            f"Error {action}: the order was modified concurrently, reload and retry"
        ) from exc
    except SQLAlchemyError as exc:
        raise DatabaseError(f"Error {action}: {exc}", exc) from exc


def is_unique_violation(exc: BaseException) -> bool:
    """True for a unique or primary key clash, False for other integrity failures."""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig)
