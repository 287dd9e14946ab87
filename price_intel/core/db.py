"""Engine, session factory and dialect-aware upsert helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Iterable, Iterator, Sequence

from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from price_intel.core.config import settings
from price_intel.core.errors import FatalInfrastructureError

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Database dependency for the API routes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def infrastructure_guard(action: str) -> Iterator[None]:
    """Translate connectivity failures into ``FatalInfrastructureError``."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise FatalInfrastructureError(f"{action}: {exc}") from exc


def _insert_for(db: Session, model: Any):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


def upsert(
    db: Session,
    model: Any,
    rows: Sequence[dict[str, Any]],
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """INSERT ... ON CONFLICT DO UPDATE (idempotent write)."""
    if not rows:
        return
    stmt = _insert_for(db, model).values(list(rows))
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)


def insert_once(
    db: Session,
    model: Any,
    rows: Sequence[dict[str, Any]],
    conflict_columns: Iterable[str],
) -> int:
    """INSERT ... ON CONFLICT DO NOTHING; returns the number of rows written."""
    if not rows:
        return 0
    stmt = _insert_for(db, model).values(list(rows))
    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = db.execute(stmt)
    return result.rowcount or 0
