# Overview: Service-layer helpers for row locking, conflict-free inserts, and unit-of-work retries.

from __future__ import annotations

import time

from sqlalchemy import insert, update

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def claim_status(model, row_id: int, *, current: str, target: str | None = None) -> None:
    """
    Move a row from `current` to `target` status with one guarded UPDATE.

    Runs before any side effect of a transition, so exactly one writer wins
    even where FOR UPDATE is ignored. With no target the row is only
    confirmed still at `current`, which also takes the write lock for edits
    of a non-terminal document. Zero matched rows raise ConflictError, and
    run_with_retry re-reads the row and re-checks the transition.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.status == current)
        .values(status=current if target is None else target)
    )
    if db.session.execute(stmt).rowcount != 1:
        raise ConflictError(f"{model.__tablename__} {row_id} changed concurrently, please retry")


def insert_ignoring_conflicts(model, values: dict, *, index_elements: list[str]):
    """
    Build an INSERT that silently does nothing when the unique key exists.

    Lets create-or-increment paths insert first and fall back to an UPDATE
    without a savepoint or a session rollback.
    """
    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    if dialect in ("mysql", "mariadb"):
        return insert(model).values(**values).prefix_with("IGNORE")
    raise NotImplementedError(f"insert_ignoring_conflicts not supported for {dialect}")


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute one unit of work (which commits at its end) as all-or-nothing.

    Any exception rolls the session back so no partial reservation or
    half-written order survives. ConflictError (a unique number or a
    status claim lost a race) re-runs the whole unit, which allocates fresh
    numbers and re-checks the status it reads; every other error
    propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except ConflictError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
