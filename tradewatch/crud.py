# tradewatch/crud.py
"""CRUD operations for `TrackedJob` rows.

Callers serialize access per job id (see `RegistryContext`); these helpers
only guarantee that each call is one transaction.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
from .models import TrackedJob


def _insert_for(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def upsert_job(
    db: Session,
    job_id: str,
    schedule: str,
    filter: Dict[str, Any],
    sent_item_ids: Optional[List[str]] = None,
    last_run: Optional[datetime] = None,
    reset: bool = False,
):
    """Create or replace the definition of `job_id`.

    On conflict only schedule and filter are overwritten; the dedup ledger and
    `last_run` survive unless explicitly passed. `reset=True` also clears them,
    for a job id that is being added anew over a leftover row.
    """
    table = TrackedJob.__table__
    values = {
        "job_id": job_id,
        "schedule": schedule,
        "filter": filter,
        "sent_item_ids": list(sent_item_ids or []),
        "last_run": last_run,
    }
    stmt = _insert_for(db)(table).values(**values)
    updates = {"schedule": stmt.excluded["schedule"], "filter": stmt.excluded["filter"], "updated_at": func.now()}
    if sent_item_ids is not None or reset:
        updates["sent_item_ids"] = stmt.excluded["sent_item_ids"]
    if last_run is not None or reset:
        updates["last_run"] = stmt.excluded["last_run"]
    stmt = stmt.on_conflict_do_update(index_elements=["job_id"], set_=updates)
    db.execute(stmt)
    db.commit()


def get_job(db: Session, job_id: str) -> Optional[TrackedJob]:
    return db.execute(select(TrackedJob).where(TrackedJob.job_id == job_id)).scalar_one_or_none()


def list_jobs(db: Session) -> List[TrackedJob]:
    return list(db.execute(select(TrackedJob).order_by(TrackedJob.id)).scalars())


def delete_job(db: Session, job_id: str) -> bool:
    res = db.execute(delete(TrackedJob).where(TrackedJob.job_id == job_id))
    db.commit()
    return res.rowcount > 0


def merge_ledger(ledger: Iterable[str], new_ids: Iterable[str], limit: int) -> List[str]:
    """Append unseen ids and keep only the newest `limit` entries."""
    merged = list(ledger)
    seen = set(merged)
    for item_id in new_ids:
        if item_id not in seen:
            merged.append(item_id)
            seen.add(item_id)
    if len(merged) > limit:
        merged = merged[-limit:]
    return merged


def record_delivery(
    db: Session,
    job_id: str,
    item_ids: Iterable[str],
    when: Optional[datetime] = None,
    limit: int = 1000,
) -> bool:
    """Add delivered ids to the ledger and advance `last_run`.

    Returns False without writing anything if the job no longer exists.
    """
    obj = get_job(db, job_id)
    if obj is None:
        return False
    obj.sent_item_ids = merge_ledger(obj.sent_item_ids or [], item_ids, limit)
    obj.last_run = when or datetime.now(timezone.utc)
    db.commit()
    return True
