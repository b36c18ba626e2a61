# tradewatch/scheduler.py
"""Recurring job registry.

`RegistryContext` owns the shared mutable state (the store session factory,
the APScheduler instance and one lock per job id) and is built once at
startup. Every registry mutation and every ledger write-back for a job id runs
under that id's lock, so different jobs never block each other.

Triggers are added with ``max_instances=1``: when a job is due while its
previous run is still going, APScheduler drops the new run and we log it.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.background import BackgroundScheduler
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from . import crud
from .db import make_engine, make_session_factory, init_db
from .errors import DuplicateJobId, InvalidSchedule, JobNotFound, StoreError
from .schedule import TriggerSpec, parse_schedule
from .schemas import QueryFilter
from .utils import logger

MISFIRE_GRACE_SECONDS = 300


@dataclass
class JobInfo:
    id: str
    next_fire_time: Optional[datetime]


@dataclass
class JobRecord:
    job_id: str
    schedule: str
    filter: Dict[str, Any]
    last_run: Optional[datetime]
    sent_item_ids: List[str]


class RegistryContext:
    def __init__(self, session_factory, scheduler=None, ledger_limit=1000, timezone="UTC"):
        self.session_factory = session_factory
        self.timezone = timezone
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone)
        self.ledger_limit = ledger_limit
        self._locks = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings):
        """Connect the durable store; failure here is fatal to startup."""
        engine = make_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        try:
            init_db(engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not connect to job store: {e}") from e
        return cls(
            make_session_factory(engine),
            ledger_limit=settings.ledger_max_ids,
            timezone=settings.scheduler_timezone,
        )

    def lock_for(self, job_id):
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.RLock()
            return lock

    def forget_lock(self, job_id):
        with self._locks_guard:
            self._locks.pop(job_id, None)

    @contextmanager
    def session(self):
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def record_delivery(self, job_id, item_ids, when=None) -> bool:
        """Write back a delivered batch; False if the job no longer exists."""
        with self.lock_for(job_id):
            with self.session() as db:
                return crud.record_delivery(db, job_id, item_ids, when, limit=self.ledger_limit)

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self, wait=False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")


class RecurringJobRegistry:
    def __init__(self, context: RegistryContext, orchestrator):
        self.context = context
        self.orchestrator = orchestrator
        context.scheduler.add_listener(self._on_skipped, EVENT_JOB_MAX_INSTANCES)
        context.scheduler.add_listener(self._on_error, EVENT_JOB_ERROR)

    def _is_active(self, job_id):
        return self.context.scheduler.get_job(job_id) is not None

    def _schedule(self, job_id, spec: TriggerSpec):
        self.context.scheduler.add_job(
            self._fire,
            trigger=spec.to_trigger(self.context.timezone),
            args=[job_id],
            id=job_id,
            name=job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )

    def add_job(self, job_id, schedule, query: QueryFilter):
        with self.context.lock_for(job_id):
            if self._is_active(job_id):
                raise DuplicateJobId(job_id)
            spec = parse_schedule(schedule, job_id)
            self._schedule(job_id, spec)
            try:
                with self.context.session() as db:
                    crud.upsert_job(db, job_id, spec.expression, query.model_dump(mode="json"), reset=True)
            except StoreError:
                self.context.scheduler.remove_job(job_id)
                raise
        logger.info("Job %s added with schedule %s", job_id, spec.expression)

    def remove_job(self, job_id):
        with self.context.lock_for(job_id):
            if not self._is_active(job_id):
                raise JobNotFound(job_id)
            with self.context.session() as db:
                crud.delete_job(db, job_id)
            self.context.scheduler.remove_job(job_id)
        self.context.forget_lock(job_id)
        logger.info("Job %s stopped and removed", job_id)

    def update_job(self, job_id, new_schedule, query: QueryFilter):
        with self.context.lock_for(job_id):
            if not self._is_active(job_id):
                raise JobNotFound(job_id)
            spec = parse_schedule(new_schedule, job_id)
            with self.context.session() as db:
                existing = crud.get_job(db, job_id)
                ledger = list(existing.sent_item_ids or []) if existing else []
                last_run = existing.last_run if existing else None
                crud.upsert_job(
                    db, job_id, spec.expression, query.model_dump(mode="json"),
                    sent_item_ids=ledger, last_run=last_run,
                )
            self.context.scheduler.remove_job(job_id)
            self._schedule(job_id, spec)
        logger.info("Job %s updated with schedule %s", job_id, spec.expression)

    def list_jobs(self) -> List[JobInfo]:
        now = datetime.now(timezone.utc)
        out = []
        for job in self.context.scheduler.get_jobs():
            # pending jobs (scheduler not started) have no next_run_time yet
            nxt = getattr(job, "next_run_time", None)
            if nxt is None:
                nxt = job.trigger.get_next_fire_time(None, now)
            out.append(JobInfo(id=job.id, next_fire_time=nxt))
        return out

    def get_job(self, job_id) -> Optional[JobRecord]:
        with self.context.session() as db:
            row = crud.get_job(db, job_id)
            if row is None:
                return None
            return JobRecord(
                job_id=row.job_id,
                schedule=row.schedule,
                filter=dict(row.filter),
                last_run=row.last_run,
                sent_item_ids=list(row.sent_item_ids or []),
            )

    def load_persisted(self) -> int:
        with self.context.session() as db:
            rows = crud.list_jobs(db)
        if not rows:
            logger.info("No scheduled jobs found in database")
            return 0
        loaded = 0
        for row in rows:
            with self.context.lock_for(row.job_id):
                if self._is_active(row.job_id):
                    continue
                try:
                    spec = parse_schedule(row.schedule, row.job_id)
                    QueryFilter.model_validate(row.filter)
                except (InvalidSchedule, ValidationError) as e:
                    logger.error("Skipping persisted job %s: %s", row.job_id, e)
                    continue
                self._schedule(row.job_id, spec)
                loaded += 1
                logger.info("Loaded job %s with schedule %s", row.job_id, spec.expression)
        return loaded

    def _fire(self, job_id):
        try:
            record = self.get_job(job_id)
        except StoreError as e:
            logger.error("Job %s: could not read job record: %s", job_id, e)
            return None
        if record is None:
            logger.warning("Job %s fired but has no stored record", job_id)
            return None
        try:
            query = QueryFilter.model_validate(record.filter)
        except ValidationError as e:
            logger.error("Job %s: stored filter is invalid: %s", job_id, e)
            return None
        return self.orchestrator.run(job_id, query, record.sent_item_ids)

    def _on_skipped(self, event):
        logger.warning(
            "Job %s is still running; trigger due at %s dropped",
            event.job_id, ", ".join(str(t) for t in event.scheduled_run_times),
        )

    def _on_error(self, event):
        logger.error("Job %s raised %r\n%s", event.job_id, event.exception, event.traceback)
