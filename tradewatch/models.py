# tradewatch/models.py
"""SQLAlchemy ORM models for persisted entities.

`TrackedJob` is the durable mirror of one recurring job: its schedule, its
query filter and the dedup ledger of item ids already delivered.
"""
from sqlalchemy import Column, Integer, Text, TIMESTAMP, JSON, func
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class TrackedJob(Base):
    __tablename__ = "tracked_jobs"
    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Text, nullable=False, unique=True, index=True)
    schedule = Column(Text, nullable=False)
    filter = Column(JSONType, nullable=False)
    last_run = Column(TIMESTAMP(timezone=True), nullable=True)
    # ordered oldest -> newest so retention can drop from the front
    sent_item_ids = Column(JSONType, nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<TrackedJob(job_id={self.job_id!r}, schedule={self.schedule!r})>"
