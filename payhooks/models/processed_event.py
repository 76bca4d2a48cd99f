"""
Processed webhook event log - the durable source of truth for idempotency.

One row per provider event ID, written once after the handler has run
(successfully or with a business-level failure). Rows are never updated or
deleted. The primary key on event_id is what breaks ties between concurrent
redeliveries of the same event.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer
from payhooks.database import Base


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_created_at = Column(DateTime(timezone=True), nullable=False)
    success = Column(Boolean, nullable=False)
    error_detail = Column(Text, nullable=True)  # set iff success is False
    processing_time_ms = Column(Integer, nullable=False, default=0)
    recorded_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
