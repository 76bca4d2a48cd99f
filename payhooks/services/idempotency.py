"""
Idempotency store - durable record of provider events already processed.

has_processed() is checked before any handler runs; record() is written only
after the handler returns. The primary key on event_id makes the insert the
tie-breaker: when two deliveries of the same event race to record, one insert
wins and the other comes back False instead of raising.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from payhooks.models.processed_event import ProcessedWebhookEvent

logger = logging.getLogger(__name__)

_MAX_ERROR_DETAIL_LENGTH = 2000


class IdempotencyStore:
    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from payhooks.database import get_session_factory
            session_factory = get_session_factory()
        self._session_factory = session_factory

    async def has_processed(self, event_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProcessedWebhookEvent.event_id).where(
                    ProcessedWebhookEvent.event_id == event_id
                )
            )
            return result.scalar_one_or_none() is not None

    async def record(
        self,
        event_id: str,
        event_type: str,
        event_created_at: datetime,
        success: bool,
        processing_time_ms: int,
        error: Optional[str] = None,
    ) -> bool:
        """
        Insert the processing record for event_id.

        Returns True if this call wrote the record, False if a record for the
        same event already existed (duplicate key). Any other database error
        propagates to the caller.
        """
        error_detail = None
        if not success:
            error_detail = (error or "Processing failed")[:_MAX_ERROR_DETAIL_LENGTH]

        async with self._session_factory() as db:
            db.add(
                ProcessedWebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    event_created_at=event_created_at,
                    success=success,
                    error_detail=error_detail,
                    processing_time_ms=int(processing_time_ms),
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(
                    "Processing record already exists for %s - concurrent delivery won",
                    event_id,
                    extra={"event_id": event_id, "event_type": event_type},
                )
                return False

        logger.info(
            "Recorded %s event %s (success=%s, %dms)",
            event_type, event_id, success, processing_time_ms,
            extra={"event_id": event_id, "event_type": event_type},
        )
        return True

    async def get_record(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProcessedWebhookEvent).where(
                    ProcessedWebhookEvent.event_id == event_id
                )
            )
            return result.scalar_one_or_none()

    async def count(self, event_id: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ProcessedWebhookEvent)
        if event_id is not None:
            query = query.where(ProcessedWebhookEvent.event_id == event_id)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return int(result.scalar_one())
