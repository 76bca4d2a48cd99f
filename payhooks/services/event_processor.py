"""
Event processor - routes a verified event to its handler by event type.

The processor's job is routing plus uniform error containment:
- unknown event types are acknowledged as a no-op success
- a payload that doesn't validate for its type is a failed result
- a handler that raises or runs past the timeout is a failed result
Nothing a handler does escapes process() as an exception.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from payhooks.schemas.events import EventPayload, InboundEvent, parse_event_payload
from payhooks.utils.logging import sanitize_payment_data

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_TIMEOUT_SECONDS = 10.0


@dataclass
class ProcessResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None) -> "ProcessResult":
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, error: str) -> "ProcessResult":
        return cls(success=False, message=error, error=error)


@dataclass
class EventContext:
    """Per-delivery metadata handed to handlers alongside the typed payload."""
    event_id: str
    event_type: str
    event_created_at: datetime
    session_factory: Optional[async_sessionmaker] = None
    correlation_id: Optional[str] = None


EventHandler = Callable[[EventPayload, EventContext], Awaitable[Optional[ProcessResult]]]


class EventProcessor:
    def __init__(
        self,
        handlers: Optional[dict[str, EventHandler]] = None,
        timeout_seconds: float = DEFAULT_HANDLER_TIMEOUT_SECONDS,
    ):
        self._handlers: dict[str, EventHandler] = dict(handlers or {})
        self.timeout_seconds = timeout_seconds

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    def handler_for(self, event_type: str) -> Optional[EventHandler]:
        return self._handlers.get(event_type)

    @property
    def handled_types(self) -> list[str]:
        return sorted(self._handlers)

    async def process(self, event: InboundEvent, context: EventContext) -> ProcessResult:
        handler = self.handler_for(event.type)
        if handler is None:
            logger.info(
                "Unhandled event type: %s", event.type,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return ProcessResult.ok(f"Unhandled event type: {event.type}")

        try:
            payload = parse_event_payload(event)
        except ValidationError as e:
            logger.warning(
                "Invalid %s payload for event %s: %s",
                event.type, event.id, e.errors(include_url=False),
                extra={"event_id": event.id, "event_type": event.type},
            )
            return ProcessResult.failed(
                f"Invalid payload for {event.type}: {e.error_count()} validation error(s)"
            )

        try:
            result = await asyncio.wait_for(handler(payload, context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "Handler for %s timed out after %ss (event %s)",
                event.type, self.timeout_seconds, event.id,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return ProcessResult.failed(f"Handler timed out after {self.timeout_seconds:g}s")
        except Exception as e:
            logger.error(
                "Handler for %s failed (event %s): %s | payload=%s",
                event.type, event.id, str(e), sanitize_payment_data(event.data.object),
                exc_info=True,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return ProcessResult.failed(str(e) or e.__class__.__name__)

        if result is None:
            return ProcessResult.ok()
        return result
