"""
Database models - import all models here so Alembic can discover them.
"""
from payhooks.models.processed_event import ProcessedWebhookEvent
from payhooks.models.subscription import CustomerSubscription

__all__ = [
    "ProcessedWebhookEvent",
    "CustomerSubscription",
]
