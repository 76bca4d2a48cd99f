"""
Customer subscription state, maintained by the billing webhook handlers.
Updates assign absolute values so replaying an event is harmless.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Boolean
from payhooks.database import Base


class CustomerSubscription(Base):
    __tablename__ = "customer_subscriptions"

    subscription_id = Column(String(255), primary_key=True)
    customer_id = Column(String(255), nullable=True, index=True)
    status = Column(String(30), nullable=False, default="incomplete")  # active, trial, past_due, canceled, ...
    price_id = Column(String(255), nullable=True)
    customer_email = Column(String(320), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    # created time of the newest event applied; older events are ignored
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
