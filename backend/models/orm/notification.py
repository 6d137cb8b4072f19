"""Notification preferences and delivery log."""

from sqlalchemy import Boolean, Column, Float, JSON, String, UniqueConstraint

from .base import BaseModel


class NotificationSettings(BaseModel):
    """Per-user notification preferences."""

    __tablename__ = "notification_settings"

    user_id = Column(String(36), nullable=False, unique=True, index=True)
    account_id = Column(String(36), nullable=False, index=True)
    enabled_categories = Column(JSON, default=list)
    min_confidence = Column(Float, default=0.4)
    min_impact = Column(Float, default=60.0)
    daily_digest = Column(Boolean, default=True)
    real_time_alerts = Column(Boolean, default=True)
    urgent_only = Column(Boolean, default=False)


class NotificationDelivery(BaseModel):
    """One row per (user, opportunity) that was sent or dismissed."""

    __tablename__ = "notification_deliveries"
    __table_args__ = (
        UniqueConstraint("user_id", "opportunity_id", name="uq_delivery_user_opportunity"),
    )

    user_id = Column(String(36), nullable=False, index=True)
    opportunity_id = Column(String(36), nullable=False)
    state = Column(String(20), default="sent")  # 'sent', 'dismissed'
