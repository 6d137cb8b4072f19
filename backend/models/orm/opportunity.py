"""Opportunity suggestions and their feedback."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text

from .base import BaseModel


class OpportunitySuggestion(BaseModel):
    """A ranked, actionable suggestion served to the user."""

    __tablename__ = "opportunity_suggestions"

    account_id = Column(String(36), nullable=False, index=True)
    category = Column(String(30), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, default="")
    confidence_score = Column(Float, nullable=False)
    impact_score = Column(Float, nullable=False)
    urgency_score = Column(Float, default=50.0)
    priority = Column(String(20), nullable=False, index=True)
    status = Column(String(20), default="PENDING", index=True)
    primary_contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    secondary_contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="SET NULL"))
    path_signature = Column(String(255), default="")
    reasoning = Column(JSON, default=list)
    narrative = Column(Text, default="")
    expires_at = Column(DateTime)
    acted_at = Column(DateTime)
    completed_at = Column(DateTime)
    suggestion_metadata = Column("metadata", JSON, default=dict)


class OpportunityFeedback(BaseModel):
    """Write-once outcome report for a suggestion."""

    __tablename__ = "opportunity_feedback"

    opportunity_id = Column(
        String(36), ForeignKey("opportunity_suggestions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id = Column(String(36))
    rating = Column(Integer, nullable=False)
    actual_outcome = Column(String(30), nullable=False)
    actual_impact = Column(Float, nullable=False)
    time_invested = Column(Float, default=0.0)
    feedback = Column(Text, default="")
    would_recommend = Column(Boolean)
