"""Contact model with derived scoring columns."""

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text

from .base import BaseModel


class Contact(BaseModel):
    """A person in an account's network."""

    __tablename__ = "contacts"

    account_id = Column(String(36), nullable=False, index=True)

    # Identity
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    email = Column(String(255), index=True)

    # Professional context
    company = Column(String(255), index=True)
    position = Column(String(255))
    industry = Column(String(100))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    tags = Column(JSON, default=list)
    source = Column(String(50), default="manual")
    status = Column(String(20), default="ACTIVE", index=True)  # 'ACTIVE', 'ARCHIVED'
    tier = Column(String(20))  # 'TIER_1', 'TIER_2', 'TIER_3'
    relationship_type = Column(String(30))

    # Last change to profile fields (company, position); scoring writes do not touch it
    profile_updated_at = Column(DateTime)

    # Interaction history
    last_contact_date = Column(DateTime)
    connection_date = Column(DateTime)
    outreach_sent = Column(Integer, default=0)
    outreach_responded = Column(Integer, default=0)
    campaign_contacts = Column(Integer, default=0)
    campaign_responses = Column(Integer, default=0)

    # Network analytics
    influence_score = Column(Float)
    betweenness_centrality = Column(Float)
    total_connections = Column(Integer)

    # Derived by the contact scorer
    priority_score = Column(Float)
    opportunity_score = Column(Float)
    strategic_value = Column(Float)
    opportunity_flags = Column(JSON, default=list)
    scoring_factors = Column(JSON, default=dict)
    last_scored_at = Column(DateTime)

    notes = Column(Text)
