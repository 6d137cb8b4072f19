"""Relationship edges and discovered candidate relationships."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, JSON, String, Text, UniqueConstraint

from .base import BaseModel


class ContactRelationship(BaseModel):
    """Directed edge between two contacts; ``is_mutual`` marks it as two-way."""

    __tablename__ = "contact_relationships"
    __table_args__ = (
        UniqueConstraint("contact_id", "related_contact_id", "relationship_type", name="uq_relationship_triple"),
    )

    contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    related_contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship_type = Column(String(30), nullable=False)
    strength = Column(Float, default=0.5)
    confidence = Column(Float, default=1.0)
    notes = Column(Text)
    is_verified = Column(Boolean, default=False)
    is_mutual = Column(Boolean, default=False)
    source = Column(String(50), default="manual")


class PotentialRelationship(BaseModel):
    """Inferred relationship awaiting review."""

    __tablename__ = "potential_relationships"

    account_id = Column(String(36), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    related_contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    inferred_type = Column(String(30), nullable=False)
    confidence = Column(Float, nullable=False)
    evidence = Column(JSON, default=list)  # ordered list of signal dicts
    fingerprint = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), default="PENDING", index=True)  # 'PENDING', 'APPROVED', 'REJECTED', 'SUPERSEDED'
    source = Column(String(50), default="auto_discovery")
    reviewed_at = Column(DateTime)
