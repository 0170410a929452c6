"""
ORM model for the persistent negotiation record.

WHAT: The durable fields the round manager reads and writes back
WHY: The record is owned by the CRUD layer; the engine only touches rounds and status
HOW: Single declarative table with constraints and a str enum status
"""

from datetime import datetime
import enum

from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, Index, Enum as SQLEnum

from .database import Base


class NegotiationStatus(str, enum.Enum):
    """Lifecycle stages of a negotiation's rounds."""
    OPENING = "opening"
    EXPLORING = "exploring"
    BARGAINING = "bargaining"
    CLOSING = "closing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class NegotiationRecord(Base):
    """
    Negotiation record table.

    WHAT: Buyer, seller, product and round counters of one negotiation
    WHY: Limits survive process restarts and are visible to the CRUD layer
    HOW: Primary key on the negotiation id shared with the in-memory state
    """
    __tablename__ = "negotiation_records"

    id = Column(String(64), primary_key=True)
    buyer = Column(String(100), nullable=False, default="")
    seller = Column(String(100), nullable=False, default="")
    product = Column(String(200), nullable=False, default="")
    status = Column(SQLEnum(NegotiationStatus), nullable=False, default=NegotiationStatus.OPENING)
    rounds = Column(Integer, nullable=False, default=0)
    max_rounds = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        CheckConstraint("rounds >= 0", name="check_rounds_non_negative"),
        CheckConstraint("max_rounds >= 1", name="check_max_rounds_positive"),
        Index("idx_negotiation_records_status", "status"),
    )

    def __repr__(self):
        return f"<NegotiationRecord(id={self.id}, status={self.status}, rounds={self.rounds}/{self.max_rounds})>"
