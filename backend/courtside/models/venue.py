# backend/courtside/models/venue.py
"""
Venue and Court models.

These are minimal records: bookings reference them, and the court carries
the opening hours and pricing rules used for slot generation. Venue and
court management happens outside this service.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Venue(Base):
    """A sports venue owned by a single owner actor."""

    __tablename__ = "venues"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    address = Column(Text, nullable=True)
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    courts = relationship("Court", back_populates="venue", order_by="Court.name")

    def __repr__(self) -> str:
        return f"<Venue {self.id}: {self.name} owner={self.owner_id}>"


class Court(Base):
    """
    A bookable court.

    ``default_availability`` is a list of
    ``{"day_of_week": 0..6, "time_slots": [{"start", "end"}]}`` with 0 = Sunday.
    ``pricing`` is a list of
    ``{"day_type": "weekday"|"weekend", "start", "end", "price_per_hour", "is_active"}``.
    ``hold_version`` is bumped by every hold write so concurrent holds serialize on the row.
    """

    __tablename__ = "courts"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    venue_id = Column(String(26), ForeignKey("venues.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sport_type = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    default_availability = Column(JSON, nullable=False, default=list)
    pricing = Column(JSON, nullable=False, default=list)
    hold_version = Column(Integer, nullable=False, default=0)

    venue = relationship("Venue", back_populates="courts")

    def __repr__(self) -> str:
        return f"<Court {self.id}: {self.name} venue={self.venue_id}>"

    def opening_slots_for(self, day_of_week: int) -> List[Dict[str, Any]]:
        """Opening ranges configured for a weekday (0 = Sunday)."""
        for entry in self.default_availability or []:
            if entry.get("day_of_week") == day_of_week:
                return list(entry.get("time_slots") or [])
        return []

    def active_pricing_rules(self, day_type: Optional[str] = None) -> List[Dict[str, Any]]:
        rules = [rule for rule in (self.pricing or []) if rule.get("is_active", True)]
        if day_type is None:
            return rules
        return [rule for rule in rules if rule.get("day_type") == day_type]
