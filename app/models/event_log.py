"""
Append-only event log and the denormalized trust score.

Every domain record (template version, reservation, return, damage report,
condition assessment, reputation entry) is one row in event_log. Rows are
never updated; a newer row for the same (entity_type, entity_id) supersedes
the older one.
"""
from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String

from app.core.clock import utcnow
from app.models.database import Base


class EventLogEntry(Base):
    __tablename__ = "event_log"
    __table_args__ = (
        Index("ix_event_log_entity", "entity_type", "entity_id"),
        Index("ix_event_log_action_created", "action", "created_at"),
    )

    # insertion order; the superseding rule reads the highest seq
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    user_id = Column(String(100), nullable=True)  # actor

    payload = Column(JSON, nullable=False)
    schema_version = Column(Integer, nullable=False, default=1)

    # one assessment per return, one return per reservation, one ledger
    # entry per triggering record
    dedupe_key = Column(String(200), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<EventLogEntry {self.action} {self.entity_type}:{self.entity_id}>"


class UserTrust(Base):
    __tablename__ = "user_trust"

    user_id = Column(String(100), primary_key=True)
    trust_score = Column(Float, nullable=False)
    # compare-and-swap token for the reputation ledger
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserTrust {self.user_id} score={self.trust_score} v{self.version}>"
