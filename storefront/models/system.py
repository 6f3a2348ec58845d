from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, UniqueConstraint

from .database import Base

class StoreSetting(Base):
    __tablename__ = "store_settings"

    id = Column(Integer, primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"
    __table_args__ = (UniqueConstraint("key", "scope", name="key_scope"),)

    id = Column(Integer, primary_key=True)
    key = Column(String(128), nullable=False)
    scope = Column(String(50), nullable=False)
    resource_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
