"""Multi-key provider API key database model."""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from keypool.core.clock import utcnow
from keypool.core.storage.database import Base


class ProviderApiKey(Base):
    """A stored provider key plus its usage and health metadata."""

    __tablename__ = "provider_api_keys"
    __table_args__ = (
        UniqueConstraint("provider_id", "key", name="uq_provider_api_keys_provider_key"),
        CheckConstraint(
            "status IN ('active', 'disabled', 'error')",
            name="ck_provider_api_keys_status",
        ),
        Index("idx_provider_keys_status", "provider_id", "status", "is_enabled"),
        Index("idx_provider_keys_priority", "provider_id", "priority"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id = Column(String(50), nullable=False, index=True)
    key = Column(Text, nullable=False)
    name = Column(String(255), nullable=True)
    is_enabled = Column(Boolean, default=True, nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=5, nullable=False)

    # Usage
    total_requests = Column(Integer, default=0, nullable=False)
    successful_requests = Column(Integer, default=0, nullable=False)
    failed_requests = Column(Integer, default=0, nullable=False)
    last_used = Column(DateTime, nullable=True)
    consecutive_failures = Column(Integer, default=0, nullable=False)

    # Health
    status = Column(String(16), default="active", nullable=False)
    last_error = Column(Text, nullable=True)
    disabled_at = Column(DateTime, nullable=True)  # set only by automatic disable

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
