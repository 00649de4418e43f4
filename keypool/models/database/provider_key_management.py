"""Per-provider load-balancing configuration model."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String

from keypool.core.clock import utcnow
from keypool.core.storage.database import Base


class ProviderKeyManagement(Base):
    """Key selection settings, one row per provider."""

    __tablename__ = "provider_key_management"
    __table_args__ = (
        CheckConstraint(
            "strategy IN ('round_robin', 'priority', 'least_used', 'random')",
            name="ck_provider_key_management_strategy",
        ),
    )

    provider_id = Column(String(50), primary_key=True)
    strategy = Column(String(16), default="round_robin", nullable=False)
    enable_multi_key = Column(Boolean, default=False, nullable=False)
    max_failures_before_disable = Column(Integer, default=3, nullable=False)
    failure_recovery_time_minutes = Column(Integer, default=5, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
