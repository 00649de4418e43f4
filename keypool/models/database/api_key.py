"""Legacy single-key database model."""

import uuid
from sqlalchemy import Column, String, DateTime, LargeBinary

from keypool.core.clock import utcnow
from keypool.core.storage.database import Base


class ApiKey(Base):
    """One Fernet-encrypted API key per provider.

    This is the storage used before multi-key support. Rows are never removed by
    the multi-key migration; they stay as the fallback read path.
    """

    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String(50), nullable=False, unique=True)
    encrypted_key = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
