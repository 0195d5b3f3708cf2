"""
CJ Dropshipping configuration model

Single-row table holding provider credentials and the last issued token pair.
The token triple is written back by the token manager so a restart does not
force a fresh login (the provider limits how often getAccessToken may be called).
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text

from app.core.database import Base
from app.core.utils import utcnow


class CJConfig(Base):
    __tablename__ = "cj_config"

    id = Column(Integer, primary_key=True, index=True)

    # Credentials
    email = Column(String(255), nullable=False, default="")
    api_key = Column(Text, nullable=False, default="")
    tier = Column(String(20), nullable=False, default="free")  # free, plus, prime, advanced
    platform_token = Column(Text, nullable=True)
    enabled = Column(Boolean, default=False, nullable=False)

    # Token state
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
