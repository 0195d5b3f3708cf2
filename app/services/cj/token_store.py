"""
CJ token store

Reads credentials and the last issued token pair from the single cj_config
row, and writes refreshed tokens back so restarts reuse them.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import select

from app.core.database import get_db_session
from app.core.exceptions import ConfigError
from app.core.utils import as_utc, utcnow
from app.models.cj_config import CJConfig
from app.services.cj.types import CJCredentials, CJTier, TokenState

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Persistence for CJ credentials and tokens.

    session_factory must return an async context manager yielding an
    AsyncSession (get_db_session by default).
    """

    def __init__(self, session_factory: Callable = get_db_session):
        self._session_factory = session_factory

    async def _get_config(self, db) -> Optional[CJConfig]:
        result = await db.execute(select(CJConfig).order_by(CJConfig.id).limit(1))
        return result.scalar_one_or_none()

    async def load_credentials(self) -> CJCredentials:
        async with self._session_factory() as db:
            config = await self._get_config(db)

        if config is None:
            raise ConfigError("CJ Dropshipping is not configured")
        if not config.enabled:
            raise ConfigError("CJ Dropshipping integration is disabled")
        if not config.email or not config.api_key:
            raise ConfigError(
                "CJ Dropshipping credentials are incomplete",
                details={"has_email": bool(config.email), "has_api_key": bool(config.api_key)},
            )

        tier = CJTier.parse(config.tier)
        if tier is None:
            logger.warning(f"[CJ_AUTH] Unknown tier {config.tier!r}, using default timings")

        return CJCredentials(
            email=config.email,
            api_key=config.api_key,
            tier=tier,
            platform_token=config.platform_token or None,
        )

    async def load_token(self) -> Optional[TokenState]:
        async with self._session_factory() as db:
            config = await self._get_config(db)

        if config is None or not config.access_token or config.token_expiry is None:
            return None

        return TokenState(
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            expires_at=as_utc(config.token_expiry),
        )

    async def load_refresh_token(self) -> Optional[str]:
        async with self._session_factory() as db:
            config = await self._get_config(db)
        return config.refresh_token if config else None

    async def save_token(self, state: TokenState) -> bool:
        """Write the token triple. Returns False when there is no row to update."""
        async with self._session_factory() as db:
            config = await self._get_config(db)
            if config is None:
                return False
            config.access_token = state.access_token
            config.refresh_token = state.refresh_token
            config.token_expiry = state.expires_at
            config.updated_at = utcnow()
            await db.commit()
        return True

    async def clear_token(self) -> None:
        async with self._session_factory() as db:
            config = await self._get_config(db)
            if config is None:
                return
            config.access_token = None
            config.refresh_token = None
            config.token_expiry = None
            await db.commit()
