"""
CJ Token Manager - access/refresh token lifecycle

CJ access tokens are valid for 15 days and getAccessToken is itself rate
limited, so the manager prefers, in order:
1. the in-memory token
2. the last token persisted in cj_config
3. refreshAccessToken with the known refresh token
4. a full login with email + api key

A token is treated as stale one hour before it actually expires. Only a failed
login surfaces to callers; a failed refresh always falls through to login.
Persisting the new token is best effort and reported as a PersistOutcome.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import AuthError
from app.core.utils import utcnow
from app.services.cj.token_store import TokenStore
from app.services.cj.types import CJCredentials, CJResponse, TokenState

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/authentication/getAccessToken"
REFRESH_ENDPOINT = "/authentication/refreshAccessToken"


class PersistOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"  # no cj_config row to write to
    FAILED = "failed"


class CJTokenManager:
    """Owns credentials and the current TokenState for one CJ account."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        store: Optional[TokenStore] = None,
        clock: Callable[[], datetime] = utcnow,
        validity: Optional[timedelta] = None,
        refresh_margin: Optional[timedelta] = None,
    ):
        self._http = http_client
        self._store = store or TokenStore()
        self._clock = clock
        self.validity = validity or timedelta(days=settings.CJ_TOKEN_VALIDITY_DAYS)
        self.refresh_margin = refresh_margin or timedelta(
            minutes=settings.CJ_TOKEN_REFRESH_MARGIN_MINUTES
        )

        self._credentials: Optional[CJCredentials] = None
        self._token: Optional[TokenState] = None
        self._lock = asyncio.Lock()
        self.last_persist_outcome: Optional[PersistOutcome] = None

    @property
    def token(self) -> Optional[TokenState]:
        return self._token

    async def get_credentials(self) -> CJCredentials:
        """Load credentials once; they do not change for the manager's lifetime."""
        if self._credentials is None:
            self._credentials = await self._store.load_credentials()
        return self._credentials

    async def ensure_valid_token(self) -> str:
        """Return an access token valid for at least the refresh margin."""
        async with self._lock:
            now = self._clock()
            if self._token and not self._token.is_stale(now, self.refresh_margin):
                return self._token.access_token

            persisted = await self._load_persisted()
            if persisted and not persisted.is_stale(now, self.refresh_margin):
                logger.info("[CJ_AUTH] Reusing persisted access token")
                self._token = persisted
                return persisted.access_token

            if persisted and not self._token:
                # Keep its refresh token for the refresh attempt
                self._token = persisted

            state = await self.refresh()
            return state.access_token

    async def _load_persisted(self) -> Optional[TokenState]:
        try:
            return await self._store.load_token()
        except Exception as e:
            logger.warning(f"[CJ_AUTH] Could not load persisted token: {e}")
            return None

    async def login(self) -> TokenState:
        """Full login with email + api key. Raises AuthError or ConfigError."""
        credentials = await self.get_credentials()
        logger.info(f"[CJ_AUTH] Logging in as {credentials.email}")

        try:
            response = await self._post(
                LOGIN_ENDPOINT,
                {"email": credentials.email, "apiKey": credentials.api_key},
            )
        except httpx.HTTPError as e:
            raise AuthError(
                f"CJ login request failed: {e}",
                code="NETWORK_ERROR",
                endpoint=LOGIN_ENDPOINT,
            ) from e
        except ValueError as e:
            raise AuthError(
                "CJ login returned a malformed response",
                code="MALFORMED_RESPONSE",
                endpoint=LOGIN_ENDPOINT,
            ) from e

        state = self._token_from_response(response)
        if state is None:
            raise AuthError(
                response.message or "CJ login failed",
                code=response.code,
                request_id=response.request_id,
                status_code=response.status_code,
                endpoint=LOGIN_ENDPOINT,
            )

        await self._adopt(state)
        logger.info(f"[CJ_AUTH] Login successful, token valid until {state.expires_at.isoformat()}")
        return state

    async def refresh(self) -> TokenState:
        """Refresh the access token; any failure falls through to login()."""
        refresh_token = self._token.refresh_token if self._token else None
        if not refresh_token:
            try:
                refresh_token = await self._store.load_refresh_token()
            except Exception as e:
                logger.warning(f"[CJ_AUTH] Could not load refresh token: {e}")

        if not refresh_token:
            logger.info("[CJ_AUTH] No refresh token available, logging in")
            return await self.login()

        try:
            response = await self._post(REFRESH_ENDPOINT, {"refreshToken": refresh_token})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[CJ_AUTH] Token refresh failed ({e}), logging in")
            return await self.login()

        state = self._token_from_response(response, fallback_refresh=refresh_token)
        if state is None:
            logger.warning(
                f"[CJ_AUTH] Token refresh rejected (code={response.code}, "
                f"message={response.message!r}), logging in"
            )
            return await self.login()

        await self._adopt(state)
        logger.info("[CJ_AUTH] Access token refreshed")
        return state

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> CJResponse:
        # Auth calls bypass the throttle and never carry an access token
        http_response = await self._http.post(endpoint, json=body)
        payload = http_response.json()
        if not isinstance(payload, dict):
            raise ValueError("response body is not an object")
        return CJResponse.from_payload(payload, status_code=http_response.status_code)

    def _token_from_response(
        self, response: CJResponse, fallback_refresh: Optional[str] = None
    ) -> Optional[TokenState]:
        data = response.data if isinstance(response.data, dict) else {}
        access_token = data.get("accessToken")
        if not response.ok or not access_token:
            return None
        return TokenState(
            access_token=access_token,
            refresh_token=data.get("refreshToken") or fallback_refresh,
            expires_at=self._clock() + self.validity,
        )

    async def _adopt(self, state: TokenState) -> PersistOutcome:
        self._token = state
        self.last_persist_outcome = await self._persist(state)
        return self.last_persist_outcome

    async def _persist(self, state: TokenState) -> PersistOutcome:
        try:
            saved = await self._store.save_token(state)
        except Exception as e:
            # Non-fatal: the token is still usable in memory
            logger.warning(f"[CJ_AUTH] Failed to persist token: {e}")
            return PersistOutcome.FAILED
        if not saved:
            logger.warning("[CJ_AUTH] No cj_config row, token kept in memory only")
            return PersistOutcome.SKIPPED
        return PersistOutcome.SAVED

    def is_connected(self) -> bool:
        return bool(self._token) and self._clock() < self._token.expires_at

    def connection_info(self) -> Dict[str, Any]:
        token = self._token
        credentials = self._credentials
        return {
            "connected": self.is_connected(),
            "email": credentials.email if credentials else None,
            "tier": credentials.tier.value if credentials and credentials.tier else None,
            "expires_at": token.expires_at.isoformat() if token else None,
            "has_refresh_token": bool(token and token.refresh_token),
            "last_persist_outcome": (
                self.last_persist_outcome.value if self.last_persist_outcome else None
            ),
        }

    async def clear(self) -> None:
        """Forget the token in memory and storage (after logout)."""
        self._token = None
        try:
            await self._store.clear_token()
        except Exception as e:
            logger.warning(f"[CJ_AUTH] Failed to clear persisted token: {e}")
