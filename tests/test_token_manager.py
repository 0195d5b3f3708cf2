"""
Tests for CJ token lifecycle: reuse, refresh, login fallback, persistence outcome.
"""
import json
from datetime import timedelta

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import AuthError, ConfigError
from app.core.utils import utcnow
from app.services.cj.token_manager import CJTokenManager, PersistOutcome
from app.services.cj.types import TokenState

from tests.conftest import CJ_BASE_URL, FakeTokenStore, cj_envelope, valid_token


class AuthServer:
    """MockTransport handler for the two authentication endpoints."""

    def __init__(self, login_ok: bool = True, refresh_ok: bool = True):
        self.login_ok = login_ok
        self.refresh_ok = refresh_ok
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if request.url.path.endswith("/authentication/getAccessToken"):
            self.calls.append(("login", body))
            if not self.login_ok:
                return httpx.Response(200, json=cj_envelope(None, code=1600101, result=False, message="Invalid API key"))
            return httpx.Response(200, json=cj_envelope({"accessToken": "login-access", "refreshToken": "login-refresh"}))
        if request.url.path.endswith("/authentication/refreshAccessToken"):
            self.calls.append(("refresh", body))
            if not self.refresh_ok:
                return httpx.Response(200, json=cj_envelope(None, code=1600003, result=False, message="Refresh token expired"))
            return httpx.Response(200, json=cj_envelope({"accessToken": "refreshed-access", "refreshToken": "refreshed-refresh"}))
        return httpx.Response(404)

    @property
    def kinds(self):
        return [kind for kind, _ in self.calls]


def make_manager(server: AuthServer, store: FakeTokenStore) -> CJTokenManager:
    http_client = httpx.AsyncClient(base_url=CJ_BASE_URL, transport=httpx.MockTransport(server))
    return CJTokenManager(http_client, store=store)


def stale_token() -> TokenState:
    # Inside the one hour refresh margin
    return TokenState(
        access_token="stale-access",
        refresh_token="stale-refresh",
        expires_at=utcnow() + timedelta(minutes=30),
    )


class TestEnsureValidToken:

    @pytest.mark.asyncio
    async def test_reuses_persisted_token(self, credentials):
        server = AuthServer()
        manager = make_manager(server, FakeTokenStore(credentials=credentials, token=valid_token("persisted")))

        token = await manager.ensure_valid_token()

        assert token == "persisted"
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_in_memory_token_reused_without_storage(self, credentials):
        server = AuthServer()
        store = FakeTokenStore(credentials=credentials, token=None)
        manager = make_manager(server, store)

        first = await manager.ensure_valid_token()
        store.token = None  # storage no longer consulted for a fresh in-memory token
        second = await manager.ensure_valid_token()

        assert first == second == "login-access"
        assert server.kinds == ["login"]

    @pytest.mark.asyncio
    async def test_stale_token_is_refreshed(self, credentials):
        server = AuthServer()
        store = FakeTokenStore(credentials=credentials, token=stale_token())
        manager = make_manager(server, store)

        token = await manager.ensure_valid_token()

        assert token == "refreshed-access"
        assert server.calls == [("refresh", {"refreshToken": "stale-refresh"})]
        assert store.saved[-1].access_token == "refreshed-access"
        assert manager.last_persist_outcome == PersistOutcome.SAVED

    @pytest.mark.asyncio
    async def test_new_token_expires_in_fifteen_days(self, credentials):
        manager = make_manager(AuthServer(), FakeTokenStore(credentials=credentials, token=None))

        before = utcnow()
        await manager.ensure_valid_token()

        expires_at = manager.token.expires_at
        assert timedelta(days=15) <= expires_at - before < timedelta(days=15, minutes=1)


class TestRefreshAndLogin:

    @pytest.mark.asyncio
    async def test_rejected_refresh_falls_back_to_login(self, credentials):
        server = AuthServer(refresh_ok=False)
        manager = make_manager(server, FakeTokenStore(credentials=credentials, token=stale_token()))

        token = await manager.ensure_valid_token()

        assert token == "login-access"
        assert server.kinds == ["refresh", "login"]

    @pytest.mark.asyncio
    async def test_no_refresh_token_logs_in_directly(self, credentials):
        server = AuthServer()
        manager = make_manager(server, FakeTokenStore(credentials=credentials, token=None))

        state = await manager.refresh()

        assert state.access_token == "login-access"
        assert server.calls == [("login", {"email": "ops@example.com", "apiKey": "key-123"})]

    @pytest.mark.asyncio
    async def test_refresh_network_error_falls_back_to_login(self, credentials):
        def handler(request):
            if request.url.path.endswith("/authentication/refreshAccessToken"):
                raise httpx.ConnectError("connection refused")
            return httpx.Response(200, json=cj_envelope({"accessToken": "login-access", "refreshToken": "r"}))

        http_client = httpx.AsyncClient(base_url=CJ_BASE_URL, transport=httpx.MockTransport(handler))
        manager = CJTokenManager(http_client, store=FakeTokenStore(credentials=credentials, token=stale_token()))

        assert await manager.ensure_valid_token() == "login-access"

    @pytest.mark.asyncio
    async def test_failed_login_raises_auth_error(self, credentials):
        server = AuthServer(login_ok=False)
        manager = make_manager(server, FakeTokenStore(credentials=credentials, token=None))

        with pytest.raises(AuthError) as exc_info:
            await manager.ensure_valid_token()

        assert exc_info.value.code == "1600101"
        assert exc_info.value.request_id == "req-test"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_config_error(self):
        server = AuthServer()
        manager = make_manager(server, FakeTokenStore(credentials=None, token=None))

        with pytest.raises(ConfigError):
            await manager.ensure_valid_token()
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_returned(self, credentials):
        def handler(request):
            return httpx.Response(200, json=cj_envelope({"accessToken": "only-access"}))

        http_client = httpx.AsyncClient(base_url=CJ_BASE_URL, transport=httpx.MockTransport(handler))
        manager = CJTokenManager(http_client, store=FakeTokenStore(credentials=credentials, token=stale_token()))

        await manager.ensure_valid_token()

        assert manager.token.refresh_token == "stale-refresh"


class TestPersistence:

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_fail_login(self, credentials):
        store = FakeTokenStore(
            credentials=credentials,
            token=None,
            save_error=OperationalError("UPDATE cj_config", {}, Exception("db down")),
        )
        manager = make_manager(AuthServer(), store)

        token = await manager.ensure_valid_token()

        assert token == "login-access"
        assert manager.last_persist_outcome == PersistOutcome.FAILED

    @pytest.mark.asyncio
    async def test_missing_row_is_skipped(self, credentials):
        store = FakeTokenStore(credentials=credentials, token=None, has_row=False)
        manager = make_manager(AuthServer(), store)

        await manager.login()

        assert manager.last_persist_outcome == PersistOutcome.SKIPPED
        assert manager.connection_info()["last_persist_outcome"] == "skipped"

    @pytest.mark.asyncio
    async def test_clear_forgets_token(self, credentials):
        store = FakeTokenStore(credentials=credentials, token=valid_token())
        manager = make_manager(AuthServer(), store)
        await manager.ensure_valid_token()
        assert manager.is_connected() is True

        await manager.clear()

        assert manager.is_connected() is False
        assert store.cleared is True


class UnreachableTokenStore(FakeTokenStore):
    """Credentials load, but reading the stored token hits a driver error."""

    async def load_token(self):
        raise ConnectionRefusedError("connection refused")

    async def load_refresh_token(self):
        raise ConnectionRefusedError("connection refused")


class TestStoreUnavailable:

    @pytest.mark.asyncio
    async def test_driver_error_on_load_falls_through_to_login(self, credentials):
        server = AuthServer()
        manager = make_manager(server, UnreachableTokenStore(credentials=credentials))

        token = await manager.ensure_valid_token()

        assert token == "login-access"
        assert server.kinds == ["login"]
