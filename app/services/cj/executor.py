"""
CJ Request Executor

Every CJ API call goes through execute():
1. wait for any running batch to drain
2. GlobalThrottle.acquire()
3. ensure_valid_token() -> CJ-Access-Token (+ platformToken)
4. dispatch (GET payload as query string, otherwise JSON body)
5. classify the outcome

Failure classes:
- rate limit (HTTP 429 / code 1600200): tier backoff, one retry
- auth expired (HTTP 401 / codes 1600001, 1600003): forced refresh, one retry
- any other HTTP error or malformed body: UpstreamError, no retry
- timeout / transport error: UpstreamError (TIMEOUT / NETWORK_ERROR), no retry

A 2xx envelope with a non-success code that is neither rate limit nor auth is
returned as-is; endpoint methods decide what it means.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from app.core.config import settings
from app.core.exceptions import AuthError, RateLimitError, UpstreamError
from app.services.cj.throttle import GlobalThrottle, get_global_throttle, rate_limit_backoff, tier_delay
from app.services.cj.token_manager import CJTokenManager
from app.services.cj.types import CJResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = frozenset({429, 1600200})
AUTH_CODES = frozenset({401, 1600001, 1600003})
MAX_RETRIES_PER_CLASS = 1

RATE_LIMITED = "rate_limit"
AUTH_EXPIRED = "auth"

BatchCall = Tuple[str, str, Optional[Dict[str, Any]]]


class CJRequestExecutor:
    """Throttled, authenticated dispatch with bounded per-class retries."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: CJTokenManager,
        throttle: Optional[GlobalThrottle] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        batch_spacing: Optional[float] = None,
    ):
        self._http = http_client
        self._tokens = token_manager
        self._throttle = throttle or get_global_throttle()
        self._sleep = sleep
        self.batch_spacing = (
            batch_spacing if batch_spacing is not None
            else settings.CJ_BATCH_SPACING_MS / 1000
        )
        self._batch_lock = asyncio.Lock()
        self._batch_idle = asyncio.Event()
        self._batch_idle.set()

    @property
    def token_manager(self) -> CJTokenManager:
        return self._tokens

    async def execute(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CJResponse:
        await self._batch_idle.wait()
        return await self._execute(method.upper(), endpoint, payload)

    async def run_batch(
        self, calls: Sequence[BatchCall]
    ) -> List[Union[CJResponse, UpstreamError]]:
        """
        Run calls one after another with batch spacing between them.

        Ordinary execute() callers wait until the batch has drained. A failed
        call does not stop the batch; its UpstreamError takes its slot in the
        result list.
        """
        results: List[Union[CJResponse, UpstreamError]] = []
        async with self._batch_lock:
            self._batch_idle.clear()
            try:
                for index, (method, endpoint, payload) in enumerate(calls):
                    if index:
                        await self._sleep(self.batch_spacing)
                    try:
                        results.append(await self._execute(method.upper(), endpoint, payload))
                    except UpstreamError as e:
                        logger.warning(f"[CJ_HTTP] Batch call {method} {endpoint} failed: {e.message}")
                        results.append(e)
            finally:
                self._batch_idle.set()
        return results

    async def _execute(
        self, method: str, endpoint: str, payload: Optional[Dict[str, Any]]
    ) -> CJResponse:
        retries = {RATE_LIMITED: 0, AUTH_EXPIRED: 0}

        while True:
            await self._throttle.acquire()
            access_token = await self._tokens.ensure_valid_token()
            credentials = await self._tokens.get_credentials()

            if settings.cj_verbose:
                logger.debug(f"[CJ_HTTP] {method} {endpoint}")

            response = await self._dispatch(method, endpoint, payload, access_token, credentials.platform_token)
            failure = self._classify(response)

            if failure is None:
                if response.status_code >= 400:
                    raise UpstreamError(
                        response.message or f"CJ API returned HTTP {response.status_code}",
                        code=response.code if response.code is not None else response.status_code,
                        request_id=response.request_id,
                        status_code=response.status_code,
                        endpoint=endpoint,
                    )
                if settings.cj_verbose:
                    logger.debug(f"[CJ_HTTP] {method} {endpoint} -> {response.status_code} code={response.code}")
                delay = tier_delay(credentials.tier)
                if delay:
                    await self._sleep(delay)
                return response

            if retries[failure] >= MAX_RETRIES_PER_CLASS:
                error_cls = RateLimitError if failure == RATE_LIMITED else AuthError
                logger.error(
                    f"[CJ_HTTP] {method} {endpoint} failed after retry "
                    f"(code={response.code}, request_id={response.request_id})"
                )
                raise error_cls(
                    response.message or f"CJ API {failure} failure",
                    code=response.code if response.code is not None else response.status_code,
                    request_id=response.request_id,
                    status_code=response.status_code,
                    endpoint=endpoint,
                )
            retries[failure] += 1

            if failure == RATE_LIMITED:
                backoff = rate_limit_backoff(credentials.tier)
                logger.warning(f"[CJ_HTTP] Rate limited on {endpoint}, retrying in {backoff:.0f}s")
                await self._sleep(backoff)
            else:
                logger.info(f"[CJ_AUTH] Token rejected on {endpoint} (code={response.code}), refreshing")
                await self._tokens.refresh()

    async def _dispatch(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]],
        access_token: str,
        platform_token: Optional[str],
    ) -> CJResponse:
        headers = {"CJ-Access-Token": access_token}
        if platform_token:
            headers["platformToken"] = platform_token

        kwargs: Dict[str, Any] = {"headers": headers}
        if payload is not None:
            if method == "GET":
                kwargs["params"] = payload
            else:
                kwargs["json"] = payload

        try:
            http_response = await self._http.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[CJ_HTTP] {method} {endpoint} timed out")
            raise UpstreamError(
                f"CJ API request timed out: {endpoint}",
                code="TIMEOUT",
                endpoint=endpoint,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[CJ_HTTP] {method} {endpoint} transport error: {e}")
            raise UpstreamError(
                f"CJ API request failed: {e}",
                code="NETWORK_ERROR",
                endpoint=endpoint,
            ) from e

        try:
            body = http_response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            return CJResponse.from_payload(body, status_code=http_response.status_code)

        if http_response.status_code in RATE_LIMIT_CODES | AUTH_CODES:
            # Gateway-level rejection without a CJ envelope
            return CJResponse(code=None, status_code=http_response.status_code)

        raise UpstreamError(
            f"CJ API returned a malformed response (HTTP {http_response.status_code})",
            code="MALFORMED_RESPONSE",
            status_code=http_response.status_code,
            endpoint=endpoint,
        )

    @staticmethod
    def _classify(response: CJResponse) -> Optional[str]:
        if response.status_code == 429 or response.code in RATE_LIMIT_CODES:
            return RATE_LIMITED
        if response.status_code == 401 or response.code in AUTH_CODES:
            return AUTH_EXPIRED
        return None
