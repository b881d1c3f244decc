"""
Signed, self-throttling REST transport.

Every call returns a RestResponse value; failures are carried in its error
field and never raised to the caller.

Endpoints (relative to {rest_url}{api_path}, e.g. https://www.bitmex.com/api/v1):
    instrument/active, orderBook/L2, trade        (public)
    order, position, user/wallet,
    execution/tradeHistory, user/quoteFillRatio   (signed)

Encoding:
    - GET: parameters go to the query string, which is part of the signed path.
      dict/list values are JSON encoded (e.g., filter={"open":true}).
    - POST/PUT/DELETE: parameters are form-encoded into the body, which is
      part of the signature.

Rate Limits:
    Each response carries x-ratelimit-remaining. After every call the client
    sleeps 1 / max(remaining, epsilon) seconds before returning, so the pace
    slows smoothly as the quota drains instead of hitting a hard 429. The
    delay is not rounded up to whole seconds (see throttle_delay).

Status Handling:
    - 2xx: decoded JSON payload
    - 500, 502, 504: empty payload, TransientServerError, no retry
    - other: {"error": {"message", "name"}} decoded into ClientRequestError
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

import aiohttp
import structlog
from pydantic import ValidationError
from yarl import URL

from exchange_gate.adapters.bitmex.schemas import ErrorResponse
from exchange_gate.adapters.bitmex.signer import RequestAuthenticator
from exchange_gate.config.models import Credentials, ExchangeConfig
from exchange_gate.errors import (
    ClientRequestError,
    GatewayError,
    TransientServerError,
    TransportError,
)
from exchange_gate.models.account import RateLimitState

logger = structlog.get_logger(__name__)

WRITE_VERBS = frozenset({"POST", "PUT", "DELETE"})


def throttle_delay(remaining: float, epsilon: float) -> float:
    """
    Seconds to wait after a response given the remaining quota.

    Always positive and strictly decreasing in remaining. The result is not
    rounded up to whole seconds: ceil(1 / remaining) would be a flat 1s
    for any remaining >= 1.

    Args:
        remaining: Requests left in the current window (may be 0 or negative).
        epsilon: Floor applied to remaining to avoid division by zero.
    """
    return 1.0 / max(float(remaining), epsilon)


def encode_params(params: Optional[Mapping[str, Any]]) -> str:
    """
    Form/query-encode parameters in insertion order.

    None values are dropped, booleans become "true"/"false", and dict or list
    values are rendered as compact JSON.
    """
    if not params:
        return ""
    pairs = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            value = json.dumps(value, separators=(",", ":"))
        pairs.append((key, str(value)))
    return urlencode(pairs)


@dataclass(frozen=True)
class RestResponse:
    """
    Outcome of one REST call.

    Attributes:
        payload: Decoded JSON body, or None on failure.
        status: HTTP status, 0 if no response was received.
        error: Failure value, None on success.
    """

    payload: Any
    status: int
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BitmexRestClient:
    """
    Async REST client with request signing and quota-driven throttling.

    Attributes:
        config: Exchange configuration.
        rate_limit: Last observed quota.

    Example:
        >>> client = BitmexRestClient(config.exchange)
        >>> response = await client.request("GET", "position", credentials=creds)
        >>> if response.ok:
        ...     print(response.payload)
    """

    def __init__(
        self,
        config: ExchangeConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize REST client.

        Args:
            config: Exchange configuration (endpoints, timeouts, epsilon).
            session: Existing aiohttp session; one is created lazily if None.
            sleep: Coroutine used for the throttle wait.
            clock: Wall-clock source for nonces.
        """
        self.config = config
        self._session = session
        self._sleep = sleep
        self._clock = clock
        self._authenticators: Dict[str, RequestAuthenticator] = {}
        self._rate_limit = RateLimitState(remaining=config.connection.assumed_quota)

        logger.info(
            "rest_client_initialized",
            exchange=config.name,
            base_url=config.rest_url,
        )

    @property
    def rate_limit(self) -> RateLimitState:
        return self._rate_limit

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.config.connection.request_timeout_seconds
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "exchange-gate/0.1"},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("rest_client_session_closed", exchange=self.config.name)

    def _authenticator(self, credentials: Credentials) -> RequestAuthenticator:
        """One authenticator, and so one nonce ratchet, per API key."""
        auth = self._authenticators.get(credentials.api_key)
        if auth is None:
            auth = RequestAuthenticator(credentials, clock=self._clock)
            self._authenticators[credentials.api_key] = auth
        return auth

    def _update_rate_limit(self, headers: Mapping[str, str]) -> None:
        remaining = headers.get("x-ratelimit-remaining")
        if remaining is None:
            return
        try:
            limit = headers.get("x-ratelimit-limit")
            reset = headers.get("x-ratelimit-reset")
            self._rate_limit = RateLimitState(
                remaining=int(remaining),
                limit=int(limit) if limit is not None else None,
                reset_at=int(reset) if reset is not None else None,
            )
        except ValueError:
            logger.warning(
                "rest_rate_limit_header_invalid",
                exchange=self.config.name,
                remaining=remaining,
            )

    async def _throttle(self) -> None:
        delay = throttle_delay(
            self._rate_limit.remaining, self.config.connection.quota_epsilon
        )
        logger.debug(
            "rest_throttle",
            exchange=self.config.name,
            remaining=self._rate_limit.remaining,
            delay_seconds=delay,
        )
        await self._sleep(delay)

    def _decode_error(self, status: int, text: str) -> GatewayError:
        if status in TransientServerError.TRANSIENT_STATUSES:
            return TransientServerError(
                f"Transient server error {status}", status=status
            )
        try:
            body = ErrorResponse.model_validate(json.loads(text)) if text else ErrorResponse()
            return ClientRequestError(
                body.error.message, status=status, name=body.error.name
            )
        except (json.JSONDecodeError, ValidationError):
            return ClientRequestError(text or f"HTTP {status}", status=status)

    async def request(
        self,
        verb: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        credentials: Optional[Credentials] = None,
    ) -> RestResponse:
        """
        Perform one REST call.

        Args:
            verb: HTTP method ("GET", "POST", "DELETE", ...).
            endpoint: Endpoint relative to the API prefix (e.g., "order").
            params: Query parameters for reads, body fields for writes.
            credentials: Key pair to sign with; None sends an unsigned request.

        Returns:
            RestResponse: payload, status and error (None on success).
        """
        verb = verb.upper()
        path = self.config.api_path_for(endpoint)
        encoded = encode_params(params)

        body = ""
        headers: Dict[str, str] = {"Accept": "application/json"}
        if verb in WRITE_VERBS:
            body = encoded
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        elif encoded:
            path = f"{path}?{encoded}"

        if credentials is not None:
            headers.update(self._authenticator(credentials).headers(verb, path, body))

        url = URL(f"{self.config.rest_url}{path}", encoded=True)
        session = await self._ensure_session()

        # Stays 0 unless a response arrived before the failure
        status = 0
        try:
            async with session.request(
                verb, url, data=body or None, headers=headers
            ) as response:
                status = response.status
                self._update_rate_limit(response.headers)
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            logger.error(
                "rest_client_error",
                exchange=self.config.name,
                verb=verb,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._throttle()
            return RestResponse(
                payload=None,
                status=status,
                error=TransportError(f"REST request failed: {e}", status=status),
            )

        await self._throttle()

        if 200 <= status < 300:
            try:
                payload = json.loads(text) if text else None
            except json.JSONDecodeError as e:
                logger.error(
                    "rest_invalid_json",
                    exchange=self.config.name,
                    path=path,
                    status=status,
                    body=text[:100],
                )
                return RestResponse(
                    payload=None,
                    status=status,
                    error=TransportError(f"Invalid JSON response: {e}", status=status),
                )
            return RestResponse(payload=payload, status=status)

        error = self._decode_error(status, text)
        logger.warning(
            "rest_request_failed",
            exchange=self.config.name,
            verb=verb,
            path=path,
            status=status,
            error=error.message,
            error_type=type(error).__name__,
        )
        return RestResponse(payload=None, status=status, error=error)

    def __repr__(self) -> str:
        return (
            f"BitmexRestClient(base_url={self.config.rest_url}, "
            f"remaining={self._rate_limit.remaining})"
        )
