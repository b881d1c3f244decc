"""Tests for the signed, self-throttling REST transport."""

import asyncio
from urllib.parse import parse_qs

import aiohttp
import pytest

from exchange_gate.adapters.bitmex.rest import BitmexRestClient, encode_params, throttle_delay
from exchange_gate.adapters.bitmex.signer import Signer
from exchange_gate.config.models import Credentials
from exchange_gate.errors import ClientRequestError, TransientServerError, TransportError
from tests.conftest import FIXED_CLOCK
from tests.fakes import FakeResponse, FakeSession, RecordingSleep

FIXED_NONCE = int(FIXED_CLOCK * 1000)


class TestThrottleDelay:
    """Delay derived from the remaining quota."""

    def test_delay_is_reciprocal_of_remaining(self) -> None:
        assert throttle_delay(60, 0.1) == pytest.approx(1 / 60)
        assert throttle_delay(1, 0.1) == pytest.approx(1.0)

    def test_exhausted_quota_uses_epsilon_floor(self) -> None:
        assert throttle_delay(0, 0.1) == pytest.approx(10.0)
        assert throttle_delay(-5, 0.1) == pytest.approx(10.0)

    def test_delay_is_positive_and_strictly_decreasing(self) -> None:
        delays = [throttle_delay(r, 0.1) for r in range(0, 120)]

        assert all(d > 0 for d in delays)
        assert all(b < a for a, b in zip(delays, delays[1:]))


class TestEncodeParams:
    """Query/form encoding rules."""

    def test_empty_params_encode_to_empty_string(self) -> None:
        assert encode_params(None) == ""
        assert encode_params({}) == ""

    def test_none_values_are_dropped(self) -> None:
        assert encode_params({"symbol": "XBTUSD", "count": None}) == "symbol=XBTUSD"

    def test_booleans_are_lowercase(self) -> None:
        assert encode_params({"reverse": False}) == "reverse=false"

    def test_dict_values_are_compact_json(self) -> None:
        encoded = encode_params({"filter": {"open": True}})

        assert parse_qs(encoded) == {"filter": ['{"open":true}']}

    def test_insertion_order_is_kept(self) -> None:
        assert encode_params({"b": 1, "a": 2}) == "b=1&a=2"


class TestRequestEncoding:
    """Placement of parameters and signing inputs."""

    @pytest.mark.asyncio
    async def test_get_puts_params_in_query_and_signs_it(
        self, rest_client: BitmexRestClient, session: FakeSession, credentials: Credentials
    ) -> None:
        # Given: a successful response
        session.queue(FakeResponse(200, payload=[]))

        # When: a signed GET with params
        await rest_client.request(
            "GET", "order", {"symbol": "XBTUSD", "filter": {"open": True}}, credentials
        )

        # Then: params are in the URL, the body is empty, the query is signed
        call = session.calls[0]
        path = "/api/v1/order?symbol=XBTUSD&filter=%7B%22open%22%3Atrue%7D"
        assert call["verb"] == "GET"
        assert call["url"] == f"https://www.bitmex.com{path}"
        assert call["data"] is None
        assert call["headers"]["api-key"] == "test-key"
        assert call["headers"]["api-nonce"] == str(FIXED_NONCE)
        assert call["headers"]["api-signature"] == Signer("test-secret").sign(
            "GET", path, FIXED_NONCE
        )

    @pytest.mark.asyncio
    async def test_post_form_encodes_body_and_signs_it(
        self, rest_client: BitmexRestClient, session: FakeSession, credentials: Credentials
    ) -> None:
        session.queue(FakeResponse(200, payload={"orderID": "abc"}))

        await rest_client.request(
            "POST", "order", {"symbol": "XBTUSD", "orderQty": 10}, credentials
        )

        call = session.calls[0]
        assert call["url"] == "https://www.bitmex.com/api/v1/order"
        assert call["data"] == "symbol=XBTUSD&orderQty=10"
        assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert call["headers"]["api-signature"] == Signer("test-secret").sign(
            "POST", "/api/v1/order", FIXED_NONCE, "symbol=XBTUSD&orderQty=10"
        )

    @pytest.mark.asyncio
    async def test_unsigned_request_has_no_auth_headers(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(FakeResponse(200, payload=[]))

        await rest_client.request("GET", "instrument/active")

        headers = session.calls[0]["headers"]
        assert "api-key" not in headers
        assert "api-signature" not in headers

    @pytest.mark.asyncio
    async def test_nonces_increase_per_key(
        self, rest_client: BitmexRestClient, session: FakeSession, credentials: Credentials
    ) -> None:
        # Given: a frozen clock and two requests with the same key
        session.queue(FakeResponse(200, payload=[]), FakeResponse(200, payload=[]))

        # When
        await rest_client.request("GET", "position", credentials=credentials)
        await rest_client.request("GET", "position", credentials=credentials)

        # Then: the second nonce is larger
        first, second = (int(c["headers"]["api-nonce"]) for c in session.calls)
        assert second == first + 1


class TestStatusHandling:
    """Classification of responses into payloads and error values."""

    @pytest.mark.asyncio
    async def test_success_returns_decoded_payload(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(FakeResponse(200, payload=[{"symbol": "XBTUSD"}]))

        response = await rest_client.request("GET", "instrument/active")

        assert response.ok
        assert response.status == 200
        assert response.payload == [{"symbol": "XBTUSD"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 502, 504])
    async def test_transient_statuses_return_empty_payload(
        self, rest_client: BitmexRestClient, session: FakeSession, status: int
    ) -> None:
        session.queue(FakeResponse(status, text="<html>Bad Gateway</html>"))

        response = await rest_client.request("GET", "instrument/active")

        assert response.payload is None
        assert isinstance(response.error, TransientServerError)
        assert response.error.status == status
        assert len(session.calls) == 1  # no retry

    @pytest.mark.asyncio
    async def test_client_error_body_is_decoded(
        self, rest_client: BitmexRestClient, session: FakeSession, credentials: Credentials
    ) -> None:
        session.queue(
            FakeResponse(
                401,
                payload={"error": {"message": "Signature not valid.", "name": "HTTPError"}},
            )
        )

        response = await rest_client.request("GET", "position", credentials=credentials)

        assert isinstance(response.error, ClientRequestError)
        assert response.error.message == "Signature not valid."
        assert response.error.name == "HTTPError"
        assert response.error.status == 401

    @pytest.mark.asyncio
    async def test_unparseable_error_body_keeps_raw_text(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(FakeResponse(503, text="Service Unavailable"))

        response = await rest_client.request("GET", "instrument/active")

        assert isinstance(response.error, ClientRequestError)
        assert response.error.message == "Service Unavailable"

    @pytest.mark.asyncio
    async def test_network_failure_becomes_transport_error(
        self, rest_client: BitmexRestClient, session: FakeSession, sleep: RecordingSleep
    ) -> None:
        # Given: the session raises before a status is received
        session.queue(aiohttp.ClientConnectionError("connection reset"))

        # When
        response = await rest_client.request("GET", "instrument/active")

        # Then: an error value, not an exception; the throttle still runs
        assert isinstance(response.error, TransportError)
        assert response.status == 0
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_transport_error(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(asyncio.TimeoutError())

        response = await rest_client.request("GET", "instrument/active")

        assert isinstance(response.error, TransportError)

    @pytest.mark.asyncio
    async def test_undecodable_body_becomes_transport_error(
        self, rest_client: BitmexRestClient, session: FakeSession, sleep: RecordingSleep
    ) -> None:
        # Given: an error response whose body is not valid UTF-8
        raw = b'{"error":{"message":"\xff\xfe bad"}}'
        session.queue(
            FakeResponse(
                400,
                text_error=UnicodeDecodeError("utf-8", raw, 21, 22, "invalid start byte"),
            )
        )

        # When
        response = await rest_client.request("GET", "order")

        # Then: an error value carrying the received status, and the throttle ran
        assert isinstance(response.error, TransportError)
        assert response.payload is None
        assert response.status == 400
        assert response.error.status == 400
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_on_success_is_transport_error(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(FakeResponse(200, text="not json"))

        response = await rest_client.request("GET", "instrument/active")

        assert isinstance(response.error, TransportError)
        assert response.status == 200


class TestSelfThrottle:
    """Quota tracking and the post-call wait."""

    @pytest.mark.asyncio
    async def test_sleeps_reciprocal_of_reported_remaining(
        self, rest_client: BitmexRestClient, session: FakeSession, sleep: RecordingSleep
    ) -> None:
        session.queue(
            FakeResponse(200, payload=[], headers={"x-ratelimit-remaining": "20"}),
            FakeResponse(200, payload=[], headers={"x-ratelimit-remaining": "4"}),
        )

        await rest_client.request("GET", "instrument/active")
        await rest_client.request("GET", "instrument/active")

        assert sleep.delays == [pytest.approx(1 / 20), pytest.approx(1 / 4)]
        assert rest_client.rate_limit.remaining == 4

    @pytest.mark.asyncio
    async def test_exhausted_quota_waits_one_over_epsilon(
        self, rest_client: BitmexRestClient, session: FakeSession, sleep: RecordingSleep
    ) -> None:
        session.queue(
            FakeResponse(429, payload={"error": {"message": "Rate limit exceeded"}},
                         headers={"x-ratelimit-remaining": "0"})
        )

        await rest_client.request("GET", "instrument/active")

        assert sleep.delays == [pytest.approx(10.0)]

    @pytest.mark.asyncio
    async def test_rate_limit_headers_are_recorded(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(
            FakeResponse(
                200,
                payload=[],
                headers={
                    "x-ratelimit-remaining": "59",
                    "x-ratelimit-limit": "60",
                    "x-ratelimit-reset": "1700000060",
                },
            )
        )

        await rest_client.request("GET", "instrument/active")

        state = rest_client.rate_limit
        assert (state.remaining, state.limit, state.reset_at) == (59, 60, 1700000060)

    @pytest.mark.asyncio
    async def test_missing_headers_keep_previous_quota(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        session.queue(FakeResponse(200, payload=[]))

        await rest_client.request("GET", "instrument/active")

        assert rest_client.rate_limit.remaining == 60


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_close_closes_session(
        self, rest_client: BitmexRestClient, session: FakeSession
    ) -> None:
        await rest_client.close()

        assert session.closed
