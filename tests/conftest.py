"""Shared fixtures for the test suite."""

import pytest

from exchange_gate.adapters.bitmex.rest import BitmexRestClient
from exchange_gate.config.models import Credentials, ExchangeConfig
from exchange_gate.events import EventChannel
from exchange_gate.models.market import Asset, Market
from tests.fakes import FakeSession, RecordingSleep

FIXED_CLOCK = 1_700_000_000.0


@pytest.fixture
def exchange_config() -> ExchangeConfig:
    return ExchangeConfig()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key="test-key", api_secret="test-secret")


@pytest.fixture
def market() -> Market:
    """XBTUSD-like inverse market with one decimal of price precision."""
    return Market(
        symbol="XBTUSD",
        price_precision=1,
        quantity_precision=0,
        taker_fee="0.00075",
        is_inverse=True,
        primary=Asset(symbol="XBT"),
        counter=Asset(symbol="USD"),
    )


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rest_client(
    exchange_config: ExchangeConfig, session: FakeSession, sleep: RecordingSleep
) -> BitmexRestClient:
    return BitmexRestClient(
        exchange_config,
        session=session,
        sleep=sleep,
        clock=lambda: FIXED_CLOCK,
    )
