"""
Currency conversion tests.

The rate feed is mocked with httpx.MockTransport; stored rates must stay
usable whatever the feed does.
"""

import pytest
import httpx
import json
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy import select, func

from freight_ledger.app.api.v1.deps import get_currency_converter
from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import ExchangeRateNotFoundError, PreconditionFailedError
from freight_ledger.app.core.reliability import CircuitBreaker
from freight_ledger.app.domain.finance.currency import CurrencyConverter, RateFeedClient
from freight_ledger.app.models.exchange_rate import ExchangeRate
from freight_ledger.app.models.finance_enums import RateSource
from freight_ledger.app.services.cache import MemoryCache, RedisCache

FEED_URL = "https://rates.example.test/latest"


def feed_returning(payload=None, status_code=200):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status_code, json=payload if payload is not None else {})

    return RateFeedClient(FEED_URL, transport=httpx.MockTransport(handler)), calls


def converter_with(feed=None, cache=None, breaker=None):
    return CurrencyConverter(
        cache=cache or MemoryCache(),
        feed=feed,
        breaker=breaker or CircuitBreaker("test_feed", failure_threshold=2, reset_timeout=60),
    )


async def rate_rows(db_session):
    result = await db_session.execute(select(func.count(ExchangeRate.id)))
    return result.scalar()


@pytest.mark.asyncio
async def test_same_currency_needs_no_rate(db_session):
    converter = converter_with()

    result = await converter.convert(db_session, Decimal("12.345"), "usd", "USD")

    assert result.rate == Decimal("1")
    assert result.converted == Decimal("12.35")
    assert result.from_currency == result.to_currency == "USD"


@pytest.mark.asyncio
async def test_missing_rate_raises(db_session):
    converter = converter_with()

    assert await converter.get_rate(db_session, "USD", "JPY") is None
    with pytest.raises(ExchangeRateNotFoundError):
        await converter.convert(db_session, Decimal("10"), "USD", "JPY")


@pytest.mark.asyncio
async def test_manual_rate_converts(db_session):
    converter = converter_with()
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.10"), actor_id=4)

    result = await converter.convert(db_session, Decimal("250"), "EUR", "USD")

    assert result.converted == Decimal("275.00")
    assert result.original == Decimal("250.00")
    assert result.date == date.today()


@pytest.mark.asyncio
async def test_inverse_rate_is_used_when_direct_missing(db_session):
    converter = converter_with()
    await converter.set_manual_rate(db_session, "USD", "EUR", Decimal("0.8"))

    rate = await converter.get_rate(db_session, "EUR", "USD")

    assert rate == Decimal("1.25")


@pytest.mark.asyncio
async def test_rate_must_be_positive(db_session):
    converter = converter_with()

    with pytest.raises(PreconditionFailedError):
        await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("0"))


@pytest.mark.asyncio
async def test_future_rates_are_ignored(db_session):
    converter = converter_with()
    today = date.today()
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.05"), effective_date=today - timedelta(days=10))
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.20"), effective_date=today + timedelta(days=5))

    assert await converter.get_rate(db_session, "EUR", "USD", today) == Decimal("1.05")


@pytest.mark.asyncio
async def test_feed_refresh_records_rates(db_session):
    feed, calls = feed_returning({"base": "USD", "rates": {"EUR": 0.92, "GBP": "0.79", "USD": 1}})
    converter = converter_with(feed=feed)

    assert await converter.refresh_rates(db_session) == 2

    assert calls[0].url.params["base"] == "USD"
    rows = (await db_session.execute(select(ExchangeRate).order_by(ExchangeRate.to_currency))).scalars().all()
    assert [(r.to_currency, r.source) for r in rows] == [("EUR", RateSource.FEED), ("GBP", RateSource.FEED)]
    assert await converter.get_rate(db_session, "USD", "GBP") == Decimal("0.79")


@pytest.mark.asyncio
async def test_manual_override_beats_feed(db_session):
    feed, _ = feed_returning({"base": "USD", "rates": {"EUR": 0.92}})
    converter = converter_with(feed=feed)
    await converter.refresh_rates(db_session)
    assert await converter.get_rate(db_session, "USD", "EUR") == Decimal("0.92")

    await converter.set_manual_rate(db_session, "USD", "EUR", Decimal("0.95"))

    assert await converter.get_rate(db_session, "USD", "EUR") == Decimal("0.95")


@pytest.mark.asyncio
async def test_feed_outage_keeps_stored_rates(db_session):
    feed, _ = feed_returning(status_code=503)
    converter = converter_with(feed=feed)
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.10"))

    assert await converter.refresh_rates(db_session) == 0

    assert await rate_rows(db_session) == 1
    result = await converter.convert(db_session, Decimal("10"), "EUR", "USD")
    assert result.converted == Decimal("11.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"base": "USD", "rates": {"EUR": "not-a-number"}},
    {"base": "USD", "rates": {"EUR": {"mid": 0.92}}},
    {"base": "USD", "rates": None},
    {"base": "USD", "rates": [["EUR", 0.92]]},
    {"base": "USD"},
    [{"EUR": 0.92}],
])
async def test_malformed_feed_payload_is_ignored(db_session, payload):
    feed, _ = feed_returning(payload)
    converter = converter_with(feed=feed)

    assert await converter.refresh_rates(db_session) == 0
    assert await rate_rows(db_session) == 0


@pytest.mark.asyncio
async def test_open_circuit_skips_feed(db_session):
    feed, calls = feed_returning(status_code=500)
    breaker = CircuitBreaker("test_feed", failure_threshold=2, reset_timeout=60)
    converter = converter_with(feed=feed, breaker=breaker)

    await converter.refresh_rates(db_session)
    await converter.refresh_rates(db_session)
    assert breaker.is_open

    assert await converter.refresh_rates(db_session) == 0
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_no_feed_configured(db_session):
    converter = converter_with()

    assert await converter.refresh_rates(db_session) == 0


@pytest.mark.asyncio
async def test_cached_rate_is_invalidated_by_override(db_session):
    cache = MemoryCache()
    converter = converter_with(cache=cache)
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.10"))
    await converter.get_rate(db_session, "EUR", "USD")
    assert Decimal(await cache.get(f"fx:EUR:USD:{date.today().isoformat()}")) == Decimal("1.10")

    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.12"))

    assert await cache.get(f"fx:EUR:USD:{date.today().isoformat()}") is None
    assert await converter.get_rate(db_session, "EUR", "USD") == Decimal("1.12")


@pytest.mark.asyncio
async def test_redis_backed_cache(db_session, redis_client_session):
    cache = RedisCache(redis_client_session, namespace="freight_ledger")
    converter = converter_with(cache=cache)
    await converter.set_manual_rate(db_session, "EUR", "USD", Decimal("1.10"))

    await converter.get_rate(db_session, "EUR", "USD")
    key = f"freight_ledger:fx:EUR:USD:{date.today().isoformat()}"
    assert Decimal(json.loads(redis_client_session.store[key])) == Decimal("1.10")

    assert await converter.invalidate("EUR") == 1
    assert key not in redis_client_session.store


def test_converter_dependency_shares_the_redis_client(mocker, redis_client_session):
    mocker.patch.object(settings, "rate_cache_backend", "redis")
    get_currency_converter.cache_clear()

    converter = get_currency_converter()

    assert isinstance(converter.cache, RedisCache)
    assert converter.cache.client is redis_client_session
    assert get_currency_converter() is converter
    get_currency_converter.cache_clear()
