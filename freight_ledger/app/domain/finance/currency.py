"""
Currency Converter (Domain Logic).

Resolves exchange rates from stored observations behind a TTL cache and
refreshes them from an external feed on a best-effort basis. A feed
outage never blocks conversion: previously stored rates stay usable.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import httpx
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from freight_ledger.app.core.config import settings
from freight_ledger.app.core.exceptions import ExchangeRateNotFoundError, PreconditionFailedError
from freight_ledger.app.core.reliability import CircuitBreaker, CircuitOpenError, rate_feed_circuit_breaker
from freight_ledger.app.db.session import transactional
from freight_ledger.app.domain.finance.money import to_money
from freight_ledger.app.models.exchange_rate import ExchangeRate
from freight_ledger.app.models.finance_enums import RateSource
from freight_ledger.app.schemas.currency import ConversionResult
from freight_ledger.app.services.audit import log_event, AuditAction
from freight_ledger.app.services.cache import MemoryCache

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal("0.00000001")
CACHE_PREFIX = "fx:"


def _cache_key(from_currency: str, to_currency: str, on_date: date) -> str:
    return f"{CACHE_PREFIX}{from_currency}:{to_currency}:{on_date.isoformat()}"


class RateFeedClient:
    """
    Thin client for a JSON rate feed.

    Expects a payload of the form {"base": "USD", "rates": {"EUR": 0.92, ...}}.
    """

    def __init__(self, url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def fetch_rates(self, base: str) -> Dict[str, Decimal]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(self.url, params={"base": base})
            response.raise_for_status()
            payload = response.json()

        if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
            raise ValueError("Rate feed payload has no rates mapping")

        rates = {}
        for currency, value in payload["rates"].items():
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                raise ValueError(f"Invalid rate for {currency}: {value!r}")
            try:
                rates[currency.upper()] = Decimal(str(value))
            except InvalidOperation:
                raise ValueError(f"Invalid rate for {currency}: {value!r}")
        return rates


class CurrencyConverter:
    """
    Rate lookup and conversion.

    Resolution order for (from, to, date):
    1. Same currency: rate 1, no lookup
    2. Cache
    3. Latest stored direct rate with effective_date <= date
       (most recently recorded wins, so manual overrides beat older feed rows)
    4. Inverse of the latest stored reverse rate
    """

    def __init__(
        self,
        cache=None,
        feed: Optional[RateFeedClient] = None,
        ttl_seconds: Optional[int] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.rate_cache_ttl_seconds
        self.cache = cache if cache is not None else MemoryCache(default_ttl_seconds=self.ttl_seconds)
        if feed is None and settings.rate_feed_url:
            feed = RateFeedClient(settings.rate_feed_url, timeout=settings.rate_feed_timeout_seconds)
        self.feed = feed
        self.breaker = breaker or rate_feed_circuit_breaker

    @staticmethod
    async def _latest_stored(db: AsyncSession, from_currency: str, to_currency: str, on_date: date) -> Optional[Decimal]:
        result = await db.execute(
            select(ExchangeRate.rate)
            .where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.effective_date <= on_date,
            )
            .order_by(
                desc(ExchangeRate.effective_date),
                desc(ExchangeRate.recorded_at),
                desc(ExchangeRate.id),
            )
            .limit(1)
        )
        rate = result.scalar_one_or_none()
        return Decimal(str(rate)) if rate is not None else None

    async def get_rate(
        self,
        db: AsyncSession,
        from_currency: str,
        to_currency: str,
        on_date: Optional[date] = None
    ) -> Optional[Decimal]:
        """Rate to multiply from_currency amounts by, or None if unknown."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Decimal("1")

        on_date = on_date or date.today()
        key = _cache_key(from_currency, to_currency, on_date)

        cached = await self.cache.get(key)
        if cached is not None:
            return Decimal(cached)

        rate = await self._latest_stored(db, from_currency, to_currency, on_date)
        if rate is None:
            reverse = await self._latest_stored(db, to_currency, from_currency, on_date)
            if reverse:
                rate = (Decimal("1") / reverse).quantize(RATE_PLACES)

        if rate is None:
            return None

        await self.cache.set(key, str(rate), ttl_seconds=self.ttl_seconds)
        return rate

    async def convert(
        self,
        db: AsyncSession,
        amount,
        from_currency: str,
        to_currency: str,
        on_date: Optional[date] = None
    ) -> ConversionResult:
        """
        Convert amount between currencies.

        Raises:
            ExchangeRateNotFoundError: No rate for a non-identity pair.
                Callers must stop here rather than assume 1.0.
        """
        on_date = on_date or date.today()
        rate = await self.get_rate(db, from_currency, to_currency, on_date)
        if rate is None:
            raise ExchangeRateNotFoundError(from_currency.upper(), to_currency.upper(), on_date)

        original = to_money(amount)
        return ConversionResult(
            original=original,
            converted=to_money(original * rate),
            rate=rate,
            date=on_date,
            from_currency=from_currency.upper(),
            to_currency=to_currency.upper(),
        )

    async def set_manual_rate(
        self,
        db: AsyncSession,
        from_currency: str,
        to_currency: str,
        rate,
        effective_date: Optional[date] = None,
        actor_id: Optional[int] = None
    ) -> ExchangeRate:
        """Record an operator override; it wins until a newer feed row arrives."""
        rate = Decimal(str(rate))
        if rate <= 0:
            raise PreconditionFailedError("Exchange rate must be positive")

        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        async with transactional(db):
            row = ExchangeRate(
                from_currency=from_currency,
                to_currency=to_currency,
                rate=rate,
                effective_date=effective_date or date.today(),
                source=RateSource.MANUAL,
                recorded_at=datetime.utcnow(),
            )
            db.add(row)
            await db.flush()

            await log_event(
                db,
                action=AuditAction.EXCHANGE_RATE_OVERRIDDEN,
                actor_id=actor_id,
                entity_type="exchange_rate",
                entity_id=row.id,
                metadata={"from": from_currency, "to": to_currency, "rate": str(rate)}
            )

        await self.invalidate(from_currency, to_currency)
        await self.invalidate(to_currency, from_currency)
        logger.info("Manual exchange rate set", extra={"pair": f"{from_currency}/{to_currency}", "rate": str(rate)})
        return row

    async def refresh_rates(self, db: AsyncSession, base: Optional[str] = None) -> int:
        """
        Pull fresh rates from the feed.

        Best effort: any feed failure is logged and 0 returned; stored
        rates stay in effect.

        Returns:
            Number of rates recorded
        """
        base = (base or settings.default_currency).upper()
        if self.feed is None:
            logger.info("No rate feed configured, skipping refresh")
            return 0

        try:
            rates = await self.breaker.call(self.feed.fetch_rates, base)
        except CircuitOpenError:
            logger.warning("Rate feed circuit open, keeping stored rates", extra={"base": base})
            return 0
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("Rate feed refresh failed: %s", e, extra={"base": base})
            return 0

        today = date.today()
        now = datetime.utcnow()
        rows = [
            ExchangeRate(
                from_currency=base,
                to_currency=currency,
                rate=rate,
                effective_date=today,
                source=RateSource.FEED,
                recorded_at=now,
            )
            for currency, rate in rates.items()
            if currency != base and rate > 0
        ]

        async with transactional(db):
            db.add_all(rows)

        await self.invalidate()
        logger.info("Exchange rates refreshed", extra={"base": base, "count": len(rows)})
        return len(rows)

    async def invalidate(self, from_currency: Optional[str] = None, to_currency: Optional[str] = None) -> int:
        """Drop cached rates, optionally only for one pair."""
        prefix = CACHE_PREFIX
        if from_currency:
            prefix += f"{from_currency.upper()}:"
            if to_currency:
                prefix += f"{to_currency.upper()}:"
        return await self.cache.invalidate(prefix)
