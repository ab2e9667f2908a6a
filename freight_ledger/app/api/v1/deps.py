"""
Shared API dependencies.
"""

from functools import lru_cache

from freight_ledger.app.core.config import settings
from freight_ledger.app.domain.finance.credit_policy import CreditPolicy
from freight_ledger.app.domain.finance.currency import CurrencyConverter
from freight_ledger.app.services.cache import MemoryCache, RedisCache


@lru_cache
def get_currency_converter() -> CurrencyConverter:
    """One converter per process so the rate cache is shared across requests."""
    if settings.rate_cache_backend == "redis":
        from freight_ledger.app.core.redis_client import redis_client
        cache = RedisCache(redis_client, namespace="freight_ledger", default_ttl_seconds=settings.rate_cache_ttl_seconds)
    else:
        cache = MemoryCache(default_ttl_seconds=settings.rate_cache_ttl_seconds)
    return CurrencyConverter(cache=cache)


def get_credit_policy() -> CreditPolicy:
    return CreditPolicy()
