"""
Failure Injection Tests.

Validates resilience against rate feed and cache failures.
"""

import pytest
from decimal import Decimal

from freight_ledger.app.core.reliability import CircuitBreaker, CircuitOpenError
from freight_ledger.app.core.redis_client import ping_redis
import freight_ledger.app.core.redis_client as redis_client_module


async def failing_func():
    raise ValueError("Boom")


async def ok_func():
    return Decimal("1.10")


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker("feed", failure_threshold=2, reset_timeout=60)

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == CircuitBreaker.CLOSED

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.is_open

    # Call 3 short-circuits without running the function
    with pytest.raises(CircuitOpenError):
        await cb.call(ok_func)


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    cb = CircuitBreaker("feed", failure_threshold=2, reset_timeout=60)

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert await cb.call(ok_func) == Decimal("1.10")

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == CircuitBreaker.CLOSED


@pytest.mark.asyncio
async def test_half_open_probe(mocker):
    clock = mocker.patch("freight_ledger.app.core.reliability.time.monotonic", return_value=1000.0)
    cb = CircuitBreaker("feed", failure_threshold=1, reset_timeout=60)

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.is_open

    # Cooldown elapsed: a failing probe reopens the circuit
    clock.return_value = 1061.0
    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.is_open

    # Next probe succeeds and closes it
    clock.return_value = 1122.0
    assert await cb.call(ok_func) == Decimal("1.10")
    assert cb.state == CircuitBreaker.CLOSED
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_redis_outage_is_reported(mocker):
    broken = mocker.Mock()
    broken.ping = mocker.AsyncMock(side_effect=ConnectionRefusedError("redis down"))
    mocker.patch.object(redis_client_module, "redis_client", broken)

    assert await ping_redis() is False


@pytest.mark.asyncio
async def test_health_reports_degraded_cache(client, mocker):
    mocker.patch("freight_ledger.app.main.ping_redis", mocker.AsyncMock(return_value=False))

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "unavailable"
