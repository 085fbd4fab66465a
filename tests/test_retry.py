"""Tests for caller-level retries."""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from renogy_bms.exceptions import (
    DeviceControlError,
    ModbusExceptionError,
    TransportTimeoutError,
    is_retryable,
)
from renogy_bms.modbus_exceptions import ModbusExceptionCode
from renogy_bms.modbus_retry import _calculate_backoff_delay, call_with_retry
from renogy_bms.modbus_retry_policy import RetryPolicy


def _busy():
    return ModbusExceptionError(ModbusExceptionCode.SLAVE_DEVICE_BUSY)


def test_only_busy_is_retryable():
    assert is_retryable(_busy())
    assert not is_retryable(ModbusExceptionError(ModbusExceptionCode.SLAVE_DEVICE_FAILURE))
    assert not is_retryable(TransportTimeoutError("timeout"))
    assert not is_retryable(ValueError("boom"))

    wrapped = DeviceControlError("failed")
    wrapped.__cause__ = _busy()
    assert is_retryable(wrapped)


def test_policy_defaults_and_clamping():
    policy = RetryPolicy()
    assert (policy.max_attempts, policy.delay, policy.backoff) == (3, 0.5, 1.0)

    clamped = RetryPolicy(max_attempts=0, delay=-1, backoff=0.5)
    assert (clamped.max_attempts, clamped.delay, clamped.backoff) == (1, 0.0, 1.0)
    assert RetryPolicy.no_retry().max_attempts == 1


def test_backoff_delay():
    assert _calculate_backoff_delay(base=0.5, attempt=1, jitter=None) == 0.0
    assert _calculate_backoff_delay(base=0.5, attempt=2, jitter=None) == 0.5
    assert _calculate_backoff_delay(base=0.5, attempt=4, factor=2.0, jitter=None) == 2.0
    assert _calculate_backoff_delay(base=0, attempt=3, jitter=None) == 0.0


def test_backoff_jitter():
    delay = _calculate_backoff_delay(base=1.0, attempt=2, jitter=(0.1, 0.2))
    assert 1.1 <= delay <= 1.2
    delay = _calculate_backoff_delay(base=1.0, attempt=2, jitter=0.5)
    assert 1.0 <= delay <= 1.5


@pytest.mark.asyncio
async def test_retries_busy_with_fixed_delay():
    func = AsyncMock(side_effect=[_busy(), _busy(), "ok"])

    with patch("renogy_bms.modbus_retry.asyncio.sleep", AsyncMock()) as sleep:
        result = await call_with_retry(RetryPolicy(), func, 1, key="value")

    assert result == "ok"
    assert func.await_count == 3
    func.assert_awaited_with(1, key="value")
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 0.5]


@pytest.mark.asyncio
async def test_exponential_backoff():
    func = AsyncMock(side_effect=[_busy(), _busy(), "ok"])

    with patch("renogy_bms.modbus_retry.asyncio.sleep", AsyncMock()) as sleep:
        await call_with_retry(RetryPolicy(delay=0.2, backoff=3.0), func)

    assert [call.args[0] for call in sleep.await_args_list] == pytest.approx([0.2, 0.6])


@pytest.mark.asyncio
async def test_permanent_error_raised_immediately():
    func = AsyncMock(side_effect=TransportTimeoutError("timeout"))

    with patch("renogy_bms.modbus_retry.asyncio.sleep", AsyncMock()) as sleep:
        with pytest.raises(TransportTimeoutError):
            await call_with_retry(RetryPolicy(), func)

    assert func.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_attempts_exhausted(caplog):
    func = AsyncMock(side_effect=_busy())

    with caplog.at_level(logging.WARNING), patch(
        "renogy_bms.modbus_retry.asyncio.sleep", AsyncMock()
    ):
        with pytest.raises(ModbusExceptionError):
            await call_with_retry(RetryPolicy(max_attempts=3), func)

    assert func.await_count == 3
    assert caplog.text.count("retrying") == 2


@pytest.mark.asyncio
async def test_no_policy_means_single_attempt():
    func = AsyncMock(side_effect=_busy())

    with pytest.raises(ModbusExceptionError):
        await call_with_retry(None, func)

    assert func.await_count == 1
