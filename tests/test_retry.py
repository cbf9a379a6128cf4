from unittest.mock import AsyncMock, Mock

import pytest

from flowbot.core.retry import logging_callback, retry


class TestRetry:
    async def test_returns_first_success(self):
        op = AsyncMock(return_value=42)
        assert await retry(op, max_attempts=3, delay=0) == 42
        assert op.await_count == 1

    async def test_retries_until_success(self):
        op = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        on_error = Mock()
        assert await retry(op, max_attempts=3, delay=0, on_error=on_error) == "ok"
        assert op.await_count == 3
        assert [c.args[0] for c in on_error.call_args_list] == [1, 2]

    async def test_reraises_last_error(self):
        op = AsyncMock(side_effect=[ValueError("first"), KeyError("last")])
        with pytest.raises(KeyError):
            await retry(op, max_attempts=2, delay=0)
        assert op.await_count == 2

    async def test_single_attempt_reraises_without_sleeping(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("flowbot.core.retry.asyncio.sleep", sleep)
        on_error = Mock()
        with pytest.raises(RuntimeError, match="once"):
            await retry(AsyncMock(side_effect=RuntimeError("once")), max_attempts=1, delay=5.0, on_error=on_error)
        assert on_error.call_count == 1
        sleep.assert_not_awaited()

    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await retry(AsyncMock(), max_attempts=0)

    async def test_fixed_delay_between_attempts(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr("flowbot.core.retry.asyncio.sleep", fake_sleep)
        op = AsyncMock(side_effect=RuntimeError("down"))
        with pytest.raises(RuntimeError):
            await retry(op, max_attempts=3, delay=1.0)
        assert sleeps == [1.0, 1.0]


class TestLoggingCallback:
    def test_logs_attempt_context(self):
        logger = Mock()
        callback = logging_callback(logger, "lookup_retry", chatbot_id="bot-1")
        callback(1, 3, RuntimeError("boom"))
        logger.warning.assert_called_once_with(
            "lookup_retry", attempt=1, max_attempts=3, error="boom", chatbot_id="bot-1"
        )
