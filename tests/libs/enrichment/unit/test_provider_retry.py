"""Unit tests for retry utility function."""

from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest

from enrichment.retry import default_is_transient_error, retry_with_backoff


class TestRetryWithBackoff:
    """Test suite for retry_with_backoff utility function."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        """Test that successful operation on first attempt doesn't retry."""
        mock_operation = AsyncMock(return_value="success")

        result = await retry_with_backoff(operation=mock_operation, max_retries=3)

        assert result == "success"
        assert mock_operation.call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_transient_errors(self):
        """Test that operation retries on transient errors and eventually succeeds."""
        mock_operation = AsyncMock(
            side_effect=[TimeoutError("slow"), ConnectionError("reset"), "success"]
        )

        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await retry_with_backoff(operation=mock_operation, max_retries=3)

        assert result == "success"
        assert mock_operation.call_count == 3

    @pytest.mark.asyncio
    async def test_non_transient_error_fails_immediately(self):
        """Test that non-transient errors don't trigger retries."""
        mock_operation = AsyncMock(side_effect=ValueError("Invalid data"))

        with pytest.raises(ValueError, match="Invalid data"):
            await retry_with_backoff(operation=mock_operation, max_retries=3)

        assert mock_operation.call_count == 1

    @pytest.mark.asyncio
    async def test_max_retries_exceeded(self):
        """Test that operation fails after max retries are exceeded."""
        mock_operation = AsyncMock(side_effect=ConnectionError("refused"))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectionError, match="refused"):
                await retry_with_backoff(operation=mock_operation, max_retries=2)

        # initial attempt + 2 retries
        assert mock_operation.call_count == 3

    @pytest.mark.asyncio
    async def test_exponential_backoff(self):
        """Test that retry delay doubles with each attempt."""
        mock_operation = AsyncMock(side_effect=[TimeoutError(), TimeoutError(), "ok"])

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await retry_with_backoff(
                operation=mock_operation, max_retries=3, retry_delay=0.5
            )

        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_delay_for_overrides_schedule(self):
        """Test that delay_for receives the error and 1-based attempt."""
        error = TimeoutError()
        mock_operation = AsyncMock(side_effect=[error, "ok"])
        delay_for = Mock(return_value=7.0)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await retry_with_backoff(
                operation=mock_operation, max_retries=1, delay_for=delay_for
            )

        delay_for.assert_called_once_with(error, 1)
        mock_sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_before_attempt_runs_before_every_attempt(self):
        mock_operation = AsyncMock(side_effect=[TimeoutError(), "ok"])
        before_attempt = AsyncMock()

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await retry_with_backoff(
                operation=mock_operation, max_retries=2, before_attempt=before_attempt
            )

        assert before_attempt.await_count == 2

    @pytest.mark.asyncio
    async def test_custom_classifier_and_on_retry(self):
        mock_operation = AsyncMock(side_effect=[KeyError("x"), "ok"])
        on_retry = Mock()

        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await retry_with_backoff(
                operation=mock_operation,
                max_retries=1,
                retry_delay=0.1,
                operation_args=("a",),
                operation_kwargs={"b": 1},
                is_transient_error=lambda e: isinstance(e, KeyError),
                on_retry=on_retry,
            )

        assert result == "ok"
        mock_operation.assert_called_with("a", b=1)
        assert on_retry.call_args.kwargs["attempt"] == 1
        assert on_retry.call_args.kwargs["delay"] == 0.1

    @pytest.mark.asyncio
    async def test_negative_arguments_are_rejected(self):
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), max_retries=-1)
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), retry_delay=-0.1)


class TestDefaultIsTransientError:
    """Test suite for default_is_transient_error function."""

    def test_transient_types(self):
        assert default_is_transient_error(TimeoutError())
        assert default_is_transient_error(ConnectionError())
        assert default_is_transient_error(aiohttp.ClientConnectionError())

    def test_transient_keywords(self):
        assert default_is_transient_error(Exception("Service temporarily unavailable"))
        assert default_is_transient_error(Exception("network unreachable"))

    def test_non_transient(self):
        assert not default_is_transient_error(ValueError("Invalid data"))
