"""Tests for the Claude client used as the model-invocation collaborator."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from windowkeeper.context import InMemoryHistory


def _mock_anthropic(MockAnthropic, text="Hello!"):
    mock_client = AsyncMock()
    mock_message = MagicMock()
    mock_message.content = [MagicMock(text=text)]
    mock_client.messages.create = AsyncMock(return_value=mock_message)
    MockAnthropic.return_value = mock_client
    return mock_client


# ---------------------------------------------------------------------------
# TestClaudeClient
# ---------------------------------------------------------------------------

class TestClaudeClient:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        from windowkeeper.llm.claude import ClaudeClient

        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            ClaudeClient()

    @pytest.mark.asyncio
    async def test_no_system_prompt_by_default(self):
        """get_response omits `system` when no prompt is given."""
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = _mock_anthropic(MockAnthropic)

            from windowkeeper.llm.claude import ClaudeClient

            client = ClaudeClient(api_key="test-key")
            result = await client.get_response([{"role": "user", "content": "Hi"}])

            assert result == "Hello!"
            call_kwargs = mock_client.messages.create.call_args
            assert "system" not in call_kwargs.kwargs

    @pytest.mark.asyncio
    async def test_custom_system_prompt(self):
        """get_response passes system_prompt through when provided."""
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = _mock_anthropic(MockAnthropic)

            from windowkeeper.llm.claude import ClaudeClient

            client = ClaudeClient(api_key="test-key")
            await client.get_response(
                [{"role": "user", "content": "Hi"}], system_prompt="Custom prompt"
            )

            call_kwargs = mock_client.messages.create.call_args
            assert call_kwargs.kwargs["system"] == "Custom prompt"

    @pytest.mark.asyncio
    async def test_send_message_records_history(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            _mock_anthropic(MockAnthropic, text="Sure thing.")

            from windowkeeper.llm.claude import ClaudeClient

            history = InMemoryHistory()
            client = ClaudeClient(api_key="test-key", history=history)
            assert await client.send_message("Remind me at 5") == "Sure thing."

            messages = history.get_history()
            assert [(m.role, m.content) for m in messages] == [
                ("user", "Remind me at 5"),
                ("assistant", "Sure thing."),
            ]

    @pytest.mark.asyncio
    async def test_send_message_skip_history(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            _mock_anthropic(MockAnthropic, text="A summary.")

            from windowkeeper.llm.claude import ClaudeClient

            history = InMemoryHistory()
            client = ClaudeClient(api_key="test-key", history=history)
            await client.send_message("[CONTEXT COMPACTION]", skip_history=True)

            assert len(history) == 0

    @pytest.mark.asyncio
    async def test_blank_prompt(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = _mock_anthropic(MockAnthropic)

            from windowkeeper.llm.claude import ClaudeClient

            client = ClaudeClient(api_key="test-key")
            assert await client.send_message("   ") == ""
            mock_client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self):
        from anthropic import APITimeoutError

        with patch("anthropic.AsyncAnthropic") as MockAnthropic, \
                patch("windowkeeper.llm.claude.asyncio.sleep", new=AsyncMock()):
            mock_client = _mock_anthropic(MockAnthropic)
            request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
            mock_client.messages.create = AsyncMock(side_effect=APITimeoutError(request=request))

            from windowkeeper.llm.claude import APIError, ClaudeClient

            client = ClaudeClient(api_key="test-key", max_retries=2)
            with pytest.raises(APIError) as exc_info:
                await client.send_message("Hi")

            assert exc_info.value.retryable is True
            assert mock_client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_unexpected_error_not_retried(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = _mock_anthropic(MockAnthropic)
            mock_client.messages.create = AsyncMock(side_effect=KeyError("content"))

            from windowkeeper.llm.claude import APIError, ClaudeClient

            client = ClaudeClient(api_key="test-key")
            with pytest.raises(APIError) as exc_info:
                await client.send_message("Hi")

            assert exc_info.value.retryable is False
            assert mock_client.messages.create.await_count == 1
