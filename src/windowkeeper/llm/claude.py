"""Claude API client used as the model-invocation collaborator."""

import asyncio
import logging
import os
from typing import Optional

import httpx

from ..context.history import InMemoryHistory

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Raised when Claude API request fails after retries."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ClaudeClient:
    """Async client for Claude API.

    `send_message` matches the SendMessage collaborator used by the
    maintenance routines. When a history store is attached, each
    exchange is recorded unless `skip_history` is set.
    """

    # HTTP status codes that are retryable
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 3,
        history: Optional[InMemoryHistory] = None,
    ) -> None:
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key. If not provided, reads from
                     ANTHROPIC_API_KEY environment variable.
            model: Claude model to use.
            max_tokens: Maximum tokens in response.
            timeout: Request timeout in seconds.
            max_retries: Maximum retries for transient errors.
            history: Optional store that records each exchange.

        Raises:
            ValueError: If no API key is available.
        """
        from anthropic import AsyncAnthropic

        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable not set. "
                "Please set it or pass api_key parameter."
            )

        self._client = AsyncAnthropic(
            api_key=self._api_key,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )
        self._model = model
        self._max_tokens = max_tokens
        self._max_retries = max_retries
        self._history = history

    @property
    def model(self) -> str:
        return self._model

    async def send_message(
        self,
        prompt: str,
        *,
        skip_history: bool = False,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Send a single prompt and return the response text.

        Raises:
            APIError: On API errors after retries exhausted.
        """
        if not prompt.strip():
            return ""

        response = await self.get_response(
            [{"role": "user", "content": prompt}], system_prompt=system_prompt
        )
        if self._history is not None and not skip_history:
            self._history.append("user", prompt)
            self._history.append("assistant", response)
        return response

    async def get_response(
        self,
        messages: list[dict],
        system_prompt: Optional[str] = None,
    ) -> str:
        """Get a response from Claude with retry logic.

        Args:
            messages: Message dicts with 'role' and 'content' keys.
            system_prompt: Optional system prompt.

        Returns:
            Claude's response text.

        Raises:
            APIError: On API errors after retries exhausted.
        """
        from anthropic import APIConnectionError, APIStatusError, APITimeoutError

        if not messages:
            return ""

        last_user = next(
            (m["content"] for m in reversed(messages) if m["role"] == "user"),
            "",
        )
        log_preview = last_user[:80]
        logger.info(
            f"Sending to Claude ({len(messages)} messages): "
            f"'{log_preview}{'...' if len(last_user) > 80 else ''}'"
        )

        kwargs = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": messages,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries + 1):
            try:
                message = await self._client.messages.create(**kwargs)

                response_text = ""
                for block in message.content:
                    if hasattr(block, "text"):
                        response_text += block.text

                logger.info(
                    f"Claude response: '{response_text[:80]}{'...' if len(response_text) > 80 else ''}'"
                )
                return response_text

            except APITimeoutError as e:
                last_error = e
                logger.warning(f"Claude API timeout (attempt {attempt + 1}/{self._max_retries + 1})")

            except APIConnectionError as e:
                last_error = e
                logger.warning(f"Claude API connection error (attempt {attempt + 1}/{self._max_retries + 1}): {e}")

            except APIStatusError as e:
                last_error = e
                if e.status_code in self.RETRYABLE_STATUS_CODES:
                    logger.warning(
                        f"Claude API error {e.status_code} (attempt {attempt + 1}/{self._max_retries + 1}): {e.message}"
                    )
                else:
                    # Non-retryable error (e.g., 400, 401, 403)
                    logger.error(f"Claude API error {e.status_code}: {e.message}")
                    raise APIError(f"Claude API error: {e.message}", retryable=False) from e

            except Exception as e:
                logger.error(f"Unexpected error calling Claude API: {e}", exc_info=True)
                raise APIError(f"Unexpected error: {e}", retryable=False) from e

            # Exponential backoff before retry
            if attempt < self._max_retries:
                delay = min(2 ** attempt, 10)  # 1s, 2s, 4s, max 10s
                logger.info(f"Retrying in {delay}s...")
                await asyncio.sleep(delay)

        logger.error(f"Claude API failed after {self._max_retries + 1} attempts")
        raise APIError(
            f"Claude API failed after {self._max_retries + 1} attempts: {last_error}",
            retryable=True
        )
