"""
Completion client for the multimodal chat-completions API.

Wraps the OpenAI SDK and translates its failures into the two upstream error
kinds the retry policy understands. The client performs no retries itself.
"""

import logging
from collections.abc import Sequence
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
)

from sheet_grader.config import Settings, get_settings
from sheet_grader.models import ChatMessage

logger = logging.getLogger(__name__)

# Malformed request, bad credentials, forbidden.
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403})


class ConfigurationError(Exception):
    """Raised when the completion service cannot be used because of missing configuration."""


class LLMError(Exception):
    """Raised when a completion API call fails."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        retryable: bool = False,
        status_code: int | None = None,
    ):
        self.cause = cause
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class UpstreamRequestError(LLMError):
    """The service rejected the request itself (HTTP 400/401/403). Never retried."""

    def __init__(self, message: str, cause: Exception | None = None, status_code: int | None = None):
        super().__init__(message, cause=cause, retryable=False, status_code=status_code)


class UpstreamTransientError(LLMError):
    """Any other upstream failure: timeouts, connection errors, rate limits, 5xx."""

    def __init__(self, message: str, cause: Exception | None = None, status_code: int | None = None):
        super().__init__(message, cause=cause, retryable=True, status_code=status_code)


class CompletionClient:
    """
    Client for a multimodal chat-completions endpoint.

    The SDK handle is created on first use and reused for the lifetime of the
    client, so a single instance can be shared by concurrent grading calls.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the completion client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
        """
        self._settings = settings or get_settings()
        self._client: AsyncOpenAI | None = None

    @property
    def model(self) -> str:
        return self._settings.openai_model

    def _get_client(self) -> AsyncOpenAI:
        """
        Return the SDK handle, creating it on first use.

        Raises:
            ConfigurationError: If no API key is configured.
        """
        if self._client is None:
            if not self._settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set in environment variables")
            kwargs: dict[str, Any] = {"api_key": self._settings.openai_api_key}
            if self._settings.openai_base_url:
                kwargs["base_url"] = self._settings.openai_base_url
            # The SDK has its own retry loop; RetryPolicy owns retries here.
            self._client = AsyncOpenAI(max_retries=0, **kwargs)
            logger.debug("Created completion client for model %s", self.model)
        return self._client

    async def complete(self, messages: Sequence[ChatMessage], max_output_tokens: int) -> str:
        """
        Submit a message list and return the raw completion text.

        Args:
            messages: Role-tagged messages, text and image blocks in order.
            max_output_tokens: Maximum tokens in the response.

        Returns:
            The text of the first completion choice.

        Raises:
            ConfigurationError: If no API key is configured.
            UpstreamRequestError: On HTTP 400, 401 or 403.
            UpstreamTransientError: On any other upstream failure or an empty completion.
        """
        client = self._get_client()

        request: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_openai() for m in messages],
            "max_tokens": max_output_tokens,
        }
        if self._settings.llm_temperature is not None:
            request["temperature"] = self._settings.llm_temperature

        try:
            response = await client.chat.completions.create(**request)
        except APIStatusError as e:
            if e.status_code in NON_RETRYABLE_STATUSES:
                raise UpstreamRequestError(
                    f"API error: {e.message}", cause=e, status_code=e.status_code
                ) from e
            raise UpstreamTransientError(
                f"API error: {e.message}", cause=e, status_code=e.status_code
            ) from e
        except APITimeoutError as e:
            raise UpstreamTransientError("Request timed out", cause=e) from e
        except APIConnectionError as e:
            raise UpstreamTransientError(f"Connection failed: {e}", cause=e) from e
        except OpenAIError as e:
            raise UpstreamTransientError(f"Unexpected API failure: {e}", cause=e) from e

        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content

        raise UpstreamTransientError("Empty response from completion service")

    async def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except (ConfigurationError, OpenAIError) as e:
            logger.warning("Health check failed: %s", e)
            return False
