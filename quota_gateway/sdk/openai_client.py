"""
Completion gateway over the OpenAI client.

Sends the conversation upstream with the allocated output budget and
returns the reply together with the token counts the upstream reported.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..config.loader import GatewayConfig
from ..core.errors import ConfigurationError, UpstreamError
from ..log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Reply text and token usage of one completion."""
    reply: str
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def upstream_error_from(exc: Exception) -> UpstreamError:
    """Map an OpenAI client exception to an UpstreamError.

    Rules, first match wins:
    1. timeout -> 504
    2. status error -> its status, message from body.error.message,
       then body.message, then the exception message
    3. connection failure -> 502
    4. anything else -> 500 with the exception text
    """
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamError(504, "Upstream request timed out")
    if isinstance(exc, openai.APIStatusError):
        return UpstreamError(exc.status_code, _status_error_message(exc))
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamError(502, "Could not reach the completion service")
    return UpstreamError(500, str(exc) or "Upstream completion failed")


def _status_error_message(exc: "openai.APIStatusError") -> str:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return exc.message or "Upstream completion failed"


class CompletionGateway:
    """Calls the chat-completion service on behalf of admitted requests.

    The OpenAI client is built on first use so a missing credential fails
    the request, not the process.
    """

    def __init__(self, config: GatewayConfig, client: Optional[OpenAI] = None):
        self.config = config
        self._client = client

    def ensure_configured(self) -> None:
        """Check a credential is available before any quota work.

        Raises:
            ConfigurationError: If no API key is set and no client was given
        """
        if self._client is None and self.config.api_key() is None:
            logger.error("Missing upstream credential (%s is not set)", self.config.api_key_env)
            raise ConfigurationError("Server is missing its API key configuration.")

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self.ensure_configured()
            self._client = OpenAI(
                api_key=self.config.api_key(),
                timeout=self.config.request_timeout,
                max_retries=0
            )
        return self._client

    def complete(self, messages: List[Dict[str, Any]], max_tokens: int) -> CompletionResult:
        """Create a chat completion with the system prompt prepended.

        Args:
            messages: Conversation from the caller
            max_tokens: Output budget for this call

        Returns:
            CompletionResult with the reply and reported token counts

        Raises:
            ConfigurationError: If the credential is missing
            UpstreamError: If the call fails or the response is malformed
        """
        full_messages = [{"role": "system", "content": self.config.system_prompt}]
        full_messages.extend(messages)

        client = self.client
        try:
            response = client.chat.completions.create(
                model=self.config.model,
                messages=full_messages,
                temperature=self.config.temperature,
                max_tokens=max_tokens
            )
        except openai.OpenAIError as e:
            error = upstream_error_from(e)
            logger.error("Completion failed with status %d: %s", error.status_code, error.message)
            raise error from e

        return _parse_response(response)


def _parse_response(response: Any) -> CompletionResult:
    choices = getattr(response, "choices", None)
    if not choices:
        raise UpstreamError(502, "Completion response has no choices")
    usage = getattr(response, "usage", None)
    if usage is None:
        raise UpstreamError(502, "Completion response missing usage information")

    message = getattr(choices[0], "message", None)
    reply = getattr(message, "content", None) or ""
    return CompletionResult(
        reply=reply,
        prompt_tokens=int(usage.prompt_tokens or 0),
        completion_tokens=int(usage.completion_tokens or 0)
    )
