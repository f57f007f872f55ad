"""
LLM API Clients - text completion for playlist explanations

Two providers share one call shape, complete(prompt, system) -> str:
    OpenAIClient     chat.completions via the openai SDK
    AnthropicClient  Messages API over requests
create_llm_client() picks one from config, or returns None when no provider
is usable (the explainer then uses its templates).
"""
import logging
from typing import Optional

import requests
from openai import OpenAI, OpenAIError

from .errors import RateLimitedError, UpstreamUnavailableError
from .logging_utils import redact
from .retry_helper import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7


class LLMClient:
    """Interface for a single request/response text completion."""

    provider = "none"

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        raise NotImplementedError


class OpenAIClient(LLMClient):
    """Client for explanation text using the OpenAI API"""

    provider = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_tokens: int = 4096,
                 timeout: float = 45.0, client: Optional[OpenAI] = None):
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens

    @retry_with_backoff(max_retries=2, initial_delay=1.0)
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=DEFAULT_TEMPERATURE,
            )
        except OpenAIError as e:
            status = getattr(e, "status_code", None)
            if status == 429:
                raise RateLimitedError(f"OpenAI rate limited: {e}") from e
            # 4xx other than throttling will not improve on retry
            retryable = status is None or status >= 500
            raise UpstreamUnavailableError(f"OpenAI request failed: {redact(e)}", retryable=retryable) from e

        return (response.choices[0].message.content or "").strip()


class AnthropicClient(LLMClient):
    """Client for explanation text using the Anthropic Messages API"""

    provider = "anthropic"
    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514", max_tokens: int = 4096,
                 timeout: float = 45.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    @retry_with_backoff(max_retries=2, initial_delay=1.0)
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": DEFAULT_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system

        try:
            response = self.session.post(
                self.API_URL,
                json=body,
                headers={
                    "content-type": "application/json",
                    "x-api-key": self.api_key,
                    "anthropic-version": self.API_VERSION,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailableError(f"Anthropic request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError("Anthropic rate limited")
        if response.status_code >= 400:
            raise UpstreamUnavailableError(
                f"Anthropic API error: {response.status_code} - {response.text[:200]}",
                retryable=response.status_code >= 500,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError("Anthropic returned invalid JSON", retryable=False) from e

        content = data.get("content") or []
        return (content[0].get("text") if content else "") or ""


def create_llm_client(config) -> Optional[LLMClient]:
    """Build the configured LLM client, or None when disabled or keyless."""
    provider = config.llm_provider
    if provider == "none":
        logger.info("LLM provider disabled; explanations will use templates")
        return None

    api_key = config.llm_api_key
    if not api_key:
        logger.warning(f"No API key configured for LLM provider '{provider}'; using templates")
        return None

    if provider == "anthropic":
        return AnthropicClient(
            api_key, model=config.llm_model, max_tokens=config.llm_max_tokens,
            timeout=config.llm_timeout_seconds,
        )
    return OpenAIClient(
        api_key, model=config.llm_model, max_tokens=config.llm_max_tokens,
        timeout=config.llm_timeout_seconds,
    )
