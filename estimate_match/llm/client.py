"""LLM client abstraction for the semantic matcher.

The matcher only needs "text prompt in, text out". Two backends:
- ChatModelClient: any LangChain chat model (ChatOllama by default)
- GeminiClient: Google Generative Language REST API over httpx

Failures surface as LLMError / ConfigurationError / LLMResponseError so the
caller can convert them into a strategy failure.

Example:
    client = create_model_client(get_settings())
    response = await client.complete("Match these invoice lines ...")
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_ollama import ChatOllama

from estimate_match.config.settings import Settings, get_settings
from estimate_match.utils.errors import ConfigurationError, LLMError, LLMResponseError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class LLMResponse:
    """Response from a model call."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    raw_response: dict[str, Any] | None = None

    @property
    def tokens_used(self) -> int:
        """Total tokens used in this response."""
        return self.usage.get("total_tokens", 0)


class SemanticModelClient(ABC):
    """Abstract base class for model clients."""

    model_name: str = "unknown"

    @abstractmethod
    async def complete(self, prompt: str) -> LLMResponse:
        """
        Generate a completion for the given prompt.

        Raises:
            ConfigurationError: Credentials or configuration missing
            LLMError: Transport failure or non-success response
            LLMResponseError: Response envelope not in the expected format
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class ChatModelClient(SemanticModelClient):
    """
    Client wrapping a LangChain chat model.

    Defaults to ChatOllama in JSON mode with a low temperature for
    repeatable output.
    """

    def __init__(
        self,
        chat_model: BaseChatModel | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()

        if chat_model is None:
            chat_model = ChatOllama(
                model=self._settings.ollama_llm_model,
                base_url=self._settings.ollama_base_url,
                temperature=self._settings.llm_temperature,
                num_predict=self._settings.llm_max_tokens,
                format="json",
            )
            self.model_name = self._settings.ollama_llm_model
        else:
            self.model_name = getattr(chat_model, "model", None) or type(chat_model).__name__

        self._llm = chat_model

    async def complete(self, prompt: str) -> LLMResponse:
        try:
            logger.debug("Calling chat model", model=self.model_name, prompt_length=len(prompt))
            response = await self._llm.ainvoke(prompt)
        except Exception as e:
            logger.error("Chat model call failed", model=self.model_name, error=str(e))
            raise LLMError(
                message="LLM call failed",
                details={"error": str(e), "model": self.model_name},
            ) from e

        content = response.content if hasattr(response, "content") else str(response)
        if not isinstance(content, str):
            content = str(content)

        usage_metadata = getattr(response, "usage_metadata", None) or {}
        usage = {
            "prompt_tokens": int(usage_metadata.get("input_tokens", 0)),
            "completion_tokens": int(usage_metadata.get("output_tokens", 0)),
            "total_tokens": int(usage_metadata.get("total_tokens", 0)),
        }

        logger.debug(
            "Chat model response received",
            model=self.model_name,
            response_length=len(content),
            tokens=usage["total_tokens"],
        )
        return LLMResponse(content=content, model=self.model_name, usage=usage)


class GeminiClient(SemanticModelClient):
    """
    Gemini generateContent client.

    Requires an API key; a missing key is reported at call time so the
    matcher can fall back instead of failing at construction.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.model_name = self._settings.gemini_model
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.gemini_base_url,
                timeout=self._settings.llm_request_timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(self, prompt: str) -> LLMResponse:
        api_key = self._settings.gemini_api_key
        if not api_key:
            raise ConfigurationError(
                message="Gemini API key not configured",
                details={"setting": "GEMINI_API_KEY"},
            )

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._settings.llm_temperature,
                "maxOutputTokens": self._settings.llm_max_tokens,
            },
        }

        client = await self._get_client()
        try:
            response = await client.post(
                f"/models/{self.model_name}:generateContent",
                params={"key": api_key},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error("Gemini request failed", error=str(e))
            raise LLMError(
                message="Gemini request failed",
                details={"error": str(e)},
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "Gemini returned error status",
                status=response.status_code,
                body=response.text[:200],
            )
            raise LLMError(
                message=f"Gemini API error: {response.status_code}",
                details={"status": response.status_code, "body": response.text[:500]},
            )

        try:
            data = response.json()
            content = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMResponseError(
                message="Invalid Gemini API response format",
                details={"error": str(e)},
            ) from e

        usage_metadata = data.get("usageMetadata", {})
        usage = {
            "prompt_tokens": int(usage_metadata.get("promptTokenCount", 0)),
            "completion_tokens": int(usage_metadata.get("candidatesTokenCount", 0)),
            "total_tokens": int(usage_metadata.get("totalTokenCount", 0)),
        }
        return LLMResponse(content=content, model=self.model_name, usage=usage, raw_response=data)


def create_model_client(settings: Settings | None = None) -> SemanticModelClient | None:
    """
    Build the configured model client.

    Returns:
        A client, or None when LLM matching is disabled (llm_provider=none)
    """
    settings = settings or get_settings()

    if settings.llm_provider == "none":
        return None
    if settings.llm_provider == "gemini":
        return GeminiClient(settings)
    return ChatModelClient(settings=settings)
