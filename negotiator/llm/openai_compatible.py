"""
OpenAI-compatible provider implementation.

WHAT: LLM provider for any /chat/completions endpoint (OpenRouter, LM Studio, vLLM)
WHY: One HTTP client covers hosted and local inference servers
HOW: httpx AsyncClient, optional bearer auth, retry with exponential backoff
"""

import asyncio
import httpx
import json

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OpenAICompatibleProvider:
    """Provider speaking the OpenAI chat completions protocol."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        """
        Initialize provider, falling back to settings for anything not given.

        Args:
            base_url: API root, e.g. https://openrouter.ai/api/v1
            api_key: Bearer token (empty for local servers)
            default_model: Model used when generate() gets none
            timeout: Read timeout in seconds
            max_retries: Attempts before giving up
            retry_delay: Base delay for exponential backoff
        """
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.default_model = default_model or settings.LLM_DEFAULT_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.max_retries = max_retries or settings.LLM_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY

        headers = {"X-Title": settings.APP_NAME}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers=headers,
        )
        logger.info(
            f"OpenAI-compatible provider initialized (base_url: {self.base_url}, "
            f"model: {self.default_model}, auth: {'yes' if self.api_key else 'no'})"
        )

    async def ping(self) -> ProviderStatus:
        """
        Check availability by fetching the models list.

        Returns:
            ProviderStatus with available models
        """
        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=10.0)
            response.raise_for_status()
            data = response.json()
            models = [model.get("id") for model in data.get("data", [])]

            logger.info(f"Provider ping success ({len(models)} models available)")
            return ProviderStatus(
                available=True,
                base_url=self.base_url,
                models=models[:10] if models else None,
                error=None
            )
        except httpx.TimeoutException:
            logger.warning("Provider ping timeout")
            return ProviderStatus(available=False, base_url=self.base_url, error="Request timed out")
        except httpx.ConnectError:
            logger.warning("Provider not reachable")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Provider ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """
        Generate complete response (non-streaming).

        Raises:
            ProviderTimeoutError: Request timed out
            ProviderUnavailableError: Endpoint not reachable
            ProviderResponseError: Invalid response
        """
        model_to_use = model or self.default_model
        payload = {
            "model": model_to_use,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False
        }
        if stop:
            payload["stop"] = stop

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload
                )
                response.raise_for_status()
                data = response.json()

                text = data["choices"][0]["message"]["content"]
                usage = data.get("usage", {})
                response_model = data.get("model", model_to_use)

                logger.info(f"Provider generate success (model: {response_model}, tokens: {usage.get('total_tokens', 'unknown')})")
                return LLMResult(text=text, usage=usage, model=response_model)

            except httpx.TimeoutException as e:
                logger.warning(f"Provider timeout (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"Provider connection refused (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"Provider at {self.base_url} is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.TransportError as e:
                # Dropped connections, protocol errors mid-response
                logger.error(f"Provider transport error: {e!r} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"Transport error talking to {self.base_url}: {e}") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    logger.error(f"Provider server error {e.response.status_code} (attempt {attempt + 1}/{self.max_retries})")
                    if attempt == self.max_retries - 1:
                        raise ProviderResponseError(f"Server error: {e.response.status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    # Client errors don't retry
                    raise ProviderResponseError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                logger.error(f"Invalid response from provider: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

        raise ProviderUnavailableError("No attempts made (max_retries < 1)")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
