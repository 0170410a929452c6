"""
Gemini provider implementation.

WHAT: LLM provider for Google's generateContent REST API
WHY: The seller agent was originally tuned against Gemini models
HOW: httpx AsyncClient, system prompt via systemInstruction, same retry policy as other providers
"""

import asyncio
import httpx
import json

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderDisabledError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class GeminiProvider:
    """Gemini generateContent provider."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.default_model = default_model or settings.GEMINI_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.max_retries = max_retries or settings.LLM_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            headers={"x-goog-api-key": self.api_key} if self.api_key else {},
        )
        logger.info(f"Gemini provider initialized (model: {self.default_model}, enabled: {bool(self.api_key)})")

    def _check_enabled(self):
        """Raise if no API key is configured."""
        if not self.api_key or not self.api_key.strip():
            raise ProviderDisabledError("Gemini provider requires GEMINI_API_KEY")

    @staticmethod
    def _to_gemini_payload(
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int,
        stop: list[str] | None
    ) -> dict:
        """Convert OpenAI-style chat messages into a generateContent body."""
        system_parts = [{"text": m["content"]} for m in messages if m["role"] == "system"]
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
            if m["role"] != "system"
        ]
        payload = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "candidateCount": 1,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if stop:
            payload["generationConfig"]["stopSequences"] = stop
        return payload

    async def ping(self) -> ProviderStatus:
        """Check availability by listing models."""
        self._check_enabled()
        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=10.0)
            response.raise_for_status()
            models = [m.get("name", "").removeprefix("models/") for m in response.json().get("models", [])]
            return ProviderStatus(available=True, base_url=self.base_url, models=models[:10] or None)
        except httpx.TimeoutException:
            return ProviderStatus(available=False, base_url=self.base_url, error="Request timed out")
        except httpx.ConnectError:
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Gemini ping failed: {e}")
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
        """Generate a complete response via generateContent."""
        self._check_enabled()

        model_to_use = model or self.default_model
        url = f"{self.base_url}/models/{model_to_use}:generateContent"
        payload = self._to_gemini_payload(messages, temperature, max_tokens, stop)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(url, json=payload)
                response.raise_for_status()
                data = response.json()

                parts = data["candidates"][0]["content"]["parts"]
                text = "".join(part.get("text", "") for part in parts)
                meta = data.get("usageMetadata", {})
                usage = {
                    "prompt_tokens": meta.get("promptTokenCount", 0),
                    "completion_tokens": meta.get("candidatesTokenCount", 0),
                    "total_tokens": meta.get("totalTokenCount", 0),
                }

                logger.info(f"Gemini generate success (model: {model_to_use}, tokens: {usage['total_tokens']})")
                return LLMResult(text=text, usage=usage, model=model_to_use)

            except httpx.TimeoutException as e:
                logger.warning(f"Gemini timeout (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"Gemini connection refused (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError("Gemini is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.TransportError as e:
                logger.error(f"Gemini transport error: {e!r} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"Transport error talking to Gemini: {e}") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code >= 500 or status_code == 429:
                    logger.error(f"Gemini error {status_code} (attempt {attempt + 1}/{self.max_retries})")
                    if attempt == self.max_retries - 1:
                        raise ProviderResponseError(f"Server error: {status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    raise ProviderResponseError(f"HTTP {status_code}: {e.response.text}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                # Blocked prompts come back without candidates
                logger.error(f"Invalid response from Gemini: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

        raise ProviderUnavailableError("No attempts made (max_retries < 1)")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
