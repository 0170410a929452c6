"""
Unit tests for LLM provider factory and implementations.

WHAT: Test provider selection, OpenAI-compatible and Gemini calls, error handling
WHY: Every provider failure must surface as a ModelUnavailableError subclass
HOW: Mock HTTP with respx, test success and failure paths
"""

import httpx
import pytest
import respx

from negotiator.llm.gemini import GeminiProvider
from negotiator.llm.openai_compatible import OpenAICompatibleProvider
from negotiator.llm.provider_factory import get_provider
from negotiator.llm.types import (
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from negotiator.utils.exceptions import ModelUnavailableError

from tests.conftest import MOCK_CHAT_RESPONSE, MOCK_GEMINI_RESPONSE

BASE_URL = "http://localhost:1234/v1"
GEMINI_URL = "https://gemini.test/v1beta"
MESSAGES = [
    {"role": "system", "content": "You are a seller."},
    {"role": "user", "content": "Would you take $1,950?"},
]


@pytest.mark.unit
class TestProviderFactory:
    """Test provider factory selection logic."""

    def test_factory_returns_openai_compatible(self):
        assert isinstance(get_provider("openai_compatible"), OpenAICompatibleProvider)

    def test_factory_returns_gemini(self):
        assert isinstance(get_provider("gemini"), GeminiProvider)

    def test_factory_raises_on_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            get_provider("unknown_provider")

    def test_factory_returns_singleton(self):
        assert get_provider("openai_compatible") is get_provider()


@pytest.mark.unit
class TestOpenAICompatibleProvider:

    @pytest.fixture
    def provider(self):
        return OpenAICompatibleProvider(
            base_url=BASE_URL, api_key="", default_model="test-model",
            max_retries=2, retry_delay=0,
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_success(self, provider):
        respx.get(f"{BASE_URL}/models").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "model-1"}, {"id": "model-2"}]})
        )

        status = await provider.ping()
        assert status.available is True
        assert status.models == ["model-1", "model-2"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_timeout(self, provider):
        respx.get(f"{BASE_URL}/models").mock(side_effect=httpx.TimeoutException("timeout"))

        status = await provider.ping()
        assert status.available is False
        assert status.error == "Request timed out"

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_success(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=MOCK_CHAT_RESPONSE)
        )

        result = await provider.generate(MESSAGES, temperature=0.7, max_tokens=256)

        assert result.text.startswith("How about $2,150?")
        assert result.model == "test-model"
        assert result.usage["total_tokens"] == 134
        sent = route.calls.last.request
        assert "Authorization" not in sent.headers
        assert b'"max_tokens":256' in sent.content.replace(b" ", b"")

    @pytest.mark.asyncio
    @respx.mock
    async def test_bearer_header_when_key_set(self):
        provider = OpenAICompatibleProvider(base_url=BASE_URL, api_key="secret", max_retries=1, retry_delay=0)
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=MOCK_CHAT_RESPONSE)
        )

        await provider.generate(MESSAGES, temperature=0.2, max_tokens=64)
        assert route.calls.last.request.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_errors_are_retried(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(return_value=httpx.Response(503))

        with pytest.raises(ProviderResponseError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_errors_are_not_retried(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(400, json={"error": "bad request"})
        )

        with pytest.raises(ProviderResponseError, match="HTTP 400"):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(ProviderTimeoutError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_refused(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ProviderUnavailableError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

    @pytest.mark.asyncio
    @respx.mock
    async def test_dropped_connection_is_retried_then_unavailable(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.ReadError("connection reset"))

        with pytest.raises(ProviderUnavailableError, match="Transport error"):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_dropped_connection_recovers_on_retry(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(
            side_effect=[httpx.ReadError("connection reset"), httpx.Response(200, json=MOCK_CHAT_RESPONSE)]
        )

        result = await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert result.model == "test-model"

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_response(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(return_value=httpx.Response(200, json={"choices": []}))

        with pytest.raises(ProviderResponseError, match="Invalid response format"):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

    def test_provider_errors_are_model_unavailable(self):
        for error in (ProviderTimeoutError, ProviderUnavailableError, ProviderDisabledError, ProviderResponseError):
            assert issubclass(error, ModelUnavailableError)


@pytest.mark.unit
class TestGeminiProvider:

    @pytest.fixture
    def provider(self):
        return GeminiProvider(
            api_key="test-key", base_url=GEMINI_URL, default_model="gemini-test",
            max_retries=2, retry_delay=0,
        )

    def test_payload_conversion(self):
        payload = GeminiProvider._to_gemini_payload(
            MESSAGES + [{"role": "assistant", "content": "Maybe."}], 0.5, 128, ["END"]
        )

        assert payload["systemInstruction"] == {"parts": [{"text": "You are a seller."}]}
        assert [c["role"] for c in payload["contents"]] == ["user", "model"]
        assert payload["generationConfig"]["maxOutputTokens"] == 128
        assert payload["generationConfig"]["stopSequences"] == ["END"]

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        provider = GeminiProvider(api_key="", base_url=GEMINI_URL)
        with pytest.raises(ProviderDisabledError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_success(self, provider):
        route = respx.post(f"{GEMINI_URL}/models/gemini-test:generateContent").mock(
            return_value=httpx.Response(200, json=MOCK_GEMINI_RESPONSE)
        )

        result = await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

        assert result.text == "I accept your offer!"
        assert result.model == "gemini-test"
        assert result.usage == {"prompt_tokens": 80, "completion_tokens": 5, "total_tokens": 85}
        assert route.calls.last.request.headers["x-goog-api-key"] == "test-key"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_is_retried(self, provider):
        route = respx.post(f"{GEMINI_URL}/models/gemini-test:generateContent").mock(
            side_effect=[httpx.Response(429), httpx.Response(200, json=MOCK_GEMINI_RESPONSE)]
        )

        result = await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert result.text == "I accept your offer!"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_blocked_prompt(self, provider):
        respx.post(f"{GEMINI_URL}/models/gemini-test:generateContent").mock(
            return_value=httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
        )

        with pytest.raises(ProviderResponseError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)

    @pytest.mark.asyncio
    @respx.mock
    async def test_protocol_error_is_retried_then_unavailable(self, provider):
        route = respx.post(f"{GEMINI_URL}/models/gemini-test:generateContent").mock(
            side_effect=httpx.RemoteProtocolError("peer closed connection")
        )

        with pytest.raises(ProviderUnavailableError):
            await provider.generate(MESSAGES, temperature=0.7, max_tokens=64)
        assert route.call_count == 2
