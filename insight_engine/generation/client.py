"""Text-generation collaborator: request/response contract and HTTP client"""

from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str
    content: str


class GenerationRequest(BaseModel):
    """Provider-neutral request for one completion"""

    system_prompt: str
    messages: List[ChatMessage] = Field(default_factory=list)
    model: str = ""
    max_tokens: int = 1500
    temperature: float = 0.7


class GenerationResponse(BaseModel):
    """
    Result of one completion attempt.

    ``success=False`` means the same thing for every provider and model:
    the attempt produced no usable text.
    """

    success: bool
    text: str = ""
    error: Optional[str] = None


class TextGenerator(Protocol):
    """Anything that can turn a GenerationRequest into a GenerationResponse"""

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...


class ChatCompletionsGenerator:
    """
    Client for OpenAI-compatible ``/chat/completions`` endpoints.

    Transport failures, timeouts, non-2xx statuses and malformed or empty
    bodies come back as ``success=False`` rather than raising. Cancellation
    propagates to the caller.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        provider: str = "",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.provider = provider or httpx.URL(self.base_url).host or "unknown"
        self.requests_made = 0
        self.failures = 0
        logger.info(f"ChatCompletionsGenerator initialized ({self.provider})")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _payload(request: GenerationRequest) -> Dict[str, Any]:
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend(m.model_dump() for m in request.messages)
        return {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }

    @staticmethod
    def _extract_text(body: Any) -> Optional[str]:
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(content, str) or not content.strip():
            return None
        return content

    def _fail(self, error: str) -> GenerationResponse:
        self.failures += 1
        logger.warning(f"Generation failed ({self.provider}): {error}")
        return GenerationResponse(success=False, error=error)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests_made += 1
        url = f"{self.base_url}/chat/completions"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=self._headers(), json=self._payload(request))
        except httpx.TimeoutException:
            return self._fail(f"timeout after {self.timeout}s")
        except httpx.HTTPError as e:
            return self._fail(f"transport error: {e}")

        if not response.is_success:
            return self._fail(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return self._fail("response body is not JSON")

        text = self._extract_text(body)
        if text is None:
            return self._fail("response carried no completion text")

        return GenerationResponse(success=True, text=text)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "requests_made": self.requests_made,
            "failures": self.failures,
        }
