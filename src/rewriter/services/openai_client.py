"""OpenAI-compatible chat completion client used by the relay."""
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from rewriter.config import OpenAIConfig

log = structlog.get_logger()


class UpstreamResponse:
    """An open streaming response. Lines are read lazily, once."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return self._response.is_success

    async def read_text(self) -> str:
        """Read the whole body. Only meant for error responses."""
        await self._response.aread()
        return self._response.text

    def aiter_lines(self) -> AsyncIterator[str]:
        return self._response.aiter_lines()

    async def aclose(self):
        await self._response.aclose()


class OpenAIClient:
    """Thin transport for streaming chat completions.

    The caller owns the returned response and must ``aclose()`` it.
    """

    def __init__(self, cfg: OpenAIConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = cfg
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.cfg.api_key:
            log.warning("openai_client_no_key", message="OPENAI_API_KEY not set")

    @property
    def configured(self) -> bool:
        return bool(self.cfg.api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.cfg.base_url,
                headers={
                    "Authorization": f"Bearer {self.cfg.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.cfg.timeout_seconds, connect=self.cfg.connect_timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def stream_completion(
        self,
        model: str,
        messages: List[Dict[str, str]],
        max_output_tokens: Optional[int] = None,
    ) -> UpstreamResponse:
        """Start a ``stream: true`` completion and return once headers arrive.

        Raises httpx.HTTPError if the connection cannot be made.
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "max_completion_tokens": max_output_tokens or self.cfg.max_completion_tokens,
        }
        request = self.client.build_request("POST", "/chat/completions", json=payload)
        log.info("openai_stream_request", model=model, messages=len(messages))
        response = await self.client.send(request, stream=True)
        return UpstreamResponse(response)

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            log.info("openai_client_closed")
