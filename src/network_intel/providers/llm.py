from __future__ import annotations

import httpx

from ..errors import ExternalProviderError
from .http import HttpClientFactory, bearer, raise_for_status, transient_retry


class HttpTextGenerator:
    """OpenAI-compatible chat completions client.

    `instructions` become the system message and `text` the user message. JSON mode is
    requested; callers still validate the returned text against their schema.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        timeout_s: float = 60.0,
        retry_attempts: int = 5,
        retry_initial_wait: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self._client = HttpClientFactory.client(
            base_url, headers=bearer(api_key), read_timeout_s=timeout_s, transport=transport
        )
        self._post = transient_retry(retry_attempts, retry_initial_wait)(self._post_once)

    async def _post_once(self, payload: dict) -> dict:
        resp = await self._client.post("/chat/completions", json=payload)
        raise_for_status(resp)
        return resp.json()

    async def summarize(self, text: str, instructions: str) -> str:
        payload = {
            "model": self.model,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": instructions},
                {"role": "user", "content": text},
            ],
        }
        try:
            data = await self._post(payload)
            return str(data["choices"][0]["message"]["content"] or "")
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            raise ExternalProviderError(f"text generation failed: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
