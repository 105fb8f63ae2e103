from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import ExternalProviderError, NotFoundError, ValidationError
from ..providers.http import HttpClientFactory, TransientHttpError, bearer, raise_for_status, transient_retry
from .cache import GraphView, GraphViewCache

logger = logging.getLogger(__name__)


class ProgressiveGraphClient:
    """Drives the retrieval API and keeps the accumulated GraphView per mode.

    Every expand re-sends the ids already held, so a client that reconnects (or a new
    process handed a cached view) resumes without receiving duplicates.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        cache: GraphViewCache | None = None,
        timeout_s: float = 30.0,
        retry_attempts: int = 3,
        retry_initial_wait: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = HttpClientFactory.client(
            base_url, bearer(api_key), read_timeout_s=timeout_s, transport=transport
        )
        self.cache = cache if cache is not None else GraphViewCache()
        self._request = transient_retry(retry_attempts, retry_initial_wait)(self._request_once)

    async def _request_once(self, method: str, url: str, **kw: Any) -> dict[str, Any]:
        resp = await self._client.request(method, url, **kw)
        if resp.status_code == 404:
            raise NotFoundError(resp.json().get("detail", "not found"))
        if resp.status_code == 422:
            raise ValidationError(str(resp.json().get("detail", "invalid request")))
        raise_for_status(resp)
        return resp.json()

    async def _call(self, method: str, url: str, **kw: Any) -> dict[str, Any]:
        try:
            return await self._request(method, url, **kw)
        except (*TransientHttpError, httpx.HTTPStatusError) as e:
            raise ExternalProviderError(f"graph API request {method} {url} failed: {e}") from e

    def view(self, mode: str) -> GraphView:
        v = self.cache.get(mode)
        if v is None:
            v = GraphView()
            self.cache.put(mode, v)
        return v

    async def load_initial(self, mode: str = "overview", max_nodes: int | None = None) -> GraphView:
        params: dict[str, Any] = {"mode": mode}
        if max_nodes is not None:
            params["max_nodes"] = max_nodes
        payload = await self._call("GET", "/v1/graph/initial", params=params)
        v = self.view(mode)
        added, _ = v.merge(payload)
        logger.debug("initial(%s): %d new nodes", mode, added)
        return v

    async def expand(self, node_id: str, *, mode: str = "overview", max_nodes: int | None = None) -> GraphView:
        v = self.view(mode)
        body: dict[str, Any] = {"node_id": node_id, "already_loaded": v.known_ids()}
        if max_nodes is not None:
            body["max_nodes"] = max_nodes
        payload = await self._call("POST", "/v1/graph/expand", json=body)
        added, _ = v.merge(payload)
        logger.debug("expand(%s): %d new nodes", node_id, added)
        return v

    async def aclose(self) -> None:
        await self._client.aclose()
