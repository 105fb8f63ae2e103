from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from ..errors import ExternalProviderError, ValidationError
from .http import HttpClientFactory, bearer, raise_for_status, transient_retry

logger = logging.getLogger(__name__)


class HttpRelationshipProvider:
    """Paginated CRM export client.

    Expects `GET /records?list=<filter>&page_token=<t>` to return
    `{"records": [...], "next_page_token": "..." | null}`.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        page_size: int = 100,
        max_pages: int = 1000,
        timeout_s: float = 60.0,
        retry_attempts: int = 5,
        retry_initial_wait: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.page_size = page_size
        self.max_pages = max_pages
        self._client = HttpClientFactory.client(
            base_url, headers=bearer(api_key), read_timeout_s=timeout_s, transport=transport
        )
        self._get = transient_retry(retry_attempts, retry_initial_wait)(self._get_once)

    async def _get_once(self, params: dict[str, Any]) -> dict:
        resp = await self._client.get("/records", params=params)
        raise_for_status(resp)
        return resp.json()

    async def fetch_external_relationships(self, list_filter: str | None = None) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        token: str | None = None
        for page in range(self.max_pages):
            params: dict[str, Any] = {"page_size": self.page_size}
            if list_filter:
                params["list"] = list_filter
            if token:
                params["page_token"] = token
            try:
                data = await self._get(params)
            except (httpx.HTTPError, ValueError) as e:
                raise ExternalProviderError(f"CRM fetch failed on page {page}: {e}") from e
            batch = data.get("records") or []
            if not isinstance(batch, list):
                raise ExternalProviderError("CRM response 'records' is not a list")
            records.extend(batch)
            token = data.get("next_page_token")
            if not token:
                break
        else:
            logger.warning("CRM pagination stopped after %d pages", self.max_pages)
        logger.info("Fetched %d CRM records", len(records))
        return records

    async def aclose(self) -> None:
        await self._client.aclose()


class StaticRelationshipProvider:
    """Serves records from a JSON file (a list, or {"records": [...]})."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _load(self) -> list[dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ExternalProviderError(f"cannot read {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ValidationError(f"{self.path} is not valid JSON: {e}") from e
        if isinstance(data, dict):
            data = data.get("records") or []
        if not isinstance(data, list):
            raise ValidationError(f"{self.path}: expected a list of records")
        return data

    async def fetch_external_relationships(self, list_filter: str | None = None) -> list[dict[str, Any]]:
        records = await asyncio.to_thread(self._load)
        if list_filter:
            records = [r for r in records if list_filter in (r.get("lists") or [])]
        return records
