from __future__ import annotations

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter


def default_timeout(read_s: float = 60.0) -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=read_s, write=20.0, pool=10.0)


def default_limits() -> httpx.Limits:
    return httpx.Limits(max_connections=100, max_keepalive_connections=20)


class HttpClientFactory:
    """Creates shared httpx clients with sane defaults.

    Keep one client per provider instance; do not create per-request.
    """

    @staticmethod
    def client(
        base_url: str | None = None,
        headers: dict | None = None,
        *,
        read_timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url or "",
            headers=headers,
            timeout=default_timeout(read_timeout_s),
            limits=default_limits(),
            follow_redirects=True,
            transport=transport,
        )


class RetryableStatusError(httpx.HTTPStatusError):
    """429 or 5xx response; worth another attempt."""


def raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code == 429 or resp.status_code >= 500:
        raise RetryableStatusError(
            f"{resp.status_code} from {resp.request.url}", request=resp.request, response=resp
        )
    resp.raise_for_status()


TransientHttpError = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    RetryableStatusError,
)


def transient_retry(attempts: int = 5, initial_wait: float = 0.5):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=initial_wait, max=10.0, jitter=initial_wait),
        retry=retry_if_exception_type(TransientHttpError),
    )


def bearer(api_key: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}
