import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from .config import settings

_DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
_thesportsdb_client: httpx.AsyncClient | None = None
_thesportsdb_base: str | None = None


def _http_limits() -> httpx.Limits:
    return httpx.Limits(max_connections=10, max_keepalive_connections=5)


def thesportsdb_client() -> httpx.AsyncClient:
    global _thesportsdb_client, _thesportsdb_base
    base = settings.thesportsdb_url
    if _thesportsdb_client is None or _thesportsdb_client.is_closed or _thesportsdb_base != base:
        _thesportsdb_base = base
        _thesportsdb_client = httpx.AsyncClient(
            base_url=base,
            timeout=httpx.Timeout(settings.thesportsdb_timeout_seconds),
            limits=_http_limits(),
            follow_redirects=True,
        )
    return _thesportsdb_client


async def init_http_clients() -> None:
    thesportsdb_client()


async def close_http_clients() -> None:
    global _thesportsdb_client, _thesportsdb_base
    if _thesportsdb_client is not None and not _thesportsdb_client.is_closed:
        await _thesportsdb_client.aclose()
    _thesportsdb_client = None
    _thesportsdb_base = None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
    except Exception:
        return None


def _backoff_delay(attempt: int, base: float, cap: float, retry_after: float | None) -> float:
    delay = min(cap, base * (2 ** attempt))
    if retry_after is not None:
        delay = max(delay, retry_after)
    return delay


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict | None = None,
    retries: int = 3,
    backoff_base: float = 0.5,
    backoff_max: float = 8.0,
    retry_statuses: set[int] | None = None,
    retry_exceptions: tuple[type[BaseException], ...] = (httpx.RequestError,),
    before_request=None,
    _sleep=asyncio.sleep,
    **kwargs,
) -> httpx.Response:
    statuses = retry_statuses or _DEFAULT_RETRY_STATUSES
    for attempt in range(retries + 1):
        if before_request is not None:
            await before_request()
        try:
            response = await client.request(method, url, params=params, **kwargs)
        except retry_exceptions:
            if attempt >= retries:
                raise
            await _sleep(_backoff_delay(attempt, backoff_base, backoff_max, None))
            continue

        if response.status_code in statuses:
            if attempt >= retries:
                return response
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            await response.aclose()
            await _sleep(_backoff_delay(attempt, backoff_base, backoff_max, retry_after))
            continue
        return response

    raise RuntimeError("request_with_retries: exhausted retries")
