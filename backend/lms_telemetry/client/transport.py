from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Mapping, Protocol

import httpx

_log = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = httpx.Timeout(15.0, connect=5.0)
_BEACON_TIMEOUT = httpx.Timeout(5.0, connect=2.0)
_DEFAULT_HEADERS: Mapping[str, str] = {
    'User-Agent': 'lms-telemetry-collector/1.0',
}


class TransportError(Exception):
    """A send did not reach the server or was not accepted (non-2xx)."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Transport(Protocol):
    supports_beacon: bool

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any: ...

    def send_beacon(self, path: str, payload: Mapping[str, Any]) -> None: ...


def _coerce_timeout(value: httpx.Timeout | float | int | None) -> httpx.Timeout:
    if isinstance(value, httpx.Timeout):
        return value
    if isinstance(value, (int, float)):
        return httpx.Timeout(value)
    return _DEFAULT_TIMEOUT


class HttpTransport:
    """JSON POSTs to the telemetry API over a lazily created ``httpx.AsyncClient``.

    ``send_beacon`` is the unload path: it hands the payload to a daemon
    thread and returns at once. Nothing reports whether that request
    arrived, and the caller must not treat the events as delivered or
    undelivered.
    """

    supports_beacon = True

    def __init__(
        self,
        base_url: str,
        *,
        timeout: httpx.Timeout | float | int | None = None,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError('base_url is required')
        self._base_url = base_url.rstrip('/')
        self._timeout = _coerce_timeout(timeout)
        merged = dict(_DEFAULT_HEADERS)
        if headers:
            merged.update(headers)
        self._headers = merged
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return self._base_url

    @staticmethod
    def _normalize_path(path: str) -> str:
        if not path:
            return '/'
        if path.startswith('http://') or path.startswith('https://'):
            return path
        if path.startswith('/'):
            return path
        return f'/{path}'

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        base_url=self._base_url,
                        timeout=self._timeout,
                        headers=self._headers,
                    )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.post(self._normalize_path(path), json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f'{type(exc).__name__}: {exc}') from exc
        if response.status_code >= 300:
            raise TransportError(f'HTTP {response.status_code} from {path}', status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f'invalid JSON from {path}') from exc

    def send_beacon(self, path: str, payload: Mapping[str, Any]) -> None:
        url = self._base_url + self._normalize_path(path)
        thread = threading.Thread(
            target=self._beacon_worker,
            args=(url, dict(payload)),
            name='telemetry-beacon',
            daemon=True,
        )
        thread.start()

    def _beacon_worker(self, url: str, payload: dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=_BEACON_TIMEOUT, headers=self._headers) as client:
                client.post(url, json=payload)
        except httpx.HTTPError as exc:
            # no one is waiting on a beacon; there is nowhere to report this
            _log.debug('beacon to %s failed: %s', url, exc)
