# -*- coding: utf-8 -*-
"""HTTP transport for the remote generation service."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict

import httpx

from ..config import settings
from .errors import TransportError


def _headers(api_key: str | None) -> Dict[str, str]:
    headers = {
        "Accept": "text/event-stream, application/json",
        "Content-Type": "application/json",
    }
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _extract_error(raw: bytes) -> str:
    if not raw:
        return ""
    text = raw.decode("utf-8", errors="ignore").strip()
    try:
        payload = json.loads(text)
    except ValueError:
        return text[:200]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message") or err.get("detail")
            if isinstance(msg, str):
                return msg
        for name in ("error", "message", "detail"):
            value = payload.get(name)
            if isinstance(value, str):
                return value
    return text[:200]


class GenerationStream:
    """An open streaming response; ``aclose`` releases both response and client."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response) -> None:
        self._client = client
        self._response = response

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"Generation stream interrupted: {exc}") from exc

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class GenerationClient:
    """Opens generation requests against ``<base_url>/<endpoint>``."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.generation_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.generation_api_key
        self._transport = transport
        connect = settings.connect_timeout if connect_timeout is None else connect_timeout
        read = settings.stream_read_timeout if read_timeout is None else read_timeout
        self._timeout = httpx.Timeout(read, connect=connect)

    async def open_stream(self, endpoint: str, body: Dict[str, Any]) -> GenerationStream:
        """Send the request and return once response headers arrived.

        Any failure here means the request never opened and raises
        ``TransportError``.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True, transport=self._transport)
        try:
            req = client.build_request("POST", url, headers=_headers(self.api_key), json=body)
            resp = await client.send(req, stream=True)
        except httpx.InvalidURL as exc:
            await client.aclose()
            raise TransportError(f"Invalid generation service URL {url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            await client.aclose()
            raise TransportError(f"Generation request failed: {exc}") from exc
        except asyncio.CancelledError:
            await client.aclose()
            raise

        if resp.status_code >= 400:
            raw = b""
            try:
                raw = await resp.aread()
            except httpx.HTTPError:
                raw = b""
            finally:
                try:
                    await resp.aclose()
                finally:
                    await client.aclose()
            detail = f"Generation service error: {resp.status_code}"
            err_msg = _extract_error(raw)
            if err_msg:
                detail = f"{detail} - {err_msg}"
            raise TransportError(detail, status_code=resp.status_code)

        return GenerationStream(client, resp)
