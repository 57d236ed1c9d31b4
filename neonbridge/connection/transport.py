"""Message transport to the remote controller."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
import json
import logging
from typing import Any, Protocol

import aiohttp

from neonbridge.connection.exceptions import TransportError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0
NORMAL_CLOSURE = 1000


class Transport(Protocol):
    """Message-based duplex channel owned by the connection manager."""

    @property
    def closed(self) -> bool:
        """True once the channel can no longer send."""

    @property
    def close_code(self) -> int | None:
        """Close code reported by the remote side, if any."""

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send one JSON message."""

    def messages(self) -> AsyncIterator[str]:
        """Yield inbound text messages until the channel closes."""

    async def close(self, *, code: int = NORMAL_CLOSURE, message: str = "") -> None:
        """Close the channel."""


class WebSocketTransport:
    """aiohttp WebSocket client connection."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    @property
    def close_code(self) -> int | None:
        return self._ws.close_code

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._ws.closed:
            raise TransportError("WebSocket is closed")
        try:
            await self._ws.send_str(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as error:
            raise TransportError(f"send failed: {error}") from error

    async def messages(self) -> AsyncIterator[str]:
        async for message in self._ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                yield message.data
            elif message.type == aiohttp.WSMsgType.BINARY:
                yield message.data.decode("utf-8", errors="replace")
            elif message.type == aiohttp.WSMsgType.ERROR:
                logger.warning("WebSocket error: %s", self._ws.exception())
                break

    async def close(self, *, code: int = NORMAL_CLOSURE, message: str = "") -> None:
        try:
            await self._ws.close(code=code, message=message.encode("utf-8"))
        finally:
            await self._session.close()


async def open_websocket(
    url: str,
    headers: Mapping[str, str],
    *,
    timeout: float = CONNECT_TIMEOUT_SECONDS,
) -> WebSocketTransport:
    """Open the agent WebSocket, raising :class:`TransportError` on failure."""
    session = aiohttp.ClientSession()
    try:
        ws = await asyncio.wait_for(session.ws_connect(url, headers=dict(headers)), timeout=timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as error:
        await session.close()
        detail = str(error) or type(error).__name__
        raise TransportError(f"connect to {url} failed: {detail}") from error
    except BaseException:
        await session.close()
        raise
    return WebSocketTransport(session, ws)
