"""Adapter giving a FastAPI WebSocket the registry's non-blocking send."""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket

from quiz_live.constants.network_constants import OUTBOUND_QUEUE_SIZE
from quiz_live.core.errors import BroadcastError

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Queues outbound frames and writes them from a dedicated task.

    ``send`` never awaits, so one slow client cannot hold up a fan-out to the
    rest of the class. A full queue or a dead socket surfaces as
    :class:`BroadcastError`.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = OUTBOUND_QUEUE_SIZE) -> None:
        self.websocket = websocket
        self.role: str | None = None
        self.session_id: str | None = None
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task[None] | None = None
        self._closed = False

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def send(self, raw: str) -> None:
        if self._closed:
            raise BroadcastError("Connection is closed.")
        try:
            self._queue.put_nowait(raw)
        except asyncio.QueueFull as exc:
            raise BroadcastError("Outbound queue is full.") from exc

    async def _drain(self) -> None:
        while True:
            raw = await self._queue.get()
            if raw is None:
                return
            try:
                await self.websocket.send_text(raw)
            except Exception as exc:
                logger.debug("Writer for %r stopped: %s", self, exc)
                self._closed = True
                return

    async def close(self) -> None:
        self._closed = True
        if self._writer is None:
            return
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass

    def __repr__(self) -> str:
        return f"WebSocketConnection(role={self.role!r}, session_id={self.session_id!r})"
