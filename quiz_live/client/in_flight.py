"""Collapse concurrent identical calls into one shared result."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable


class InFlightRequests:
    """Map of request key to the task currently serving it.

    A second caller with the same key while the first is still pending awaits
    the same task instead of issuing another request. The entry disappears as
    soon as the task finishes, successfully or not.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[Any]] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        future = self._pending.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._pending[key] = future
            future.add_done_callback(lambda _done: self._pending.pop(key, None))
        return await asyncio.shield(future)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)


def submission_key(class_id: str, session_id: str, question_id: str, evaluated: bool = False) -> str:
    key = f"{class_id}:{session_id}:{question_id}"
    return f"{key}:eval" if evaluated else key
