"""Service tracking participant presence with throttled heartbeats."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from quiz_live.constants.protocol_constants import (
    EVT_PARTICIPANT_DISCONNECTED,
    EVT_PARTICIPANT_HEARTBEAT,
    EVT_PARTICIPANTS_UPDATED,
)
from quiz_live.constants.session_constants import (
    PARTICIPANT_MIN_BROADCAST_MS,
    PARTICIPANT_MIN_PERSIST_MS,
)
from quiz_live.core.models import Clock, Participant, default_display_name, utc_now
from quiz_live.core.storage.repositories import ParticipantsRepository

logger = logging.getLogger(__name__)

Publisher = Callable[[dict[str, Any], str | None], int]


def throttle_key(class_id: str, session_id: str) -> str:
    return f"{class_id}:{session_id}"


class PresenceTracker:
    """Connect/disconnect state plus two independent heartbeat throttles.

    ``last_persist`` limits how often a heartbeat writes ``lastSeen`` to storage
    and ``last_broadcast`` limits how often a heartbeat event is published. Both
    maps are keyed by ``classId:sessionId`` and may be supplied by the caller.
    """

    def __init__(
        self,
        participants: ParticipantsRepository,
        publish: Publisher,
        *,
        min_persist_ms: int = PARTICIPANT_MIN_PERSIST_MS,
        min_broadcast_ms: int = PARTICIPANT_MIN_BROADCAST_MS,
        clock: Clock = utc_now,
        last_persist: dict[str, datetime] | None = None,
        last_broadcast: dict[str, datetime] | None = None,
    ) -> None:
        self._participants = participants
        self._publish = publish
        self._min_persist = timedelta(milliseconds=min_persist_ms)
        self._min_broadcast = timedelta(milliseconds=min_broadcast_ms)
        self._clock = clock
        self._last_persist = last_persist if last_persist is not None else {}
        self._last_broadcast = last_broadcast if last_broadcast is not None else {}

    async def list_participants(self, class_id: str, include_disconnected: bool = False) -> list[Participant]:
        return await self._participants.list_for_class(class_id, include_disconnected)

    async def broadcast_participants(self, class_id: str, include_disconnected: bool = False) -> None:
        """Publish a refreshed participant list; failures are only logged."""
        try:
            participants = await self._participants.list_for_class(class_id, include_disconnected)
            self._publish(
                {
                    "type": EVT_PARTICIPANTS_UPDATED,
                    "classId": class_id,
                    "participants": [p.to_snapshot() for p in participants],
                },
                class_id,
            )
        except Exception:
            logger.warning("Could not broadcast participants for class %s", class_id, exc_info=True)

    async def handle_subscribe(
        self,
        class_id: str,
        session_id: str,
        display_name: str | None = None,
    ) -> Participant:
        previous = await self._participants.get(class_id, session_id)
        if display_name:
            name = str(display_name)
        elif previous is not None and previous.display_name:
            name = previous.display_name
        else:
            name = default_display_name(session_id)
        participant = await self._participants.upsert(
            class_id,
            session_id,
            display_name=name,
            connected=True,
            last_seen=self._clock(),
        )
        await self.broadcast_participants(class_id)
        return participant

    async def handle_ping(self, class_id: str, session_id: str) -> None:
        key = throttle_key(class_id, session_id)
        now = self._clock()
        previous = await self._participants.get(class_id, session_id)
        display_name = (
            previous.display_name if previous is not None and previous.display_name
            else default_display_name(session_id)
        )

        if previous is None or not previous.connected:
            await self._participants.upsert(
                class_id,
                session_id,
                display_name=display_name,
                connected=True,
                last_seen=now,
            )
            self._last_persist[key] = now
            await self.broadcast_participants(class_id)
        elif self._elapsed(self._last_persist, key, now) >= self._min_persist:
            try:
                await self._participants.upsert(class_id, session_id, connected=True, last_seen=now)
                self._last_persist[key] = now
            except Exception:
                logger.warning("Heartbeat persist failed for %s", key, exc_info=True)

        if self._elapsed(self._last_broadcast, key, now) >= self._min_broadcast:
            self._last_broadcast[key] = now
            try:
                self._publish(
                    {
                        "type": EVT_PARTICIPANT_HEARTBEAT,
                        "classId": class_id,
                        "sessionId": session_id,
                        "displayName": display_name,
                        "lastSeen": now,
                        "connected": True,
                    },
                    class_id,
                )
            except Exception:
                logger.warning("Heartbeat broadcast failed for %s", key, exc_info=True)

    async def save_participant(
        self,
        class_id: str,
        session_id: str,
        *,
        display_name: str | None = None,
        connected: bool | None = None,
        score: int | None = None,
        score_delta: int | None = None,
    ) -> Participant | None:
        """Generic participant update; returns ``None`` when throttled.

        Score changes are always written immediately. Other updates inside the
        persist window are skipped.
        """
        key = throttle_key(class_id, session_id)
        now = self._clock()
        is_score_op = score is not None or score_delta is not None
        if not is_score_op and self._elapsed(self._last_persist, key, now) < self._min_persist:
            return None

        if score_delta is not None:
            participant = await self._participants.increment_score(class_id, session_id, int(score_delta), now)
            if participant.score < 0:
                participant = await self._participants.upsert(class_id, session_id, score=0)
            if display_name is not None or connected is not None:
                participant = await self._participants.upsert(
                    class_id, session_id, display_name=display_name, connected=connected
                )
        else:
            participant = await self._participants.upsert(
                class_id,
                session_id,
                display_name=display_name,
                connected=connected,
                score=score,
                last_seen=now,
            )
        self._last_persist[key] = now
        await self.broadcast_participants(class_id)
        return participant

    async def reset_scores(self, class_id: str) -> int:
        reset = await self._participants.reset_scores(class_id)
        await self.broadcast_participants(class_id, include_disconnected=True)
        return reset

    async def handle_disconnect(self, class_id: str, session_id: str) -> None:
        key = throttle_key(class_id, session_id)
        try:
            await self._participants.mark_disconnected(class_id, session_id, self._clock())
            try:
                self._publish(
                    {"type": EVT_PARTICIPANT_DISCONNECTED, "classId": class_id, "sessionId": session_id},
                    class_id,
                )
            except Exception:
                logger.warning("Disconnect broadcast failed for %s", key, exc_info=True)
            await self.broadcast_participants(class_id)
        finally:
            self._last_persist.pop(key, None)
            self._last_broadcast.pop(key, None)

    def prune_throttle_entries(self, max_age: timedelta) -> int:
        """Drop throttle entries not touched within ``max_age``."""
        cutoff = self._clock() - max_age
        removed = 0
        for entries in (self._last_persist, self._last_broadcast):
            stale = [key for key, seen in entries.items() if seen < cutoff]
            for key in stale:
                del entries[key]
            removed += len(stale)
        if removed:
            logger.debug("Pruned %d stale throttle entries", removed)
        return removed

    def get_throttle_keys(self) -> set[str]:
        return set(self._last_persist) | set(self._last_broadcast)

    @staticmethod
    def _elapsed(entries: dict[str, datetime], key: str, now: datetime) -> timedelta:
        last = entries.get(key)
        if last is None:
            return timedelta.max
        return now - last
