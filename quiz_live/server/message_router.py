"""Dispatch of inbound realtime messages to the session engine."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from quiz_live.constants.protocol_constants import (
    EVT_ERROR,
    EVT_QUESTION_LAUNCHED,
    EVT_SUBSCRIBED,
    FORBIDDEN_MESSAGE,
    MSG_ANSWER,
    MSG_PING,
    MSG_REVEAL,
    MSG_SUBSCRIBE,
    MSG_UNSUBSCRIBE,
    ROLE_STUDENT,
    ROLE_TEACHER,
)
from quiz_live.core.errors import AuthorizationError, ValidationError
from quiz_live.core.session_engine import SessionEngine
from quiz_live.core.wire import decode_message, encode_message
from quiz_live.server.schemas import (
    AnswerMessage,
    PingMessage,
    RevealMessage,
    SubscribeMessage,
    UnsubscribeMessage,
)

logger = logging.getLogger(__name__)


class MessageRouter:
    """Parses one message at a time per connection and hands it to the engine.

    Connections are the objects held by the registry; the router also reads and
    sets their ``role`` and ``session_id`` attributes.
    """

    def __init__(self, engine: SessionEngine) -> None:
        self._engine = engine
        self._handlers: dict[str, Callable[[Any, dict[str, Any]], Awaitable[None]]] = {
            MSG_SUBSCRIBE: self._handle_subscribe,
            MSG_UNSUBSCRIBE: self._handle_unsubscribe,
            MSG_PING: self._handle_ping,
            MSG_ANSWER: self._handle_answer,
            MSG_REVEAL: self._handle_reveal,
        }

    def open(self, connection: Any) -> None:
        self._engine.registry.register(connection)

    async def handle_message(self, connection: Any, raw: str | bytes) -> None:
        data = decode_message(raw)
        if data is None:
            logger.debug("Dropping malformed frame from %r", connection)
            return
        handler = self._handlers.get(data.get("type"))
        if handler is None:
            logger.debug("Dropping unknown message type %r", data.get("type"))
            return
        try:
            await handler(connection, data)
        except (PydanticValidationError, ValidationError) as exc:
            logger.debug("Dropping invalid %s message: %s", data.get("type"), exc)
        except AuthorizationError:
            self._reply(connection, {"type": EVT_ERROR, "message": FORBIDDEN_MESSAGE})
        except Exception as exc:
            logger.warning("Handling %s failed", data.get("type"), exc_info=True)
            self._reply(connection, {"type": EVT_ERROR, "message": str(exc)})

    async def handle_close(self, connection: Any) -> None:
        """Forget a connection and mark its participant disconnected everywhere."""
        class_ids = self._engine.registry.unregister(connection)
        session_id = getattr(connection, "session_id", None)
        if not session_id or getattr(connection, "role", None) != ROLE_STUDENT:
            return
        for class_id in class_ids:
            try:
                await self._engine.presence.handle_disconnect(class_id, session_id)
            except Exception:
                logger.warning("Disconnect of %s from %s failed", session_id, class_id, exc_info=True)

    async def _handle_subscribe(self, connection: Any, data: dict[str, Any]) -> None:
        message = SubscribeMessage.model_validate(data)
        self._engine.registry.subscribe(connection, message.class_id)
        connection.role = message.role
        if message.session_id:
            connection.session_id = message.session_id

        is_student = message.role == ROLE_STUDENT
        if is_student and message.session_id:
            await self._engine.presence.handle_subscribe(
                message.class_id, message.session_id, message.display_name
            )
        self._reply(connection, {"type": EVT_SUBSCRIBED, "classId": message.class_id, "role": message.role})

        active = self._engine.board.get(message.class_id)
        if is_student and active is not None:
            self._reply(
                connection,
                {
                    "type": EVT_QUESTION_LAUNCHED,
                    "classId": message.class_id,
                    "question": active.catch_up_payload(self._engine.clock()),
                },
            )

    async def _handle_unsubscribe(self, connection: Any, data: dict[str, Any]) -> None:
        message = UnsubscribeMessage.model_validate(data)
        self._engine.registry.unsubscribe(connection, message.class_id)
        session_id = message.session_id or getattr(connection, "session_id", None)
        if session_id and getattr(connection, "role", None) != ROLE_TEACHER:
            await self._engine.presence.handle_disconnect(message.class_id, session_id)

    async def _handle_ping(self, connection: Any, data: dict[str, Any]) -> None:
        message = PingMessage.model_validate(data)
        await self._engine.presence.handle_ping(message.class_id, message.session_id)

    async def _handle_answer(self, connection: Any, data: dict[str, Any]) -> None:
        message = AnswerMessage.model_validate(data)
        await self._engine.submit_answer(
            message.class_id,
            message.session_id,
            message.question_id,
            message.answer,
            evaluation=message.evaluation,
        )

    async def _handle_reveal(self, connection: Any, data: dict[str, Any]) -> None:
        if getattr(connection, "role", None) != ROLE_TEACHER:
            raise AuthorizationError("Only teachers can reveal questions.")
        message = RevealMessage.model_validate(data)
        await self._engine.reveal(
            message.class_id,
            message.question_id,
            message.correct_answer,
            points=message.points,
        )

    @staticmethod
    def _reply(connection: Any, payload: dict[str, Any]) -> None:
        try:
            connection.send(encode_message(payload))
        except Exception:
            logger.warning("Reply %s to %r failed", payload.get("type"), connection, exc_info=True)
