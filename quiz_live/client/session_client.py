"""Async HTTP client for the QuizLive request/response surface."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from quiz_live.constants.network_constants import DEFAULT_PORT
from quiz_live.constants.protocol_constants import MSG_REVEAL
from quiz_live.core.errors import (
    AuthorizationError,
    EvaluatorError,
    NotFoundError,
    PersistenceError,
    QuizLiveError,
    SessionStateError,
    ValidationError,
)
from quiz_live.client.in_flight import InFlightRequests, submission_key

logger = logging.getLogger(__name__)

_ERROR_BY_STATUS: dict[int, type[QuizLiveError]] = {
    400: ValidationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: SessionStateError,
    502: EvaluatorError,
}


class RealtimeChannel(Protocol):
    """Whatever carries JSON messages over the persistent connection."""

    async def send_json(self, payload: dict[str, Any]) -> None: ...


class SessionClient:
    """Calls the server API and suppresses duplicate answer submissions.

    ``realtime`` is optional; when present, teacher reveals go over it first
    and fall back to HTTP if sending fails.
    """

    def __init__(
        self,
        base_url: str = f"http://127.0.0.1:{DEFAULT_PORT}",
        *,
        http: httpx.AsyncClient | None = None,
        realtime: RealtimeChannel | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http if http is not None else httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._realtime = realtime
        self._in_flight = InFlightRequests()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._http.request(method, path, json=json, params=params)
        if response.status_code >= 400:
            try:
                message = response.json().get("error", response.text)
            except ValueError:
                message = response.text
            error_type = _ERROR_BY_STATUS.get(response.status_code, PersistenceError)
            raise error_type(message)
        return response.json()

    # --- Student calls ---

    async def submit_answer(
        self,
        class_id: str,
        session_id: str,
        question_id: str,
        answer: Any,
        evaluation: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "classId": class_id,
            "sessionId": session_id,
            "questionId": question_id,
            "answer": answer,
        }
        if evaluation is not None:
            body["evaluation"] = evaluation
        key = submission_key(class_id, session_id, question_id, evaluated=evaluation is not None)
        return await self._in_flight.run(key, lambda: self._request("POST", "/api/answers", json=body))

    async def save_participant(self, class_id: str, session_id: str, **fields: Any) -> dict[str, Any]:
        body = {"classId": class_id, "sessionId": session_id}
        body.update(_camel_fields(fields))
        return await self._request("POST", "/api/participants", json=body)

    # --- Teacher calls ---

    async def reveal(
        self,
        class_id: str,
        question_id: str,
        correct_answer: Any = None,
        points: int | None = None,
    ) -> dict[str, Any] | None:
        """Settle a question.

        Returns ``None`` when the request went over the realtime channel (the
        results then arrive as a ``question-results`` broadcast), otherwise
        the HTTP reveal response.
        """
        body: dict[str, Any] = {"classId": class_id}
        if correct_answer is not None:
            body["correctAnswer"] = correct_answer
        if points is not None:
            body["points"] = points

        if self._realtime is not None:
            try:
                await self._realtime.send_json({"type": MSG_REVEAL, "questionId": question_id, **body})
                return None
            except Exception:
                logger.warning("Realtime reveal of %s failed; using HTTP", question_id, exc_info=True)
        return await self._request("POST", f"/api/questions/{question_id}/reveal", json=body)

    async def create_class(self, name: str = "", teacher_name: str = "", class_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "teacherName": teacher_name}
        if class_id:
            body["id"] = class_id
        return await self._request("POST", "/api/classes", json=body)

    async def build_blocks(self, class_id: str, *, text: str | None = None, blocks: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        return await self._request("POST", f"/api/classes/{class_id}/blocks", json={"text": text, "blocks": blocks})

    async def launch_next(self, class_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/classes/{class_id}/launch")

    async def finish(self, class_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/classes/{class_id}/finish")

    async def reset_class(self, class_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/classes/{class_id}/reset")

    async def reset_scores(self, class_id: str) -> dict[str, Any]:
        return await self._request("POST", "/api/participants/reset-scores", json={"classId": class_id})

    async def list_participants(self, class_id: str, include_disconnected: bool = False) -> list[dict[str, Any]]:
        params = {"classId": class_id, "includeDisconnected": str(include_disconnected).lower()}
        return await self._request("GET", "/api/participants", params=params)

    async def list_challenges(self, class_id: str) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/challenges", params={"classId": class_id})


def _camel_fields(fields: dict[str, Any]) -> dict[str, Any]:
    camel: dict[str, Any] = {}
    for name, value in fields.items():
        if value is None:
            continue
        head, *rest = name.split("_")
        camel[head + "".join(part.capitalize() for part in rest)] = value
    return camel
