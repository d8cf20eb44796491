"""FastAPI server exposing the live-session API and the realtime socket."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quiz_live.constants.about import APP_NAME, APP_VERSION
from quiz_live.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, WEBSOCKET_PATH
from quiz_live.core.errors import (
    AuthorizationError,
    EvaluatorError,
    NotFoundError,
    PersistenceError,
    QuestionImportError,
    QuizLiveError,
    SessionStateError,
    ValidationError,
)
from quiz_live.core.models import ClassMeta, ClassRecord, QuestionBlock, QuestionDefinition
from quiz_live.core.question_importer import parse_blocks_text
from quiz_live.core.services.class_lifecycle import ClassLifecycleManager
from quiz_live.core.session_engine import SessionEngine
from quiz_live.server.message_router import MessageRouter
from quiz_live.server.schemas import (
    AnswerPayload,
    BlocksPayload,
    ChallengePayload,
    ClassCreatePayload,
    ClassUpdatePayload,
    EvaluatePayload,
    JumpPayload,
    ParticipantPayload,
    ResetScoresPayload,
    RevealPayload,
)
from quiz_live.server.websocket_connection import WebSocketConnection

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[QuizLiveError], int]] = [
    (ValidationError, 400),
    (QuestionImportError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (SessionStateError, 409),
    (EvaluatorError, 502),
    (PersistenceError, 500),
]


def _status_for(exc: QuizLiveError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _class_to_dict(record: ClassRecord) -> dict[str, Any]:
    return record.to_document()


def _pointer_to_dict(meta: ClassMeta) -> dict[str, Any]:
    return {
        "currentBlockIndex": meta.current_block_index,
        "currentQuestionIndex": meta.current_question_index,
        "finished": meta.finished,
        "askedQuestions": meta.asked_questions,
        "revealedQuestions": meta.revealed_questions,
        "blockCount": len(meta.blocks),
    }


def _get_engine_dependency(engine: SessionEngine):
    def dependency() -> SessionEngine:
        return engine

    return dependency


async def _serve_websocket(websocket: WebSocket, router: MessageRouter) -> None:
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    connection.start()
    router.open(connection)
    try:
        while True:
            raw = await websocket.receive_text()
            await router.handle_message(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await router.handle_close(connection)
        await connection.close()


def create_api_app(engine: SessionEngine, cors_origins: list[str] | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided session engine."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await engine.start()
        yield
        await engine.close()

    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    engine_dep = _get_engine_dependency(engine)
    router = MessageRouter(engine)

    @app.exception_handler(QuizLiveError)
    async def handle_engine_error(_request: Request, exc: QuizLiveError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=status, content={"ok": False, "error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(exc.errors())})

    @app.websocket(WEBSOCKET_PATH)
    async def realtime(websocket: WebSocket) -> None:
        await _serve_websocket(websocket, router)

    @app.websocket("/")
    async def realtime_root(websocket: WebSocket) -> None:
        await _serve_websocket(websocket, router)

    @app.get("/health")
    async def health(manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        return {
            "ok": True,
            "app": APP_NAME,
            "version": APP_VERSION,
            "connections": manager.registry.get_connection_count(),
        }

    # --- Classes ---

    @app.get("/api/classes")
    async def list_classes(
        active: bool | None = Query(default=None),
        manager: SessionEngine = Depends(engine_dep),
    ) -> list[dict[str, Any]]:
        return [_class_to_dict(record) for record in await manager.lifecycle.list_classes(active)]

    @app.post("/api/classes", status_code=201)
    async def create_class(
        payload: ClassCreatePayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        record = await manager.lifecycle.create_class(
            name=payload.name,
            teacher_name=payload.teacher_name,
            class_id=payload.id,
            active=payload.active,
        )
        return {"ok": True, "id": record.id, "class": _class_to_dict(record)}

    @app.get("/api/classes/{class_id}")
    async def get_class(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, Any]:
        return _class_to_dict(await manager.lifecycle.get_class(class_id))

    @app.patch("/api/classes/{class_id}")
    async def update_class(
        class_id: str,
        payload: ClassUpdatePayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, Any]:
        record = await manager.lifecycle.update_class(
            class_id,
            name=payload.name,
            teacher_name=payload.teacher_name,
            active=payload.active,
        )
        return _class_to_dict(record)

    @app.delete("/api/classes/{class_id}")
    async def delete_class(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        await manager.delete_class(class_id)
        return {"ok": True}

    @app.post("/api/classes/{class_id}/blocks")
    async def build_blocks(
        class_id: str,
        payload: BlocksPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        if payload.text:
            blocks = parse_blocks_text(payload.text).blocks
        elif payload.blocks:
            blocks = [QuestionBlock.from_document(block) for block in payload.blocks]
        else:
            raise ValidationError("Provide either blocks or text.")
        meta = await manager.build_blocks(class_id, blocks)
        return {"ok": True, "meta": _pointer_to_dict(meta)}

    @app.get("/api/classes/{class_id}/phase")
    async def get_phase(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        record = await manager.lifecycle.get_class(class_id)
        active = manager.board.get(class_id)
        phase = ClassLifecycleManager.derive_phase(record.meta, active is not None)
        return {
            "classId": class_id,
            "phase": phase.value,
            "activeQuestionId": active.question.id if active is not None else None,
            "meta": _pointer_to_dict(record.meta),
        }

    @app.post("/api/classes/{class_id}/launch")
    async def launch_next(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        active = await manager.launch_next(class_id)
        return {"ok": True, "question": active.public}

    @app.post("/api/classes/{class_id}/jump")
    async def jump_to_question(
        class_id: str,
        payload: JumpPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        active = await manager.jump_to_question(class_id, payload.block_index, payload.question_index)
        return {"ok": True, "question": active.public}

    @app.post("/api/classes/{class_id}/next-block")
    async def next_block(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        meta = await manager.next_block(class_id)
        return {"ok": True, "meta": _pointer_to_dict(meta)}

    @app.post("/api/classes/{class_id}/finish")
    async def finish(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        podium = await manager.finish(class_id)
        return {"ok": True, "podium": [participant.to_snapshot() for participant in podium]}

    @app.post("/api/classes/{class_id}/reset")
    async def reset_class(class_id: str, manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        meta = await manager.reset_class(class_id)
        return {"ok": True, "meta": _pointer_to_dict(meta)}

    # --- Participants ---

    @app.get("/api/participants")
    async def list_participants(
        class_id: str = Query(alias="classId", min_length=1),
        include_disconnected: bool = Query(default=False, alias="includeDisconnected"),
        manager: SessionEngine = Depends(engine_dep),
    ) -> list[dict[str, Any]]:
        participants = await manager.list_participants(class_id, include_disconnected)
        return [participant.to_snapshot() for participant in participants]

    @app.post("/api/participants")
    async def save_participant(
        payload: ParticipantPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        participant = await manager.save_participant(
            payload.class_id,
            payload.session_id,
            display_name=payload.display_name,
            connected=payload.connected,
            score=payload.score,
            score_delta=payload.score_delta,
        )
        if participant is None:
            return {"ok": True, "skipped": True}
        return {"ok": True, "participant": participant.to_snapshot()}

    @app.post("/api/participants/reset-scores")
    async def reset_scores(
        payload: ResetScoresPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        await manager.reset_scores(payload.class_id)
        return {"ok": True}

    # --- Challenges, answers and reveal ---

    @app.get("/api/challenges")
    async def list_challenges(
        class_id: str = Query(alias="classId", min_length=1),
        manager: SessionEngine = Depends(engine_dep),
    ) -> list[dict[str, Any]]:
        return await manager.lifecycle.list_challenges(class_id)

    @app.post("/api/challenges", status_code=201)
    async def launch_challenge(
        payload: ChallengePayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        active = await manager.launch_challenge(payload.model_dump(by_alias=True, exclude_none=True))
        return {"ok": True, "id": active.question.id, "question": active.public}

    @app.get("/api/answers")
    async def list_answers(
        class_id: str | None = Query(default=None, alias="classId"),
        question_id: str | None = Query(default=None, alias="questionId"),
        session_id: str | None = Query(default=None, alias="sessionId"),
        manager: SessionEngine = Depends(engine_dep),
    ) -> list[dict[str, Any]]:
        return await manager.list_answers(class_id, question_id, session_id)

    @app.post("/api/answers", status_code=201)
    async def submit_answer(
        payload: AnswerPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        record = await manager.submit_answer(
            payload.class_id,
            payload.session_id,
            payload.question_id,
            payload.answer,
            evaluation=payload.evaluation,
        )
        return {"ok": True, "answer": record.to_document()}

    @app.delete("/api/answers")
    async def delete_answers(
        class_id: str = Query(alias="classId", min_length=1),
        question_id: str | None = Query(default=None, alias="questionId"),
        session_id: str | None = Query(default=None, alias="sessionId"),
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        deleted = await manager.delete_answers(class_id, question_id, session_id)
        return {"ok": True, "deleted": deleted}

    @app.post("/api/questions/{question_id}/reveal")
    async def reveal_question(
        question_id: str,
        payload: RevealPayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        outcome = await manager.reveal(
            payload.class_id,
            question_id,
            payload.correct_answer,
            points=payload.points,
        )
        return outcome.to_response()

    @app.post("/api/evaluate")
    async def evaluate(
        payload: EvaluatePayload,
        manager: SessionEngine = Depends(engine_dep),
    ) -> dict[str, object]:
        document = {"id": "evaluate", "evaluation": "open", **payload.question}
        result = await manager.evaluate(QuestionDefinition.from_document(document), payload.answer)
        return {"ok": True, "score": result.score, "feedback": result.feedback}

    @app.get("/api/debug/dbstats")
    async def db_stats(manager: SessionEngine = Depends(engine_dep)) -> dict[str, object]:
        return {"ok": True, "collections": await manager.collection_counts()}

    return app


def run_api_server(
    engine: SessionEngine,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    cors_origins: list[str] | None = None,
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(engine, cors_origins=cors_origins)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()
