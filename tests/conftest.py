"""Shared fakes for the engine tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from quiz_live.core.errors import BroadcastError, EvaluatorError
from quiz_live.core.models import EvaluationResult, QuestionDefinition
from quiz_live.core.session_engine import SessionEngine
from quiz_live.core.storage.document_store import InMemoryDocumentStore

START = datetime(2024, 5, 6, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingConnection:
    def __init__(self, name: str = "conn") -> None:
        self.name = name
        self.role: str | None = None
        self.session_id: str | None = None
        self.frames: list[dict[str, Any]] = []

    def send(self, raw: str) -> None:
        self.frames.append(json.loads(raw))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.frames if frame.get("type") == event_type]

    def __repr__(self) -> str:
        return f"RecordingConnection({self.name})"


class FailingConnection(RecordingConnection):
    def send(self, raw: str) -> None:
        raise BroadcastError("socket gone")


class ScriptedEvaluator:
    """Returns the same verdict for every answer and remembers the calls."""

    def __init__(self, score: float, feedback: str = "ok") -> None:
        self.score = score
        self.feedback = feedback
        self.calls: list[tuple[str, Any]] = []

    async def evaluate(self, question: QuestionDefinition, answer: Any) -> EvaluationResult:
        self.calls.append((question.id, answer))
        return EvaluationResult(score=self.score, feedback=self.feedback)


class FailingEvaluator:
    async def evaluate(self, question: QuestionDefinition, answer: Any) -> EvaluationResult:
        raise EvaluatorError("judge offline")


class RecordingPublisher:
    """Stand-in for ``ConnectionRegistry.publish``."""

    def __init__(self) -> None:
        self.events: list[tuple[dict[str, Any], str | None]] = []

    def __call__(self, payload: dict[str, Any], class_id: str | None = None) -> int:
        self.events.append((payload, class_id))
        return 1

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload, _ in self.events if payload.get("type") == event_type]


def make_engine(clock: FakeClock, evaluator: Any = None, **options: Any) -> SessionEngine:
    return SessionEngine(InMemoryDocumentStore(), evaluator, clock=clock, **options)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> SessionEngine:
    return make_engine(clock)
