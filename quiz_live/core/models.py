"""Domain models for the live session engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Union

from quiz_live.constants.session_constants import (
    DEFAULT_DISPLAY_NAME_PREFIX,
    DEFAULT_DURATION_SECONDS,
    DEFAULT_POINTS,
    DISPLAY_NAME_SESSION_CHARS,
)
from quiz_live.core.errors import ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_display_name(session_id: str) -> str:
    return f"{DEFAULT_DISPLAY_NAME_PREFIX}{str(session_id)[:DISPLAY_NAME_SESSION_CHARS]}"


def participant_id(class_id: str, session_id: str) -> str:
    return f"{class_id}:{session_id}"


def answer_id(class_id: str, session_id: str, question_id: str) -> str:
    return f"{class_id}:{session_id}:{question_id}"


def challenge_id(class_id: str, question_id: str) -> str:
    prefix = f"{class_id}:"
    return question_id if question_id.startswith(prefix) else prefix + question_id


class EvaluationMode(str, Enum):
    """How answers to a question are scored."""

    MCQ = "mcq"
    REDFLAGS = "redflags"
    OPEN = "open"


@dataclass(slots=True, frozen=True)
class McqScoring:
    """Single correct option, matched by string equality."""

    correct_answer: str | None = None
    mode = EvaluationMode.MCQ

    def authored_answer(self) -> Any:
        return self.correct_answer


@dataclass(slots=True, frozen=True)
class RedFlagsScoring:
    """Set of expected tokens; credit is the overlap fraction."""

    expected_flags: tuple[str, ...] = ()
    mode = EvaluationMode.REDFLAGS

    def authored_answer(self) -> Any:
        return list(self.expected_flags) if self.expected_flags else None


@dataclass(slots=True, frozen=True)
class OpenPromptScoring:
    """Free text judged by the external evaluator.

    ``kind`` is ``"open"`` for ordinary free-text answers and ``"prompt"`` when
    the student is writing or improving a prompt.
    """

    kind: str = "open"
    rubric: str | None = None
    mode = EvaluationMode.OPEN

    def authored_answer(self) -> Any:
        return None


ScoringRule = Union[McqScoring, RedFlagsScoring, OpenPromptScoring]


def _scoring_from_document(doc: dict[str, Any]) -> ScoringRule:
    payload = doc.get("payload") or {}
    raw_mode = doc.get("evaluation") or payload.get("evaluation") or EvaluationMode.MCQ.value
    correct = doc.get("correctAnswer", payload.get("correctAnswer"))
    if raw_mode == EvaluationMode.MCQ.value:
        return McqScoring(correct_answer=None if correct is None else str(correct))
    if raw_mode == EvaluationMode.REDFLAGS.value:
        flags = doc.get("expectedFlags", correct) or []
        if not isinstance(flags, (list, tuple)):
            raise ValidationError("Red-flag questions need a list of expected flags.")
        return RedFlagsScoring(expected_flags=tuple(str(flag) for flag in flags))
    if raw_mode in (EvaluationMode.OPEN.value, "prompt"):
        kind = doc.get("promptKind") or ("prompt" if raw_mode == "prompt" else "open")
        return OpenPromptScoring(kind=kind, rubric=doc.get("rubric"))
    raise ValidationError(f"Unknown evaluation mode '{raw_mode}'.")


@dataclass(slots=True)
class QuestionDefinition:
    """An authored question with its scoring rule resolved."""

    id: str
    title: str
    scoring: ScoringRule
    options: list[str] = field(default_factory=list)
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    points: int = DEFAULT_POINTS
    time_decay: bool = True
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def mode(self) -> EvaluationMode:
        return self.scoring.mode

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "options": list(self.options),
            "duration": self.duration_seconds,
            "points": self.points,
            "timeDecay": self.time_decay,
            "evaluation": self.mode.value,
            "payload": dict(self.extras),
        }
        if isinstance(self.scoring, McqScoring):
            doc["correctAnswer"] = self.scoring.correct_answer
        elif isinstance(self.scoring, RedFlagsScoring):
            doc["expectedFlags"] = list(self.scoring.expected_flags)
        else:
            doc["promptKind"] = self.scoring.kind
            doc["rubric"] = self.scoring.rubric
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "QuestionDefinition":
        if not doc.get("id"):
            raise ValidationError("Question id is required.")
        title = str(doc.get("title") or "").strip()
        if not title:
            raise ValidationError("Question title must not be empty.")
        payload = dict(doc.get("payload") or {})
        payload.pop("correctAnswer", None)
        duration = doc.get("duration", payload.get("duration"))
        points = doc.get("points", doc.get("maxPoints"))
        time_decay = doc.get("timeDecay")
        try:
            duration_seconds = int(duration) if duration is not None else DEFAULT_DURATION_SECONDS
            points_value = int(points) if points is not None else DEFAULT_POINTS
        except (TypeError, ValueError) as exc:
            raise ValidationError("duration and points must be integers.") from exc
        if duration_seconds < 0 or points_value < 0:
            raise ValidationError("duration and points must not be negative.")
        return cls(
            id=str(doc["id"]),
            title=title,
            scoring=_scoring_from_document(doc),
            options=[str(option) for option in doc.get("options") or []],
            duration_seconds=duration_seconds,
            points=points_value,
            time_decay=time_decay if isinstance(time_decay, bool) else True,
            extras=payload,
        )

    def public_payload(self, title_html: str | None = None) -> dict[str, Any]:
        """Return the launch payload students may see (no answers)."""
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "options": list(self.options),
            "duration": self.duration_seconds,
            "points": self.points,
            "timeDecay": self.time_decay,
            "evaluation": self.mode.value,
            "payload": dict(self.extras),
        }
        if title_html is not None:
            payload["titleHtml"] = title_html
        return payload


@dataclass(slots=True)
class QuestionBlock:
    """Ordered group of questions launched one after another."""

    id: str
    name: str
    questions: list[QuestionDefinition] = field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "questions": [question.to_document() for question in self.questions],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "QuestionBlock":
        block_id = str(doc.get("id") or "").strip()
        if not block_id:
            raise ValidationError("Block id is required.")
        return cls(
            id=block_id,
            name=str(doc.get("name") or block_id),
            questions=[QuestionDefinition.from_document(q) for q in doc.get("questions") or []],
        )


@dataclass(slots=True)
class ClassMeta:
    """Session pointer and asked/revealed bookkeeping for one class."""

    current_block_index: int = 0
    current_question_index: int = 0
    finished: bool = False
    started_at: datetime | None = None
    asked_questions: dict[str, bool] = field(default_factory=dict)
    revealed_questions: dict[str, bool] = field(default_factory=dict)
    blocks: list[QuestionBlock] = field(default_factory=list)

    def has_blocks(self) -> bool:
        return bool(self.blocks)

    def current_block(self) -> QuestionBlock | None:
        if 0 <= self.current_block_index < len(self.blocks):
            return self.blocks[self.current_block_index]
        return None

    def first_unasked_index(self, block_index: int) -> int | None:
        if not 0 <= block_index < len(self.blocks):
            return None
        for index, question in enumerate(self.blocks[block_index].questions):
            if not self.asked_questions.get(question.id):
                return index
        return None

    def is_block_exhausted(self) -> bool:
        block = self.current_block()
        if block is None:
            return True
        return self.current_question_index >= len(block.questions)

    def is_last_block(self) -> bool:
        return self.current_block_index + 1 >= len(self.blocks)

    def to_document(self) -> dict[str, Any]:
        return {
            "currentBlockIndex": self.current_block_index,
            "currentQuestionIndex": self.current_question_index,
            "finished": self.finished,
            "startedAt": self.started_at,
            "askedQuestions": dict(self.asked_questions),
            "revealedQuestions": dict(self.revealed_questions),
            "blocks": [block.to_document() for block in self.blocks],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any] | None) -> "ClassMeta":
        doc = doc or {}
        return cls(
            current_block_index=int(doc.get("currentBlockIndex") or 0),
            current_question_index=int(doc.get("currentQuestionIndex") or 0),
            finished=bool(doc.get("finished", False)),
            started_at=doc.get("startedAt"),
            asked_questions=dict(doc.get("askedQuestions") or {}),
            revealed_questions=dict(doc.get("revealedQuestions") or {}),
            blocks=[QuestionBlock.from_document(b) for b in doc.get("blocks") or []],
        )


@dataclass(slots=True)
class ClassRecord:
    """One live session owned by a teacher."""

    id: str
    name: str = ""
    teacher_name: str = ""
    active: bool = True
    meta: ClassMeta = field(default_factory=ClassMeta)
    created_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "teacherName": self.teacher_name,
            "active": self.active,
            "meta": self.meta.to_document(),
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "ClassRecord":
        return cls(
            id=str(doc["id"]),
            name=str(doc.get("name") or ""),
            teacher_name=str(doc.get("teacherName") or ""),
            active=bool(doc.get("active", True)),
            meta=ClassMeta.from_document(doc.get("meta")),
            created_at=doc.get("created_at"),
        )


@dataclass(slots=True)
class Participant:
    """A student's presence and score inside one class."""

    class_id: str
    session_id: str
    display_name: str
    score: int = 0
    connected: bool = False
    last_seen: datetime | None = None

    @property
    def id(self) -> str:
        return participant_id(self.class_id, self.session_id)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Participant":
        session_id = str(doc.get("sessionId") or "")
        return cls(
            class_id=str(doc.get("classId") or ""),
            session_id=session_id,
            display_name=doc.get("displayName") or default_display_name(session_id),
            score=int(doc.get("score") or 0),
            connected=bool(doc.get("connected")),
            last_seen=doc.get("lastSeen"),
        )

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "displayName": self.display_name,
            "score": self.score,
            "lastSeen": self.last_seen,
            "connected": self.connected,
        }


@dataclass(slots=True)
class AnswerEvaluation:
    """Judgement stored alongside an open answer."""

    score: float
    feedback: str
    awarded_points: int
    source: str
    evaluated_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "feedback": self.feedback,
            "awardedPoints": self.awarded_points,
            "source": self.source,
            "evaluatedAt": self.evaluated_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any] | None) -> "AnswerEvaluation | None":
        if not doc:
            return None
        return cls(
            score=float(doc.get("score") or 0),
            feedback=str(doc.get("feedback") or ""),
            awarded_points=int(doc.get("awardedPoints") or 0),
            source=str(doc.get("source") or ""),
            evaluated_at=doc.get("evaluatedAt"),
        )


@dataclass(slots=True)
class AnswerRecord:
    """The single live answer of one participant to one question."""

    class_id: str
    session_id: str
    question_id: str
    answer: Any
    created_at: datetime
    evaluation: AnswerEvaluation | None = None

    @property
    def id(self) -> str:
        return answer_id(self.class_id, self.session_id, self.question_id)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "classId": self.class_id,
            "sessionId": self.session_id,
            "questionId": self.question_id,
            "answer": self.answer,
            "created_at": self.created_at,
        }
        if self.evaluation is not None:
            doc["evaluation"] = self.evaluation.to_document()
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "AnswerRecord":
        return cls(
            class_id=str(doc["classId"]),
            session_id=str(doc["sessionId"]),
            question_id=str(doc["questionId"]),
            answer=doc.get("answer"),
            created_at=doc.get("created_at") or utc_now(),
            evaluation=AnswerEvaluation.from_document(doc.get("evaluation")),
        )

    def already_awarded(self) -> bool:
        return self.evaluation is not None and self.evaluation.awarded_points > 0


@dataclass(slots=True)
class ActiveQuestion:
    """In-memory record of the question currently running in a class."""

    class_id: str
    question: QuestionDefinition
    started_at: datetime
    public: dict[str, Any] = field(default_factory=dict)

    def remaining_seconds(self, now: datetime) -> int:
        elapsed = int((now - self.started_at).total_seconds())
        return max(0, self.question.duration_seconds - elapsed)

    def catch_up_payload(self, now: datetime) -> dict[str, Any]:
        payload = dict(self.public)
        payload["duration"] = self.remaining_seconds(now)
        return payload


@dataclass(slots=True)
class EvaluationResult:
    """Score in [0, 1] and feedback returned by the evaluator."""

    score: float
    feedback: str = ""
