"""Pydantic payloads for the HTTP API and the realtime protocol.

Wire names are camelCase (``classId``); attributes are snake_case.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quiz_live.constants.protocol_constants import ROLE_STUDENT


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Realtime messages ---


class SubscribeMessage(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str | None = None
    role: Literal["student", "teacher"] = ROLE_STUDENT
    display_name: str | None = None


class UnsubscribeMessage(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str | None = None


class PingMessage(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)


class AnswerMessage(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    answer: Any
    evaluation: dict[str, Any] | None = None


class RevealMessage(WireModel):
    class_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    correct_answer: Any = None
    points: int | None = None


# --- HTTP payloads ---


class ClassCreatePayload(WireModel):
    """Payload schema for creating a class; the code is generated when omitted."""

    id: str | None = None
    name: str = ""
    teacher_name: str = ""
    active: bool = True


class ClassUpdatePayload(WireModel):
    name: str | None = None
    teacher_name: str | None = None
    active: bool | None = None


class BlocksPayload(WireModel):
    """Question blocks as JSON documents or as block-file text."""

    blocks: list[dict[str, Any]] | None = None
    text: str | None = None


class JumpPayload(WireModel):
    block_index: int = Field(ge=0)
    question_index: int = Field(ge=0)


class ParticipantPayload(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    display_name: str | None = None
    connected: bool | None = None
    score: int | None = Field(default=None, ge=0)
    score_delta: int | None = None


class ResetScoresPayload(WireModel):
    class_id: str = Field(min_length=1)


class ChallengePayload(WireModel):
    """Ad-hoc question launch; unknown keys travel along in the document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    class_id: str = Field(min_length=1)
    id: str | None = None
    title: str = ""
    options: list[str] = Field(default_factory=list)
    duration: int | None = None
    points: int | None = None
    time_decay: bool | None = None
    evaluation: Literal["mcq", "redflags", "open", "prompt"] | None = None
    correct_answer: Any = None
    payload: dict[str, Any] = Field(default_factory=dict)


class AnswerPayload(WireModel):
    class_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    answer: Any
    evaluation: dict[str, Any] | None = None


class RevealPayload(WireModel):
    class_id: str = Field(min_length=1)
    correct_answer: Any = None
    points: int | None = None


class EvaluatePayload(WireModel):
    question: dict[str, Any]
    answer: Any
