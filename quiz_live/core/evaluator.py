"""Free-text answer evaluation through OpenAI-compatible chat endpoints.

The evaluator asks a model for a JSON verdict ``{"score": .., "feedback": ..}``.
Endpoints are tried in order (OpenAI first, then a local Ollama server through
its OpenAI-compatible ``/v1`` API). Any endpoint failure moves on to the next
one; if none yields a parsable verdict :class:`EvaluatorError` is raised and the
caller decides how to degrade.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from quiz_live.core.errors import EvaluatorError
from quiz_live.core.models import EvaluationResult, OpenPromptScoring, QuestionDefinition
from quiz_live.core.scoring import normalize_evaluator_score

if TYPE_CHECKING:
    from quiz_live.config import Settings

logger = logging.getLogger(__name__)

_OPEN_SYSTEM_PROMPT = (
    "You are a strict but fair teacher grading a student's short free-text answer. "
    "Reply only with JSON of the form {\"score\": <number 0-100>, \"feedback\": \"<one or two sentences>\"}."
)
_PROMPT_SYSTEM_PROMPT = (
    "You evaluate how well a student wrote or improved a prompt for an AI assistant. "
    "Judge clarity, context, constraints and expected output format. "
    "Reply only with JSON of the form {\"score\": <number 0-100>, \"feedback\": \"<one or two sentences>\"}."
)


class Evaluator(Protocol):
    async def evaluate(self, question: QuestionDefinition, answer: Any) -> EvaluationResult: ...


@dataclass(slots=True)
class EvaluatorEndpoint:
    """One OpenAI-compatible chat-completions backend."""

    name: str
    client: AsyncOpenAI
    model: str


def parse_verdict(content: str | None) -> dict[str, Any] | None:
    """Read a JSON object from model output, tolerating surrounding prose."""
    if not content:
        return None
    try:
        parsed = json.loads(content)
    except ValueError:
        start = content.find("{")
        end = content.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(content[start : end + 1])
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def answer_text(answer: Any) -> str:
    """Flatten an answer for the judge; selections are joined with commas."""
    if answer is None:
        return ""
    if isinstance(answer, (list, tuple)):
        return ", ".join(str(item) for item in answer)
    return str(answer)


def build_messages(question: QuestionDefinition, answer: Any) -> list[dict[str, str]]:
    scoring = question.scoring
    is_prompt = isinstance(scoring, OpenPromptScoring) and scoring.kind == "prompt"
    system = _PROMPT_SYSTEM_PROMPT if is_prompt else _OPEN_SYSTEM_PROMPT
    lines = [f"Question: {question.title}"]
    if isinstance(scoring, OpenPromptScoring) and scoring.rubric:
        lines.append(f"Rubric: {scoring.rubric}")
    lines.append(f"Student answer: {answer_text(answer)}")
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n".join(lines)},
    ]


class LLMEvaluator:
    """Scores free-text answers with the first endpoint that answers sensibly."""

    def __init__(self, endpoints: list[EvaluatorEndpoint]) -> None:
        self._endpoints = endpoints

    @classmethod
    def from_settings(cls, settings: "Settings") -> "LLMEvaluator":
        endpoints: list[EvaluatorEndpoint] = []
        if settings.openai_api_key:
            endpoints.append(
                EvaluatorEndpoint(
                    name="openai",
                    client=AsyncOpenAI(
                        api_key=settings.openai_api_key,
                        base_url=settings.openai_base_url,
                        timeout=settings.evaluator_timeout_seconds,
                    ),
                    model=settings.openai_model,
                )
            )
        if settings.ollama_url:
            endpoints.append(
                EvaluatorEndpoint(
                    name="ollama",
                    client=AsyncOpenAI(
                        api_key="ollama",
                        base_url=settings.ollama_url.rstrip("/") + "/v1",
                        timeout=settings.evaluator_timeout_seconds,
                    ),
                    model=settings.ollama_model,
                )
            )
        if not endpoints:
            logger.warning("No evaluator endpoint configured; open answers will not be scored by the server")
        return cls(endpoints)

    def is_configured(self) -> bool:
        return bool(self._endpoints)

    async def evaluate(self, question: QuestionDefinition, answer: Any) -> EvaluationResult:
        messages = build_messages(question, answer)
        for endpoint in self._endpoints:
            logger.info("Evaluating answer with %s (%s)", endpoint.name, endpoint.model)
            try:
                completion = await endpoint.client.chat.completions.create(
                    model=endpoint.model,
                    messages=messages,
                    temperature=0.2,
                    max_tokens=200,
                )
            except OpenAIError as exc:
                logger.warning("Evaluator endpoint %s failed: %s", endpoint.name, exc)
                continue
            content = completion.choices[0].message.content if completion.choices else None
            verdict = parse_verdict(content)
            if verdict is None or "score" not in verdict:
                logger.warning("Evaluator endpoint %s returned unparsable output", endpoint.name)
                continue
            return EvaluationResult(
                score=normalize_evaluator_score(verdict.get("score")),
                feedback=str(verdict.get("feedback") or ""),
            )
        raise EvaluatorError("No evaluator endpoint produced a verdict.")
