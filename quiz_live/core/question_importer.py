"""Utilities for importing question blocks from a human-friendly text file.

File format (entries separated by blank lines or '---'):

    BLOCK: B1 | Warm-up      (starts a new block; id and display name)

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First option text
    B: Second option text  (up to F)
    MODE: mcq|redflags|open|prompt   (optional, default mcq)
    CORRECT: B               (mcq only)
    FLAGS: A, C              (redflags only; every flagged option)
    POINTS: 100              (optional)
    TIMELIMIT: 30            (optional, seconds)
    DECAY: yes|no            (optional, default yes)
    ID: q-intro-1            (optional, otherwise derived from the block)

Example:

    BLOCK: B1 | Basics

    Q: What is $2 + 2$?
    A: 3
    B: 4
    CORRECT: B
    TIMELIMIT: 20

    Q: Which of these are red flags in a prompt?
    A: No context
    B: Clear output format
    C: Vague goal
    MODE: redflags
    FLAGS: A, C

Answers are compared against option text, so ``CORRECT`` and ``FLAGS`` letters
are resolved to the option text here. The evaluation mode is fixed at import
time and never re-derived later.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from quiz_live.constants.session_constants import DEFAULT_DURATION_SECONDS, DEFAULT_POINTS
from quiz_live.core.errors import QuestionImportError
from quiz_live.core.models import (
    McqScoring,
    OpenPromptScoring,
    QuestionBlock,
    QuestionDefinition,
    RedFlagsScoring,
    ScoringRule,
)


@dataclass(slots=True)
class ImportedBlocks:
    """Container for imported blocks and where they came from."""

    source_path: Path | None
    blocks: list[QuestionBlock]


_OPTION_ORDER = ["A", "B", "C", "D", "E", "F"]
_MODES = {"mcq", "redflags", "open", "prompt"}
_TRUE_WORDS = {"yes", "true", "on", "1"}
_FALSE_WORDS = {"no", "false", "off", "0"}
_FIELDS = ("CORRECT:", "FLAGS:", "MODE:", "POINTS:", "TIMELIMIT:", "DECAY:", "ID:")


def load_blocks_from_file(file_path: Path) -> ImportedBlocks:
    text = file_path.read_text(encoding="utf-8")
    imported = parse_blocks_text(text)
    imported.source_path = file_path
    return imported


def parse_blocks_text(text: str) -> ImportedBlocks:
    blocks: list[QuestionBlock] = []
    for entry in _split_entries(text):
        lines = entry.splitlines()
        first = lines[0].strip()
        if first.upper().startswith("BLOCK:"):
            blocks.append(_parse_block_header(first, len(blocks) + 1))
            lines = lines[1:]
            if not any(line.strip() for line in lines):
                continue
        if not blocks:
            blocks.append(QuestionBlock(id="B1", name="Block 1"))
        block = blocks[-1]
        block.questions.append(_parse_question("\n".join(lines), block, len(block.questions) + 1))

    blocks = [block for block in blocks if block.questions]
    if not blocks:
        raise QuestionImportError("Block file did not contain any questions.")
    seen: set[str] = set()
    for block in blocks:
        for question in block.questions:
            if question.id in seen:
                raise QuestionImportError(f"Duplicate question id '{question.id}'.")
            seen.add(question.id)
    return ImportedBlocks(source_path=None, blocks=blocks)


def _split_entries(text: str) -> list[str]:
    entries: list[str] = []
    current: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---" or not stripped:
            if current:
                entries.append("\n".join(current).strip())
                current = []
            continue
        current.append(raw_line)
    if current:
        entries.append("\n".join(current).strip())
    return [entry for entry in entries if entry]


def _parse_block_header(line: str, position: int) -> QuestionBlock:
    value = line.split(":", 1)[1].strip()
    if "|" in value:
        block_id, name = (part.strip() for part in value.split("|", 1))
    else:
        block_id, name = value, ""
    if not block_id:
        block_id = f"B{position}"
    return QuestionBlock(id=block_id, name=name or block_id)


def _parse_question(entry: str, block: QuestionBlock, position: int) -> QuestionDefinition:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    fields: dict[str, str] = {}
    current_section: str | None = None

    for raw_line in entry.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        upper = line.upper()

        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        marker = next((name for name in _FIELDS if upper.startswith(name)), None)
        if marker is not None:
            fields[marker[:-1]] = line.split(":", 1)[1].strip()
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_ORDER and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in _OPTION_ORDER:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuestionImportError(f"Encountered text outside of a known section: '{line}'.")

    title = "\n".join(question_lines).strip()
    if not title:
        raise QuestionImportError("Question text missing (Q: ...)")

    letters = [letter for letter in _OPTION_ORDER if letter in options]
    if letters != _OPTION_ORDER[: len(letters)]:
        raise QuestionImportError("Options must be lettered consecutively from A.")
    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise QuestionImportError("Option text cannot be empty.")

    mode = fields.get("MODE", "mcq").strip().lower()
    if mode not in _MODES:
        raise QuestionImportError(f"MODE must be one of {', '.join(sorted(_MODES))}.")
    scoring = _build_scoring(mode, fields, letters, option_list)

    return QuestionDefinition(
        id=fields.get("ID") or f"{block.id}-q{position}",
        title=title,
        scoring=scoring,
        options=option_list,
        duration_seconds=_positive_int(fields, "TIMELIMIT", DEFAULT_DURATION_SECONDS),
        points=_positive_int(fields, "POINTS", DEFAULT_POINTS),
        time_decay=_flag(fields, "DECAY", True),
    )


def _build_scoring(mode: str, fields: dict[str, str], letters: list[str], options: list[str]) -> ScoringRule:
    if mode == "mcq":
        if "FLAGS" in fields:
            raise QuestionImportError("FLAGS is only valid for redflags questions.")
        if len(options) < 2:
            raise QuestionImportError("Multiple-choice questions need at least two options.")
        correct = fields.get("CORRECT")
        if correct is None:
            return McqScoring()
        return McqScoring(correct_answer=_option_for(correct.upper(), letters, options, "CORRECT"))
    if mode == "redflags":
        raw_flags = fields.get("FLAGS", "")
        flags = [part.strip().upper() for part in raw_flags.split(",") if part.strip()]
        if not flags:
            raise QuestionImportError("Red-flag questions must list at least one flag (FLAGS: ...).")
        return RedFlagsScoring(
            expected_flags=tuple(_option_for(flag, letters, options, "FLAGS") for flag in flags)
        )
    if "CORRECT" in fields or "FLAGS" in fields:
        raise QuestionImportError("Open questions cannot declare CORRECT or FLAGS.")
    return OpenPromptScoring(kind="prompt" if mode == "prompt" else "open")


def _option_for(letter: str, letters: list[str], options: list[str], field_name: str) -> str:
    if letter not in letters:
        raise QuestionImportError(f"{field_name} must name one of {', '.join(letters)}.")
    return options[letters.index(letter)]


def _positive_int(fields: dict[str, str], name: str, default: int) -> int:
    raw_value = fields.get(name)
    if raw_value is None:
        return default
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuestionImportError(f"{name} must be an integer.") from exc
    if parsed_value <= 0:
        raise QuestionImportError(f"{name} must be a positive integer.")
    return parsed_value


def _flag(fields: dict[str, str], name: str, default: bool) -> bool:
    raw_value = fields.get(name)
    if raw_value is None:
        return default
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise QuestionImportError(f"{name} must be yes or no.")
