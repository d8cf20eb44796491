import pytest

from quiz_live.core.errors import QuestionImportError
from quiz_live.core.models import EvaluationMode, McqScoring, OpenPromptScoring, RedFlagsScoring
from quiz_live.core.question_importer import load_blocks_from_file, parse_blocks_text

SAMPLE = """
BLOCK: B1 | Basics

Q: What is $2 + 2$?
A: 3
B: 4
CORRECT: B
TIMELIMIT: 20

---

Q: Which of these are red flags in a prompt?
A: No context
B: Clear output format
C: Vague goal
MODE: redflags
FLAGS: A, C
DECAY: no

BLOCK: B2 | Writing

Q: Improve this prompt:
   "write something about dogs"
MODE: prompt
POINTS: 200
ID: improve-dogs
"""


def test_parses_blocks_and_resolves_letters_to_option_text():
    blocks = parse_blocks_text(SAMPLE).blocks

    assert [(block.id, block.name) for block in blocks] == [("B1", "Basics"), ("B2", "Writing")]
    mcq, flags = blocks[0].questions
    assert mcq.id == "B1-q1"
    assert mcq.scoring == McqScoring(correct_answer="4")
    assert mcq.duration_seconds == 20
    assert flags.scoring == RedFlagsScoring(expected_flags=("No context", "Vague goal"))
    assert flags.time_decay is False

    prompt = blocks[1].questions[0]
    assert prompt.id == "improve-dogs"
    assert prompt.mode is EvaluationMode.OPEN
    assert prompt.scoring == OpenPromptScoring(kind="prompt")
    assert prompt.points == 200
    assert prompt.title == 'Improve this prompt:\n"write something about dogs"'


def test_questions_without_a_block_header_land_in_a_default_block():
    blocks = parse_blocks_text("Q: Say hi\nMODE: open").blocks
    assert blocks[0].id == "B1"
    assert blocks[0].questions[0].scoring == OpenPromptScoring(kind="open")


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "did not contain"),
        ("Q: x\nA: one\nB: two\nCORRECT: D", "CORRECT must name"),
        ("Q: x\nA: one\nC: two", "consecutively"),
        ("Q: x\nA: one\nB: two\nMODE: essay", "MODE must be"),
        ("Q: x\nMODE: redflags\nA: one", "at least one flag"),
        ("Q: x\nMODE: open\nCORRECT: A", "cannot declare"),
        ("Q: x\nA: one\nB: two\nTIMELIMIT: -5", "positive"),
        ("Q: x\nA: one\nB: two\nDECAY: maybe", "yes or no"),
        ("Q: x\nA: one\nB: two\nID: dup\n\nQ: y\nA: one\nB: two\nID: dup", "Duplicate"),
    ],
)
def test_rejects_invalid_files(text, message):
    with pytest.raises(QuestionImportError, match=message):
        parse_blocks_text(text)


def test_load_from_file_records_source(tmp_path):
    path = tmp_path / "blocks.txt"
    path.write_text(SAMPLE, encoding="utf-8")
    imported = load_blocks_from_file(path)
    assert imported.source_path == path
    assert len(imported.blocks) == 2
