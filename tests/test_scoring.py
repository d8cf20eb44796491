from datetime import timedelta

from conftest import START

from quiz_live.core.scoring import (
    decayed_award,
    elapsed_fraction,
    mcq_matches,
    normalize_evaluator_score,
    redflags_fraction,
    round_half_up,
    tally_answers,
)
from quiz_live.core.wire import answer_key, decode_message, encode_message


def _at(seconds: float):
    return START + timedelta(seconds=seconds)


def test_round_half_up_matches_javascript_rounding():
    assert round_half_up(82.5) == 83
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4999) == 2
    assert round_half_up(83.333) == 83


def test_correct_answer_after_five_of_thirty_seconds_earns_83():
    assert decayed_award(100, 1.0, _at(5), START, 30) == 83


def test_award_never_increases_with_elapsed_time():
    previous = None
    for second in range(0, 31):
        award = decayed_award(100, 0.7, _at(second), START, 30)
        if previous is not None:
            assert award <= previous
        previous = award
    assert previous == 0


def test_elapsed_fraction_is_clamped():
    assert elapsed_fraction(_at(-3), START, 30) == 0.0
    assert elapsed_fraction(_at(45), START, 30) == 1.0
    assert elapsed_fraction(_at(15), START, 30) == 0.5


def test_unknown_start_uses_whole_duration():
    assert elapsed_fraction(_at(5), None, 30) == 1.0
    assert decayed_award(100, 1.0, _at(5), None, 30) == 0


def test_zero_duration_falls_back_to_default():
    assert elapsed_fraction(_at(15), START, 0) == 0.5


def test_time_decay_can_be_disabled():
    assert decayed_award(100, 1.0, _at(29), START, 30, time_decay=False) == 100
    assert decayed_award(100, 0.5, _at(29), START, 30, time_decay=False) == 50


def test_evaluator_percentages_and_fractions_give_same_award():
    as_percent = decayed_award(100, normalize_evaluator_score(80), _at(5), START, 30)
    as_fraction = decayed_award(100, normalize_evaluator_score(0.8), _at(5), START, 30)
    assert as_percent == as_fraction == 67


def test_normalize_evaluator_score_edge_values():
    assert normalize_evaluator_score("garbage") == 0.0
    assert normalize_evaluator_score(None) == 0.0
    assert normalize_evaluator_score(float("nan")) == 0.0
    assert normalize_evaluator_score(250) == 1.0
    assert normalize_evaluator_score(-4) == 0.0
    assert normalize_evaluator_score(1) == 1.0


def test_mcq_matches_compares_string_forms():
    assert mcq_matches("A", "A")
    assert mcq_matches(2.0, "2")
    assert not mcq_matches("a", "A")
    assert not mcq_matches("A", None)


def test_redflags_fraction_is_overlap_over_expected():
    assert redflags_fraction(["no context", "vague goal"], ["no context", "vague goal"]) == 1.0
    assert redflags_fraction(["no context", "clear format"], ["no context", "vague goal"]) == 0.5
    assert redflags_fraction("no context", ["no context", "vague goal"]) == 0.5
    assert redflags_fraction(None, ["no context"]) == 0.0
    assert redflags_fraction(["anything"], []) == 0.0


def test_tally_counts_distinct_values():
    counts = tally_answers(["A", "B", "A", None, ["x", "y"]])
    assert counts == {"A": 2, "B": 1, "": 1, "x,y": 1}
    assert sum(counts.values()) == 5


def test_answer_key_forms():
    assert answer_key(None) == ""
    assert answer_key(True) == "true"
    assert answer_key(3.0) == "3"
    assert answer_key(3.5) == "3.5"
    assert answer_key(["a", 1]) == "a,1"


def test_decode_message_rejects_non_objects():
    assert decode_message("not json") is None
    assert decode_message("[1, 2]") is None
    assert decode_message(b'{"type": "ping"}') == {"type": "ping"}


def test_encode_message_serializes_datetimes():
    assert encode_message({"at": START}) == '{"at": "2024-05-06T09:00:00+00:00"}'
