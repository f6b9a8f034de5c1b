"""
Tests for the bracket invariant verifier.
"""
import pytest

from bracket_engine.models.match import MATCH_COMPLETED, MATCH_READY, SIDE_A
from bracket_engine.models.slot import ConcreteSlot, PlaceholderSlot
from bracket_engine.services.bracket_errors import InconsistentBracketState
from bracket_engine.services.bracket_invariants import (
    check_match_counts,
    ensure_bracket_consistent,
    ensure_plan_counts,
    verify_bracket,
)
from bracket_engine.services.bracket_orchestrator import build_draft
from bracket_engine.services.draw_rules import build_generation_plan
from bracket_engine.utils.seeding import rank_participants
from tests.helpers import by_code, make_participants


def _draft(fmt, n, **options):
    seeded = rank_participants(make_participants(n))
    plan = build_generation_plan(fmt, n, **options)
    return build_draft("t1", "singles", plan, seeded)


def _verify(draft):
    return verify_bracket(draft.bracket, [e.participant_id for e in draft.entrants], draft.matches)


def _codes(report):
    return {v.code for v in report.violations}


DRAFT_CASES = [
    ("single_elimination", 5, {}),
    ("single_elimination", 16, {}),
    ("double_elimination", 6, {}),
    ("double_elimination", 16, {}),
    ("round_robin", 7, {}),
    ("round_robin", 10, {"group_size": 4}),
    ("hybrid", 32, {"group_size": 4, "advancers_per_group": 1}),
    ("hybrid", 10, {"group_size": 4, "advancers_per_group": 2}),
    ("swiss_system", 7, {}),
]


@pytest.mark.parametrize("fmt,n,options", DRAFT_CASES)
def test_generated_drafts_are_consistent(fmt, n, options):
    report = _verify(_draft(fmt, n, **options))

    assert report.ok, report.to_dict()
    assert report.stats.round_one_participants == n


def test_duplicate_match_code_detected():
    draft = _draft("single_elimination", 8)
    draft.matches[1].match_code = draft.matches[0].match_code

    assert "DUPLICATE_MATCH_CODE" in _codes(_verify(draft))


def test_duplicate_match_number_detected():
    draft = _draft("single_elimination", 8)
    draft.matches[1].match_number = draft.matches[0].match_number

    assert "DUPLICATE_MATCH_NUMBER" in _codes(_verify(draft))


def test_winner_without_completion_detected():
    draft = _draft("single_elimination", 8)
    draft.matches[0].winner_side = SIDE_A

    assert "WINNER_STATUS_MISMATCH" in _codes(_verify(draft))


def test_completed_without_winner_detected():
    draft = _draft("single_elimination", 8)
    draft.matches[0].status = MATCH_COMPLETED

    assert "WINNER_STATUS_MISMATCH" in _codes(_verify(draft))


def test_dangling_placeholder_detected():
    draft = _draft("single_elimination", 8)
    final = by_code(draft.matches)["KO3-1"]
    final.set_slot("A", PlaceholderSlot.match_winner("KO9-9"))

    assert "DANGLING_PLACEHOLDER" in _codes(_verify(draft))


def test_placeholder_from_a_later_round_detected():
    draft = _draft("single_elimination", 8)
    semi = by_code(draft.matches)["KO2-1"]
    semi.set_slot("A", PlaceholderSlot.match_winner("KO3-1"))

    assert "PLACEHOLDER_ORDER" in _codes(_verify(draft))


def test_ready_with_placeholder_detected():
    draft = _draft("single_elimination", 8)
    by_code(draft.matches)["KO2-1"].status = MATCH_READY

    assert "READY_NOT_CONCRETE" in _codes(_verify(draft))


def test_unknown_participant_detected():
    draft = _draft("single_elimination", 8)
    draft.matches[0].set_slot("A", ConcreteSlot("ghost"))

    codes = _codes(_verify(draft))
    assert "UNKNOWN_PARTICIPANT" in codes
    assert "ROUND_ONE_PARTICIPANTS" in codes


def test_substituted_participant_not_counted_in_round_one():
    draft = _draft("single_elimination", 8)
    by_code(draft.matches)["KO1-1"].set_slot("A", ConcreteSlot("ghost"))

    report = _verify(draft)

    assert report.stats.round_one_participants == 7
    assert "ROUND_ONE_PARTICIPANTS" in _codes(report)


def test_round_shape_detected():
    draft = _draft("single_elimination", 8)
    draft.matches = [m for m in draft.matches if m.match_code != "KO2-2"]

    assert "ROUND_SHAPE" in _codes(_verify(draft))


def test_hybrid_entrant_count_detected():
    draft = _draft("hybrid", 16, group_size=4, advancers_per_group=2)
    draft.bracket.advancers_per_group = 3

    assert "HYBRID_ENTRANTS" in _codes(_verify(draft))


def test_ensure_raises_with_report_context():
    draft = _draft("single_elimination", 8)
    draft.matches[0].winner_side = SIDE_A

    with pytest.raises(InconsistentBracketState) as exc_info:
        ensure_bracket_consistent(draft.bracket, [e.participant_id for e in draft.entrants], draft.matches)

    assert exc_info.value.context["ok"] is False
    assert exc_info.value.context["violations"][0]["code"] == "WINNER_STATUS_MISMATCH"


@pytest.mark.parametrize("fmt,n,options", DRAFT_CASES)
def test_generated_drafts_match_plan_counts(fmt, n, options):
    plan = build_generation_plan(fmt, n, **options)
    draft = _draft(fmt, n, **options)

    assert check_match_counts(plan, draft.matches) == []


def test_missing_losers_match_breaks_plan_counts():
    plan = build_generation_plan("double_elimination", 8)
    matches = [m for m in _draft("double_elimination", 8).matches if m.match_code != "L2-1"]

    violations = check_match_counts(plan, matches)

    assert [v.context for v in violations] == [{"count": "losers_matches", "found": 5, "expected": 6}]


def test_ensure_plan_counts_raises_with_plan_context():
    plan = build_generation_plan("single_elimination", 8)
    matches = [m for m in _draft("single_elimination", 8).matches if m.match_code != "KO3-1"]

    with pytest.raises(InconsistentBracketState) as exc_info:
        ensure_plan_counts(plan, matches)

    assert exc_info.value.context["plan"]["bracket_size"] == 8
    assert exc_info.value.context["violations"] == [{"count": "knockout_matches", "found": 6, "expected": 7}]
