"""
Tests for placeholder resolution (in memory, no database).
"""
import pytest

from bracket_engine.models.match import (
    MATCH_CANCELLED,
    MATCH_COMPLETED,
    MATCH_PENDING,
    MATCH_READY,
    SIDE_A,
    SIDE_B,
)
from bracket_engine.models.slot import ConcreteSlot, PlaceholderSlot
from bracket_engine.services.advancement_service import PlaceholderResolver
from bracket_engine.services.bracket_errors import SlotAlreadyResolved
from bracket_engine.services.bracket_orchestrator import build_draft
from bracket_engine.services.draw_rules import build_generation_plan
from bracket_engine.services.knockout import build_double_elimination, build_single_elimination
from bracket_engine.utils.seeding import rank_participants
from tests.helpers import by_code, make_participants


def _seeds(n):
    return {f"p{i:02d}": i for i in range(1, n + 1)}


def _slots(n):
    return [ConcreteSlot(f"p{i:02d}") for i in range(1, n + 1)]


def _finish(resolver, match, side=SIDE_A):
    match.status = MATCH_COMPLETED
    match.winner_side = side
    return resolver.match_finished(match)


def test_winner_fills_next_round_slot():
    matches = build_single_elimination(_slots(4))
    resolver = PlaceholderResolver(matches, _seeds(4))
    codes = by_code(matches)

    report = _finish(resolver, codes["KO1-1"])

    assert report.rewrites == 1
    assert codes["KO2-1"].get_slot("A") == ConcreteSlot("p01")
    assert codes["KO2-1"].status == MATCH_PENDING
    # Source columns survive resolution
    assert codes["KO2-1"].source_of("A") == PlaceholderSlot.match_winner("KO1-1")

    _finish(resolver, codes["KO1-2"], SIDE_B)
    assert codes["KO2-1"].get_slot("B") == ConcreteSlot("p03")
    assert codes["KO2-1"].status == MATCH_READY


def test_same_result_twice_is_a_no_op():
    matches = build_single_elimination(_slots(4))
    resolver = PlaceholderResolver(matches, _seeds(4))
    codes = by_code(matches)

    _finish(resolver, codes["KO1-1"])
    again = _finish(resolver, codes["KO1-1"])

    assert again.rewrites == 0
    assert again.touched == []
    assert codes["KO2-1"].get_slot("A") == ConcreteSlot("p01")


def test_changed_winner_after_placement_is_rejected():
    matches = build_single_elimination(_slots(4))
    resolver = PlaceholderResolver(matches, _seeds(4))
    codes = by_code(matches)
    _finish(resolver, codes["KO1-1"])

    with pytest.raises(SlotAlreadyResolved) as exc_info:
        _finish(resolver, codes["KO1-1"], SIDE_B)

    assert exc_info.value.context["match_code"] == "KO2-1"
    assert codes["KO2-1"].get_slot("A") == ConcreteSlot("p01")


def _hybrid_eight():
    seeded = rank_participants(make_participants(8))
    plan = build_generation_plan("hybrid", 8, group_size=4, advancers_per_group=2)
    draft = build_draft("t1", "singles", plan, seeded)
    return draft.matches, PlaceholderResolver(draft.matches, {p.participant_id: p.seed for p in seeded})


def test_group_completion_resolves_knockout_slots():
    matches, resolver = _hybrid_eight()
    codes = by_code(matches)
    group_a = [m for m in matches if m.group_id == "A"]

    for m in group_a[:-1]:
        report = _finish(resolver, m)
        assert report.groups_resolved == []
    report = _finish(resolver, group_a[-1])

    # Group A = seeds 1, 4, 5, 8; side A always wins, so p01 then p04
    assert report.groups_resolved == ["A"]
    assert codes["KO1-1"].get_slot("A") == ConcreteSlot("p01")
    assert codes["KO1-2"].get_slot("B") == ConcreteSlot("p04")
    assert codes["KO1-1"].status == MATCH_PENDING

    for m in (m for m in matches if m.group_id == "B"):
        _finish(resolver, m)

    assert codes["KO1-1"].get_slot("B") == ConcreteSlot("p03")
    assert codes["KO1-2"].get_slot("A") == ConcreteSlot("p02")
    assert codes["KO1-1"].status == MATCH_READY
    assert codes["KO1-2"].status == MATCH_READY


def test_group_correction_that_keeps_the_advancers_is_allowed():
    matches, resolver = _hybrid_eight()
    codes = by_code(matches)
    for m in (m for m in matches if m.group_id == "A"):
        _finish(resolver, m)

    # GA-06 is p05 v p08: flipping it only reorders the non-advancing places
    report = _finish(resolver, codes["GA-06"], SIDE_B)

    assert report.rewrites == 0
    assert codes["KO1-1"].get_slot("A") == ConcreteSlot("p01")


def test_group_correction_that_changes_an_advancer_is_rejected():
    matches, resolver = _hybrid_eight()
    codes = by_code(matches)
    for m in (m for m in matches if m.group_id == "A"):
        _finish(resolver, m)

    # GA-05 is p01 v p04: flipping it swaps the group winner
    with pytest.raises(SlotAlreadyResolved):
        _finish(resolver, codes["GA-05"], SIDE_B)

    assert codes["KO1-1"].get_slot("A") == ConcreteSlot("p01")
    assert codes["KO1-2"].get_slot("B") == ConcreteSlot("p04")


def _double_elimination_to_grand_final():
    """Four players: p01 wins the winners bracket, p02 comes back through the losers bracket."""
    matches = build_double_elimination(_slots(4))
    resolver = PlaceholderResolver(matches, _seeds(4))
    resolver.settle()
    codes = by_code(matches)
    _finish(resolver, codes["W1-1"])  # p01 beats p04
    _finish(resolver, codes["W1-2"])  # p02 beats p03
    _finish(resolver, codes["L1-1"])  # p04 beats p03
    _finish(resolver, codes["W2-1"])  # p01 beats p02
    _finish(resolver, codes["L2-1"], SIDE_B)  # p02 beats p04
    return resolver, codes


def test_grand_final_slots():
    _resolver, codes = _double_elimination_to_grand_final()

    assert codes["GF"].get_slot("A") == ConcreteSlot("p01")
    assert codes["GF"].get_slot("B") == ConcreteSlot("p02")
    assert codes["GF"].status == MATCH_READY
    assert codes["GF2"].status == MATCH_PENDING


def test_grand_final_won_by_winners_side_cancels_reset():
    resolver, codes = _double_elimination_to_grand_final()

    report = _finish(resolver, codes["GF"], SIDE_A)

    assert report.cancelled == ["GF2"]
    assert codes["GF2"].status == MATCH_CANCELLED
    assert codes["GF2"].winner_side is None


def test_grand_final_won_by_losers_side_forces_reset():
    resolver, codes = _double_elimination_to_grand_final()

    _finish(resolver, codes["GF"], SIDE_B)

    assert codes["GF2"].get_slot("A") == ConcreteSlot("p01")
    assert codes["GF2"].get_slot("B") == ConcreteSlot("p02")
    assert codes["GF2"].status == MATCH_READY


def test_grand_final_correction_after_reset_decision_is_rejected():
    resolver, codes = _double_elimination_to_grand_final()
    _finish(resolver, codes["GF"], SIDE_A)

    with pytest.raises(SlotAlreadyResolved):
        _finish(resolver, codes["GF"], SIDE_B)

    resolver, codes = _double_elimination_to_grand_final()
    _finish(resolver, codes["GF"], SIDE_B)

    with pytest.raises(SlotAlreadyResolved):
        _finish(resolver, codes["GF"], SIDE_A)
