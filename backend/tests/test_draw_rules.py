"""
Tests for generation plans and format validation.
"""
import pytest

from bracket_engine.models.bracket import BracketFormat
from bracket_engine.services.bracket_errors import InvalidFormatParameters, UnsupportedFormat
from bracket_engine.services.draw_rules import (
    build_generation_plan,
    group_capacities,
    knockout_round_name,
    losers_round_count,
    losers_round_name,
    next_power_of_two,
    parse_format,
    rr_pairings_by_round,
    swiss_round_count,
)
from bracket_engine.utils.match_generation import expected_match_counts


def test_next_power_of_two():
    assert next_power_of_two(1) == 1
    assert next_power_of_two(4) == 4
    assert next_power_of_two(5) == 8
    assert next_power_of_two(17) == 32


def test_knockout_round_names():
    assert knockout_round_name(1) == "Final"
    assert knockout_round_name(2) == "Semi-Final"
    assert knockout_round_name(4) == "Quarter-Final"
    assert knockout_round_name(8) == "Round of 16"


def test_losers_round_names_and_counts():
    assert losers_round_count(4) == 2
    assert losers_round_count(8) == 4
    assert losers_round_count(16) == 6
    assert losers_round_name(1, 4) == "Losers Round 1"
    assert losers_round_name(4, 4) == "Losers Final"


def test_swiss_round_count():
    assert swiss_round_count(4) == 2
    assert swiss_round_count(5) == 3
    assert swiss_round_count(8) == 3
    assert swiss_round_count(9) == 4


def test_group_capacities_front_load_the_remainder():
    assert group_capacities(10, 3) == [4, 3, 3]
    assert group_capacities(12, 3) == [4, 4, 4]
    assert sum(group_capacities(31, 8)) == 31


@pytest.mark.parametrize("group_size", [3, 4, 5, 6])
def test_rr_pairings_cover_every_pair_once(group_size):
    pairings = rr_pairings_by_round(group_size)
    pairs = [(a, b) for _day, _seq, a, b in pairings]

    assert len(pairs) == group_size * (group_size - 1) // 2
    assert len({frozenset(p) for p in pairs}) == len(pairs)


def test_rr_pairings_size_four_preset_order():
    assert [(a, b) for _d, _s, a, b in rr_pairings_by_round(4)] == [(0, 3), (1, 2), (0, 2), (1, 3), (0, 1), (2, 3)]


def test_parse_format_normalises_spelling():
    assert parse_format("Single-Elimination") == BracketFormat.single_elimination
    assert parse_format("swiss system") == BracketFormat.swiss_system
    assert parse_format(BracketFormat.hybrid) == BracketFormat.hybrid


def test_parse_format_rejects_unknown():
    with pytest.raises(UnsupportedFormat) as exc_info:
        parse_format("ladder")

    assert "hybrid" in exc_info.value.context["supported"]


def test_single_elimination_plan_with_byes():
    plan = build_generation_plan("single_elimination", 5)

    assert plan.bracket_size == 8
    assert plan.byes == 3
    assert plan.round_count == 3
    assert plan.knockout_start_round == "Quarter-Final"
    assert expected_match_counts(plan)["knockout_matches"] == 7


def test_double_elimination_plan():
    plan = build_generation_plan("double_elimination", 8)
    counts = expected_match_counts(plan)

    assert plan.losers_round_count == 4
    assert counts["knockout_matches"] == 7
    assert counts["losers_matches"] == 6
    assert counts["grand_final_matches"] == 2


def test_round_robin_without_group_size_is_one_group():
    plan = build_generation_plan("round_robin", 6)

    assert plan.group_count == 1
    assert plan.group_size == 6
    assert expected_match_counts(plan)["group_matches"] == 15


def test_round_robin_with_groups():
    plan = build_generation_plan("round_robin", 10, group_size=4)

    assert plan.group_count == 3
    # 4-member group: 6 matches, two 3-member groups: 3 each
    assert expected_match_counts(plan)["group_matches"] == 12


def test_hybrid_plan_32_players():
    plan = build_generation_plan("hybrid", 32, group_size=4, advancers_per_group=1)
    counts = expected_match_counts(plan)

    assert plan.group_count == 8
    assert plan.knockout_entrants == 8
    assert plan.bracket_size == 8
    assert plan.knockout_start_round == "Quarter-Final"
    assert counts["group_matches"] == 48
    assert counts["knockout_matches"] == 7


def test_hybrid_requires_advancers():
    with pytest.raises(InvalidFormatParameters):
        build_generation_plan("hybrid", 16, group_size=4)


@pytest.mark.parametrize(
    "participants,group_size,advancers",
    [
        (16, 4, 4),  # everyone advances
        (16, 4, 0),
        (16, 1, None),
    ],
)
def test_invalid_group_parameters(participants, group_size, advancers):
    with pytest.raises(InvalidFormatParameters):
        build_generation_plan("hybrid", participants, group_size=group_size, advancers_per_group=advancers)


def test_uneven_groups_still_advance():
    # 9 over 3 groups is 3/3/3
    plan = build_generation_plan("hybrid", 9, group_size=4, advancers_per_group=2)

    assert plan.group_count == 3
    assert plan.knockout_entrants == 6
    assert plan.bracket_size == 8


def test_group_size_leaving_a_singleton_group_rejected():
    # 5 in groups of 2 -> 2/2/1
    with pytest.raises(InvalidFormatParameters):
        build_generation_plan("round_robin", 5, group_size=2)


def test_smallest_group_must_exceed_advancers():
    # 10 in groups of 4 -> 4/3/3; advancing 3 would empty the 3-member groups
    with pytest.raises(InvalidFormatParameters):
        build_generation_plan("hybrid", 10, group_size=4, advancers_per_group=3)


def test_swiss_plan():
    plan = build_generation_plan("swiss_system", 7)

    assert plan.swiss_rounds == 3
    assert expected_match_counts(plan)["swiss_matches_per_round"] == 4
