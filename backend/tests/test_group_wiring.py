"""
Tests for group-stage construction: snake assignment, match wiring, matchdays.
"""
from collections import defaultdict

from bracket_engine.models.match import MATCH_READY, STAGE_GROUP
from bracket_engine.utils.group_wiring import (
    build_group_matches,
    group_label,
    matchday_of,
    snake_assign,
)
from bracket_engine.utils.seeding import rank_participants
from tests.helpers import make_participants


def _seeds(groups):
    return {label: [p.seed for p in members] for label, members in groups.items()}


def test_group_labels():
    assert group_label(0) == "A"
    assert group_label(25) == "Z"
    assert group_label(26) == "AA"
    assert group_label(27) == "AB"


def test_snake_assignment_even_split():
    groups = snake_assign(rank_participants(make_participants(8)), 2)

    assert _seeds(groups) == {"A": [1, 4, 5, 8], "B": [2, 3, 6, 7]}


def test_snake_assignment_skips_full_groups():
    """10 players in groups of 4: capacities 4/3/3, later picks skip the full groups."""
    groups = snake_assign(rank_participants(make_participants(10)), 3)

    assert _seeds(groups) == {"A": [1, 6, 7, 10], "B": [2, 5, 8], "C": [3, 4, 9]}


def test_group_matches_are_all_play_all():
    groups = snake_assign(rank_participants(make_participants(10)), 3)
    matches = build_group_matches(groups)

    assert len(matches) == 6 + 3 + 3
    assert all(m.stage == STAGE_GROUP and m.round_ordinal == 1 for m in matches)
    assert all(m.status == MATCH_READY for m in matches)
    assert [m.match_number for m in matches] == list(range(1, 13))
    assert [m.match_code for m in matches if m.group_id == "A"] == [
        "GA-01", "GA-02", "GA-03", "GA-04", "GA-05", "GA-06",
    ]
    assert matches[0].round_name == "Group Stage"

    for label, members in groups.items():
        ids = {p.participant_id for p in members}
        pairs = {frozenset((m.participant_a_id, m.participant_b_id)) for m in matches if m.group_id == label}
        assert len(pairs) == len(ids) * (len(ids) - 1) // 2
        assert all(pair <= ids for pair in pairs)


def test_side_a_holds_better_seed():
    seeded = rank_participants(make_participants(8))
    seed_of = {p.participant_id: p.seed for p in seeded}
    matches = build_group_matches(snake_assign(seeded, 2))

    for m in matches:
        assert seed_of[m.participant_a_id] < seed_of[m.participant_b_id]


def test_single_group_is_named_round_robin():
    matches = build_group_matches(snake_assign(rank_participants(make_participants(5)), 1))

    assert len(matches) == 10
    assert {m.round_name for m in matches} == {"Round Robin"}


def test_no_participant_plays_twice_on_a_matchday():
    matches = build_group_matches(snake_assign(rank_participants(make_participants(10)), 3))
    matchdays = matchday_of(matches)

    seen = defaultdict(list)
    for m in matches:
        key = (m.group_id, matchdays[m.match_code])
        seen[key].extend([m.participant_a_id, m.participant_b_id])
    for players in seen.values():
        assert len(players) == len(set(players))


def test_top_two_seeds_meet_on_last_matchday_in_group_of_four():
    groups = snake_assign(rank_participants(make_participants(8)), 2)
    matches = build_group_matches(groups)
    matchdays = matchday_of(matches)

    top_two = [m for m in matches if m.group_id == "A" and {m.participant_a_id, m.participant_b_id} == {"p01", "p04"}]
    assert len(top_two) == 1
    assert matchdays[top_two[0].match_code] == 3
