"""
Group Stage Wiring

Deterministic group-stage construction:
1. Group capacities are fixed first (first groups take the remainder)
2. Seeds snake across groups (A..n, n..A, ...), skipping full groups
3. Each group plays all-play-all, ordered into matchdays (circle method)
"""

from typing import Dict, List, Tuple

from bracket_engine.models.match import STAGE_GROUP, Match
from bracket_engine.models.slot import ConcreteSlot
from bracket_engine.services.draw_rules import (
    ROUND_GROUP_STAGE,
    ROUND_ROUND_ROBIN,
    group_capacities,
    rr_pairings_by_round,
)
from bracket_engine.utils.match_generation import new_match
from bracket_engine.utils.seeding import SeededParticipant

GROUP_ROUND_ORDINAL = 1


def group_label(index: int) -> str:
    """
    0-based group index -> label: 0 -> "A", 25 -> "Z", 26 -> "AA", 27 -> "AB".
    """
    label = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        label = chr(ord("A") + rem) + label
    return label


def group_code(group_id: str, index_in_group: int) -> str:
    """Match code for the n-th (1-based) match of a group: G{group}-{nn}."""
    return f"G{group_id}-{index_in_group:02d}"


def snake_assign(seeded: List[SeededParticipant], group_count: int) -> Dict[str, List[SeededParticipant]]:
    """
    Distribute seeded participants into groups by snake order.

    Direction flips after each pass over the groups; a group that already holds
    its capacity is skipped without breaking the snake.

    Returns:
        Ordered dict of group label -> members (in seed order)
    """
    if group_count < 1:
        raise ValueError(f"group_count must be >= 1, got {group_count}")

    capacities = group_capacities(len(seeded), group_count)
    members: List[List[SeededParticipant]] = [[] for _ in range(group_count)]

    ordered = sorted(seeded, key=lambda p: p.seed)
    forward = True
    position = 0
    for participant in ordered:
        while True:
            group_index = position if forward else group_count - 1 - position
            position += 1
            if position == group_count:
                position = 0
                forward = not forward
            if len(members[group_index]) < capacities[group_index]:
                members[group_index].append(participant)
                break

    return {group_label(i): sorted(group, key=lambda p: p.seed) for i, group in enumerate(members)}


def group_pairings(group_size: int) -> List[Tuple[int, int, int, int]]:
    """Matchday-ordered pairings for one group (see rr_pairings_by_round)."""
    if group_size < 2:
        return []
    return sorted(rr_pairings_by_round(group_size), key=lambda p: (p[0], p[1]))


def build_group_matches(
    groups: Dict[str, List[SeededParticipant]],
    number_start: int = 1,
) -> List[Match]:
    """
    Build every group-stage match.

    Match numbers run contiguously within each group (group A first). Position
    0 in a group is its best seed, so side A holds the better seed.
    """
    round_name = ROUND_ROUND_ROBIN if len(groups) == 1 else ROUND_GROUP_STAGE
    matches: List[Match] = []
    number = number_start
    sequence = 1

    for group_id, members in groups.items():
        for index_in_group, (_matchday, _seq, idx_a, idx_b) in enumerate(group_pairings(len(members)), start=1):
            matches.append(
                new_match(
                    stage=STAGE_GROUP,
                    round_ordinal=GROUP_ROUND_ORDINAL,
                    round_name=round_name,
                    sequence_in_round=sequence,
                    match_number=number,
                    match_code=group_code(group_id, index_in_group),
                    slot_a=ConcreteSlot(members[idx_a].participant_id),
                    slot_b=ConcreteSlot(members[idx_b].participant_id),
                    group_id=group_id,
                )
            )
            number += 1
            sequence += 1

    return matches


def matchday_of(matches: List[Match]) -> Dict[str, int]:
    """
    Recover each group match's matchday from its position in the group.

    Only valid for matches produced by build_group_matches.
    """
    result: Dict[str, int] = {}
    by_group: Dict[str, List[Match]] = {}
    for match in matches:
        if match.group_id is None:
            continue
        by_group.setdefault(match.group_id, []).append(match)

    for group_matches in by_group.values():
        participants = set()
        for m in group_matches:
            participants.add(m.participant_a_id)
            participants.add(m.participant_b_id)
        pairings = group_pairings(len(participants))
        ordered = sorted(group_matches, key=lambda m: m.match_number)
        for match, (matchday, _seq, _a, _b) in zip(ordered, pairings):
            result[match.match_code] = matchday
    return result
