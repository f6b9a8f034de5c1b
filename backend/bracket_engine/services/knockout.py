"""
Knockout assembly: single elimination, double elimination and the knockout
half of hybrid brackets.

Round 1 is laid out in standard bracket-fold order; seeds beyond the entrant
count become ByeSlots, so byes fall to the top seeds. Later rounds reference
their feeders by match code (Placeholder(MATCH, code, WINNER|LOSER)); nothing
is resolved here. Bye auto-advance is the advancement service's job.
"""

from __future__ import annotations

from typing import List, Sequence

from bracket_engine.models.match import (
    GRAND_FINAL_CODE,
    GRAND_FINAL_RESET_CODE,
    STAGE_GRAND_FINAL,
    STAGE_KNOCKOUT,
    STAGE_LOSERS,
    STAGE_WINNERS,
    Match,
)
from bracket_engine.models.slot import BYE, PlaceholderSlot, Slot
from bracket_engine.services.draw_rules import (
    ROUND_GRAND_FINAL,
    ROUND_GRAND_FINAL_RESET,
    knockout_round_name,
    losers_round_count,
    losers_round_name,
    next_power_of_two,
)
from bracket_engine.utils.match_generation import new_match

KNOCKOUT_PREFIX = "KO"
WINNERS_PREFIX = "W"
LOSERS_PREFIX = "L"


def bracket_fold_positions(n: int) -> List[int]:
    """Standard bracket-fold positions for *n* entries.

    Returns a flat list of seed numbers in bracket position order.
    Consecutive pairs indicate which seeds meet if chalk holds:
      4-entry  -> [1, 4, 2, 3]       -> (1v4), (2v3)
      8-entry  -> [1, 8, 4, 5, ...]   -> (1v8), (4v5), ...
      16-entry -> [1, 16, 8, 9, ...]   -> (1v16), (8v9), ...
    """
    if n == 2:
        return [1, 2]

    half = bracket_fold_positions(n // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(n + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]

    return top + bot


def round_code(prefix: str, round_index: int, sequence: int) -> str:
    return f"{prefix}{round_index}-{sequence}"


def first_round_slots(seeded_slots: Sequence[Slot]) -> List[Slot]:
    """
    Lay seeded entrant slots (index 0 = seed 1) into bracket positions.

    Positions whose seed exceeds the entrant count get a ByeSlot.
    """
    size = next_power_of_two(len(seeded_slots))
    if size < 2:
        raise ValueError("knockout needs at least 2 entrants")
    count = len(seeded_slots)
    return [seeded_slots[seed - 1] if seed <= count else BYE for seed in bracket_fold_positions(size)]


def _round_one_clashes(group_by_seed: Sequence[str], size: int) -> int:
    """Round-1 pairings in which both entrants come from the same group."""
    positions = bracket_fold_positions(size)
    count = len(group_by_seed)
    clashes = 0
    for i in range(0, size, 2):
        a, b = positions[i], positions[i + 1]
        if a <= count and b <= count and group_by_seed[a - 1] == group_by_seed[b - 1]:
            clashes += 1
    return clashes


def hybrid_entrant_slots(group_ids: Sequence[str], advancers_per_group: int) -> List[PlaceholderSlot]:
    """
    Knockout entrants of a hybrid bracket, in seed order.

    Group winners first (A..Z), then runners-up, then third places. Each later
    rank uses the first rotation or reversal of the group order with the fewest
    same-group round-1 pairings.
    """
    groups = list(group_ids)
    size = next_power_of_two(len(groups) * advancers_per_group)
    order = list(groups)
    ranks = [1] * len(groups)
    for rank in range(2, advancers_per_group + 1):
        candidates = []
        for shift in range(len(groups)):
            rotated = groups[shift:] + groups[:shift]
            candidates.append(rotated)
            candidates.append(list(reversed(rotated)))
        best = min(candidates, key=lambda c: _round_one_clashes(order + c, size))
        order += best
        ranks += [rank] * len(groups)
    return [PlaceholderSlot.group_rank(group_id, rank) for group_id, rank in zip(order, ranks)]


def _chain_rounds(
    first_round: List[Match],
    round_count: int,
    stage: str,
    ordinal_start: int,
    number_start: int,
    code_prefix: str,
    name_prefix: str,
) -> List[Match]:
    """Rounds 2..round_count: match i of round r+1 takes the winners of 2i-1 and 2i."""
    matches: List[Match] = []
    previous = first_round
    number = number_start
    for round_index in range(2, round_count + 1):
        current: List[Match] = []
        match_count = len(previous) // 2
        name = name_prefix + knockout_round_name(match_count)
        for i in range(match_count):
            feeder_a = previous[2 * i]
            feeder_b = previous[2 * i + 1]
            current.append(
                new_match(
                    stage=stage,
                    round_ordinal=ordinal_start + round_index - 1,
                    round_name=name,
                    sequence_in_round=i + 1,
                    match_number=number,
                    match_code=round_code(code_prefix, round_index, i + 1),
                    slot_a=PlaceholderSlot.match_winner(feeder_a.match_code),
                    slot_b=PlaceholderSlot.match_winner(feeder_b.match_code),
                )
            )
            number += 1
        matches.extend(current)
        previous = current
    return matches


def build_elimination_rounds(
    seeded_slots: Sequence[Slot],
    stage: str = STAGE_KNOCKOUT,
    ordinal_start: int = 1,
    number_start: int = 1,
    code_prefix: str = KNOCKOUT_PREFIX,
    name_prefix: str = "",
) -> List[Match]:
    """
    Build a complete single-elimination tree.

    Args:
        seeded_slots: entrant slots in seed order (Concrete or GROUP placeholders)
        stage: stage stamped on every match
        ordinal_start: round ordinal of the first knockout round
        number_start: first match number
        code_prefix: "KO" for knockout, "W" for a winners bracket
        name_prefix: "" or "Winners "
    """
    positions = first_round_slots(seeded_slots)
    size = len(positions)
    round_count = size.bit_length() - 1
    first_name = name_prefix + knockout_round_name(size // 2)

    first_round: List[Match] = []
    number = number_start
    for i in range(size // 2):
        first_round.append(
            new_match(
                stage=stage,
                round_ordinal=ordinal_start,
                round_name=first_name,
                sequence_in_round=i + 1,
                match_number=number,
                match_code=round_code(code_prefix, 1, i + 1),
                slot_a=positions[2 * i],
                slot_b=positions[2 * i + 1],
            )
        )
        number += 1

    later = _chain_rounds(first_round, round_count, stage, ordinal_start, number, code_prefix, name_prefix)
    return first_round + later


def build_single_elimination(seeded_slots: Sequence[Slot], ordinal_start: int = 1, number_start: int = 1) -> List[Match]:
    return build_elimination_rounds(
        seeded_slots,
        stage=STAGE_KNOCKOUT,
        ordinal_start=ordinal_start,
        number_start=number_start,
    )


def build_double_elimination(seeded_slots: Sequence[Slot], number_start: int = 1) -> List[Match]:
    """
    Winners bracket, losers bracket, grand final and grand final reset.

    With k winners rounds the losers bracket has 2(k-1) rounds:
      L1            pairs the losers of W1 (minor)
      L(2m-2), m>=2 winners of the previous losers round vs losers of W_m,
                    crossed in reverse order (major)
      L(2m-1), m<k  pairs the winners of L(2m-2) (minor)

    Round ordinals: W1..Wk = 1..k, L1..L(2k-2) = k+1..3k-2, GF = 3k-1, GF2 = 3k.
    """
    winners = build_elimination_rounds(
        seeded_slots,
        stage=STAGE_WINNERS,
        ordinal_start=1,
        number_start=number_start,
        code_prefix=WINNERS_PREFIX,
        name_prefix="Winners ",
    )
    size = next_power_of_two(len(seeded_slots))
    k = size.bit_length() - 1
    total_losers = losers_round_count(size)

    winners_by_round: List[List[Match]] = [[] for _ in range(k + 1)]
    for match in winners:
        winners_by_round[match.round_ordinal].append(match)

    number = number_start + len(winners)
    losers: List[Match] = []
    losers_by_round: List[List[Match]] = [[]]

    def add_losers_round(round_index: int, pairs: List[tuple]) -> None:
        nonlocal number
        current: List[Match] = []
        for i, (slot_a, slot_b) in enumerate(pairs):
            current.append(
                new_match(
                    stage=STAGE_LOSERS,
                    round_ordinal=k + round_index,
                    round_name=losers_round_name(round_index, total_losers),
                    sequence_in_round=i + 1,
                    match_number=number,
                    match_code=round_code(LOSERS_PREFIX, round_index, i + 1),
                    slot_a=slot_a,
                    slot_b=slot_b,
                )
            )
            number += 1
        losers.extend(current)
        losers_by_round.append(current)

    if total_losers:
        w1 = winners_by_round[1]  # L1 pairs W1 losers in bracket order
        add_losers_round(
            1,
            [
                (PlaceholderSlot.match_loser(w1[2 * i].match_code), PlaceholderSlot.match_loser(w1[2 * i + 1].match_code))
                for i in range(len(w1) // 2)
            ],
        )
        for m in range(2, k + 1):
            survivors = losers_by_round[-1]
            dropping = list(reversed(winners_by_round[m]))
            add_losers_round(
                2 * m - 2,
                [
                    (PlaceholderSlot.match_winner(s.match_code), PlaceholderSlot.match_loser(d.match_code))
                    for s, d in zip(survivors, dropping)
                ],
            )
            if m < k:
                previous = losers_by_round[-1]
                add_losers_round(
                    2 * m - 1,
                    [
                        (
                            PlaceholderSlot.match_winner(previous[2 * i].match_code),
                            PlaceholderSlot.match_winner(previous[2 * i + 1].match_code),
                        )
                        for i in range(len(previous) // 2)
                    ],
                )

    if not losers:
        raise ValueError("double elimination needs at least 3 entrants")
    winners_final = winners_by_round[k][0]

    grand_final = new_match(
        stage=STAGE_GRAND_FINAL,
        round_ordinal=k + total_losers + 1,
        round_name=ROUND_GRAND_FINAL,
        sequence_in_round=1,
        match_number=number,
        match_code=GRAND_FINAL_CODE,
        slot_a=PlaceholderSlot.match_winner(winners_final.match_code),
        slot_b=PlaceholderSlot.match_winner(losers[-1].match_code),
    )
    reset = new_match(
        stage=STAGE_GRAND_FINAL,
        round_ordinal=k + total_losers + 2,
        round_name=ROUND_GRAND_FINAL_RESET,
        sequence_in_round=1,
        match_number=number + 1,
        match_code=GRAND_FINAL_RESET_CODE,
        slot_a=PlaceholderSlot.match_loser(GRAND_FINAL_CODE),
        slot_b=PlaceholderSlot.match_winner(GRAND_FINAL_CODE),
    )
    return winners + losers + [grand_final, reset]
