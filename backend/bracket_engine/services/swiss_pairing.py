"""
Swiss pairing - one round at a time.

Round 1: top half vs bottom half by seed (seed i vs seed i + N/2).
Round r+1: standings order (points, Buchholz, seed), adjacent participants who
have not met, found by backtracking. A rematch is accepted only when no
rematch-free pairing exists. Odd N: the lowest-standing participant without a
bye sits out and is credited a win.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from bracket_engine.models.match import STAGE_SWISS, Match
from bracket_engine.models.slot import BYE, ConcreteSlot
from bracket_engine.services.standings import SwissStanding
from bracket_engine.utils.match_generation import new_match

logger = logging.getLogger(__name__)

SWISS_PREFIX = "S"


@dataclass
class SwissRoundPairing:
    round_number: int
    pairs: List[Tuple[str, str]] = field(default_factory=list)
    bye_participant_id: Optional[str] = None
    rematches: int = 0


def swiss_round_name(round_number: int) -> str:
    return f"Swiss Round {round_number}"


def swiss_code(round_number: int, sequence: int) -> str:
    return f"{SWISS_PREFIX}{round_number}-{sequence}"


def pair_first_round(seeded_ids: Sequence[str]) -> SwissRoundPairing:
    """
    Seed order in, round-1 pairing out.

    With an odd count the last seed takes the bye and the rest split in half.
    """
    ids = list(seeded_ids)
    result = SwissRoundPairing(round_number=1)
    if len(ids) % 2 == 1:
        result.bye_participant_id = ids.pop()
    half = len(ids) // 2
    result.pairs = [(ids[i], ids[i + half]) for i in range(half)]
    return result


def select_bye(standings: Sequence[SwissStanding]) -> Optional[str]:
    """Lowest-standing participant who has not had a bye (lowest overall if everyone has)."""
    if len(standings) % 2 == 0:
        return None
    for row in reversed(standings):
        if not row.had_bye:
            return row.participant_id
    return standings[-1].participant_id


def _pair_without_rematch(order: List[str], played: Set[frozenset]) -> Optional[List[Tuple[str, str]]]:
    """Depth-first: pair the first unpaired participant with the nearest legal opponent."""
    if not order:
        return []
    first = order[0]
    for index in range(1, len(order)):
        candidate = order[index]
        if frozenset((first, candidate)) in played:
            continue
        rest = order[1:index] + order[index + 1:]
        tail = _pair_without_rematch(rest, played)
        if tail is not None:
            return [(first, candidate)] + tail
    return None


def pair_next_round(
    round_number: int,
    standings: Sequence[SwissStanding],
    played: Set[frozenset],
) -> SwissRoundPairing:
    """
    Pair round `round_number` from current standings (already in rank order).

    Args:
        standings: output of compute_swiss_standings
        played: unordered pairs that have already met (see played_pairs)
    """
    result = SwissRoundPairing(round_number=round_number)
    bye_id = select_bye(standings)
    result.bye_participant_id = bye_id
    order = [row.participant_id for row in standings if row.participant_id != bye_id]

    pairs = _pair_without_rematch(order, played)
    if pairs is None:
        logger.info("Swiss round %s: no rematch-free pairing, falling back to adjacent pairs", round_number)
        pairs = [(order[i], order[i + 1]) for i in range(0, len(order) - 1, 2)]
        result.rematches = sum(1 for a, b in pairs if frozenset((a, b)) in played)
    result.pairs = pairs
    return result


def build_swiss_round(pairing: SwissRoundPairing, number_start: int) -> List[Match]:
    """Materialise one Swiss round. The bye match (if any) comes last."""
    matches: List[Match] = []
    number = number_start
    name = swiss_round_name(pairing.round_number)
    sequence = 1
    for participant_a, participant_b in pairing.pairs:
        matches.append(
            new_match(
                stage=STAGE_SWISS,
                round_ordinal=pairing.round_number,
                round_name=name,
                sequence_in_round=sequence,
                match_number=number,
                match_code=swiss_code(pairing.round_number, sequence),
                slot_a=ConcreteSlot(participant_a),
                slot_b=ConcreteSlot(participant_b),
            )
        )
        number += 1
        sequence += 1
    if pairing.bye_participant_id is not None:
        matches.append(
            new_match(
                stage=STAGE_SWISS,
                round_ordinal=pairing.round_number,
                round_name=name,
                sequence_in_round=sequence,
                match_number=number,
                match_code=swiss_code(pairing.round_number, sequence),
                slot_a=ConcreteSlot(pairing.bye_participant_id),
                slot_b=BYE,
            )
        )
    return matches
