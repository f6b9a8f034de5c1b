"""
Match generation utilities.

Shared Match constructor for every builder, plus the expected match counts
per generation plan (checked against every freshly built draft).
"""

from typing import Dict, Optional

from bracket_engine.models.bracket import BracketFormat
from bracket_engine.models.match import MATCH_PENDING, MATCH_READY, Match
from bracket_engine.models.slot import SLOT_CONCRETE, Slot
from bracket_engine.services.draw_rules import GenerationPlan, group_capacities, rr_matches_per_group


def new_match(
    stage: str,
    round_ordinal: int,
    round_name: str,
    sequence_in_round: int,
    match_number: int,
    match_code: str,
    slot_a: Slot,
    slot_b: Slot,
    group_id: Optional[str] = None,
) -> Match:
    """Build an unsaved Match. READY when both slots are concrete, PENDING otherwise."""
    match = Match(
        stage=stage,
        round_ordinal=round_ordinal,
        round_name=round_name,
        sequence_in_round=sequence_in_round,
        match_number=match_number,
        match_code=match_code,
        group_id=group_id,
    )
    match.set_slot("A", slot_a)
    match.set_slot("B", slot_b)
    if slot_a.kind == SLOT_CONCRETE and slot_b.kind == SLOT_CONCRETE:
        match.status = MATCH_READY
    else:
        match.status = MATCH_PENDING
    return match


def group_stage_matches(plan: GenerationPlan) -> int:
    """Total round robin matches across all groups."""
    if not plan.group_count:
        return 0
    return sum(rr_matches_per_group(size) for size in group_capacities(plan.participant_count, plan.group_count))


def expected_match_counts(plan: GenerationPlan) -> Dict[str, int]:
    """
    Calculate match counts for a plan.
    Returns dict with: group_matches, knockout_matches, losers_matches, grand_final_matches, swiss_matches_per_round
    """
    counts = {
        "group_matches": 0,
        "knockout_matches": 0,
        "losers_matches": 0,
        "grand_final_matches": 0,
        "swiss_matches_per_round": 0,
    }

    if plan.format in (BracketFormat.round_robin, BracketFormat.hybrid):
        counts["group_matches"] = group_stage_matches(plan)

    if plan.bracket_size:
        # Every slot pair is materialised, byes included
        counts["knockout_matches"] = plan.bracket_size - 1

    if plan.format == BracketFormat.double_elimination:
        # Each losers round pair: bracket_size/4, bracket_size/4, bracket_size/8, bracket_size/8, ...
        losers = 0
        matches = plan.bracket_size // 4
        for index in range(plan.losers_round_count):
            losers += matches
            if index % 2 == 1:
                matches //= 2
        counts["losers_matches"] = losers
        counts["grand_final_matches"] = 2

    if plan.format == BracketFormat.swiss_system:
        counts["swiss_matches_per_round"] = (plan.participant_count + 1) // 2

    return counts
