"""
Draw Rules - format validation and generation plans (single source of truth).

All bracket-shape math lives here: bracket sizes, byes, group counts,
round counts and round names. Builders import from this module; do NOT
duplicate these rules elsewhere.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Union

from bracket_engine.models.bracket import BracketFormat
from bracket_engine.services.bracket_errors import InvalidFormatParameters, UnsupportedFormat

GROUP_FORMATS = frozenset({BracketFormat.round_robin, BracketFormat.hybrid})
ELIMINATION_FORMATS = frozenset({BracketFormat.single_elimination, BracketFormat.double_elimination})

ROUND_GROUP_STAGE = "Group Stage"
ROUND_ROUND_ROBIN = "Round Robin"
ROUND_GRAND_FINAL = "Grand Final"
ROUND_GRAND_FINAL_RESET = "Grand Final Reset"


@dataclass
class GenerationPlan:
    """Concrete generation plan for one bracket."""

    format: BracketFormat
    participant_count: int
    bracket_size: Optional[int] = None  # knockout bracket size (power of two)
    byes: int = 0
    round_count: int = 0  # knockout rounds (winners bracket for double elimination)
    losers_round_count: int = 0
    group_size: Optional[int] = None
    group_count: Optional[int] = None
    advancers_per_group: Optional[int] = None
    knockout_entrants: Optional[int] = None
    knockout_start_round: Optional[str] = None
    swiss_rounds: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "format": self.format.value,
            "participant_count": self.participant_count,
            "bracket_size": self.bracket_size,
            "byes": self.byes,
            "round_count": self.round_count,
            "losers_round_count": self.losers_round_count,
            "group_size": self.group_size,
            "group_count": self.group_count,
            "advancers_per_group": self.advancers_per_group,
            "knockout_entrants": self.knockout_entrants,
            "knockout_start_round": self.knockout_start_round,
            "swiss_rounds": self.swiss_rounds,
        }


# =============================================================================
# Shape helpers
# =============================================================================

def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (n >= 1)."""
    if n < 1:
        raise ValueError(f"next_power_of_two: n must be >= 1, got {n}")
    return 1 << (n - 1).bit_length()


def knockout_round_name(matches_in_round: int) -> str:
    """Round name by distance to the final."""
    if matches_in_round == 1:
        return "Final"
    if matches_in_round == 2:
        return "Semi-Final"
    if matches_in_round == 4:
        return "Quarter-Final"
    return f"Round of {matches_in_round * 2}"


def losers_round_name(round_index: int, total_losers_rounds: int) -> str:
    """Name for losers bracket round (1-based)."""
    if round_index == total_losers_rounds:
        return "Losers Final"
    return f"Losers Round {round_index}"


def losers_round_count(bracket_size: int) -> int:
    """Losers bracket rounds for a power-of-two winners bracket: 2 * (log2(size) - 1)."""
    if bracket_size < 4:
        return 0
    return 2 * (int(math.log2(bracket_size)) - 1)


def swiss_round_count(participant_count: int) -> int:
    """Swiss rounds fixed up front: ceil(log2(N))."""
    if participant_count <= 2:
        return 1
    return math.ceil(math.log2(participant_count))


def group_capacities(participant_count: int, group_count: int) -> List[int]:
    """
    Group sizes when N is not divisible: the first groups take the remainder,
    so the last groups are one participant smaller. Sizes never differ by more than 1.
    """
    base, remainder = divmod(participant_count, group_count)
    return [base + 1 if index < remainder else base for index in range(group_count)]


def rr_matches_per_group(group_size: int) -> int:
    """Return number of round robin matches in a group: C(n, 2) = n*(n-1)/2."""
    return (group_size * (group_size - 1)) // 2


def rr_pairings_by_round(group_size: int) -> list[tuple[int, int, int, int]]:
    """
    Round-robin pairings. Returns list of (matchday, sequence_in_matchday, idx_a, idx_b).
    idx_a, idx_b are 0-based group positions (seeds 1-4 in group = indices 0-3).

    Group size 4 uses exact preset order (1v2 last):
    - Matchday 1: 1v4, 2v3  -> (0,3), (1,2)
    - Matchday 2: 1v3, 2v4  -> (0,2), (1,3)
    - Matchday 3: 1v2, 3v4  -> (0,1), (2,3)

    Other sizes: circle method (odd sizes sit one position out per matchday).
    """
    if group_size == 4:
        return [
            (1, 1, 0, 3),
            (1, 2, 1, 2),
            (2, 1, 0, 2),
            (2, 2, 1, 3),
            (3, 1, 0, 1),
            (3, 2, 2, 3),
        ]

    n = group_size
    n2 = n + 1 if n % 2 == 1 else n  # Add BYE for odd n
    half = n2 // 2
    rounds_count = n2 - 1

    bye_idx = n if n % 2 == 1 else -1

    result: list[tuple[int, int, int, int]] = []
    positions = list(range(n2))

    for round_num in range(1, rounds_count + 1):
        seq = 0
        for i in range(half):
            j = n2 - 1 - i
            a, b = positions[i], positions[j]
            if a == bye_idx or b == bye_idx:
                continue
            seq += 1
            result.append((round_num, seq, min(a, b), max(a, b)))
        # Rotate: keep 0, move last to second, shift others
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]

    return result


# =============================================================================
# Validation
# =============================================================================

def parse_format(value: Union[str, BracketFormat]) -> BracketFormat:
    """Normalize a requested format. Unknown values raise UnsupportedFormat."""
    if isinstance(value, BracketFormat):
        return value
    key = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return BracketFormat(key)
    except ValueError:
        raise UnsupportedFormat(
            f"Unsupported bracket format: {value!r}",
            context={"format": value, "supported": [f.value for f in BracketFormat]},
        ) from None


def _validate_group_options(
    participant_count: int,
    group_size: Optional[int],
    advancers_per_group: Optional[int],
    require_advancers: bool,
) -> List[int]:
    """Validate group parameters and return group capacities."""
    if group_size is None:
        raise InvalidFormatParameters("group_size is required for this format")
    if group_size < 2:
        raise InvalidFormatParameters(
            f"group_size must be >= 2, got {group_size}",
            context={"group_size": group_size},
        )
    if require_advancers and advancers_per_group is None:
        raise InvalidFormatParameters("advancers_per_group is required for hybrid brackets")
    if advancers_per_group is not None:
        if advancers_per_group < 1:
            raise InvalidFormatParameters(
                f"advancers_per_group must be >= 1, got {advancers_per_group}",
                context={"advancers_per_group": advancers_per_group},
            )
        if advancers_per_group >= group_size:
            raise InvalidFormatParameters(
                f"advancers_per_group ({advancers_per_group}) must be smaller than group_size ({group_size})",
                context={"group_size": group_size, "advancers_per_group": advancers_per_group},
            )

    group_count = math.ceil(participant_count / group_size)
    capacities = group_capacities(participant_count, group_count)
    smallest = min(capacities)
    if smallest < 2:
        raise InvalidFormatParameters(
            f"group_size {group_size} leaves a group of {smallest} for {participant_count} participants",
            context={"group_size": group_size, "capacities": capacities},
        )
    if advancers_per_group is not None and smallest <= advancers_per_group:
        raise InvalidFormatParameters(
            f"smallest group has {smallest} participants; cannot advance {advancers_per_group}",
            context={"capacities": capacities, "advancers_per_group": advancers_per_group},
        )
    return capacities


def build_generation_plan(
    bracket_format: Union[str, BracketFormat],
    participant_count: int,
    group_size: Optional[int] = None,
    advancers_per_group: Optional[int] = None,
) -> GenerationPlan:
    """
    Map a requested format + participant count + options to a generation plan.

    group_size / advancers_per_group are only meaningful for round_robin and hybrid;
    they are ignored for the other formats.

    Raises:
        UnsupportedFormat: unknown format
        InvalidFormatParameters: group parameters violate the format rules
    """
    fmt = parse_format(bracket_format)
    plan = GenerationPlan(format=fmt, participant_count=participant_count)

    if fmt in ELIMINATION_FORMATS:
        size = next_power_of_two(participant_count)
        plan.bracket_size = size
        plan.byes = size - participant_count
        plan.round_count = int(math.log2(size))
        plan.knockout_entrants = participant_count
        plan.knockout_start_round = knockout_round_name(size // 2)
        if fmt == BracketFormat.double_elimination:
            plan.losers_round_count = losers_round_count(size)
        return plan

    if fmt == BracketFormat.swiss_system:
        plan.swiss_rounds = swiss_round_count(participant_count)
        plan.round_count = plan.swiss_rounds
        return plan

    if fmt == BracketFormat.round_robin:
        if group_size is None:
            # Single all-play-all group
            plan.group_size = participant_count
            plan.group_count = 1
            plan.round_count = 1
            return plan
        capacities = _validate_group_options(
            participant_count, group_size, advancers_per_group, require_advancers=False
        )
        plan.group_size = group_size
        plan.group_count = len(capacities)
        plan.round_count = 1
        return plan

    # hybrid
    capacities = _validate_group_options(participant_count, group_size, advancers_per_group, require_advancers=True)
    group_count = len(capacities)
    entrants = group_count * advancers_per_group
    if entrants < 2:
        raise InvalidFormatParameters(
            f"hybrid knockout needs at least 2 entrants, plan yields {entrants}",
            context={"group_count": group_count, "advancers_per_group": advancers_per_group},
        )
    size = next_power_of_two(entrants)
    plan.group_size = group_size
    plan.group_count = group_count
    plan.advancers_per_group = advancers_per_group
    plan.knockout_entrants = entrants
    plan.bracket_size = size
    plan.byes = size - entrants
    plan.round_count = int(math.log2(size))
    plan.knockout_start_round = knockout_round_name(size // 2)
    return plan
