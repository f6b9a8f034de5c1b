"""
Bracket Invariant Verifier
==========================
Hard-stop safety check run after generation and after every resolution.

If any violation is found, the caller rolls the transaction back and
InconsistentBracketState is raised with the InvariantReport attached.

Invariants:
  A) Distinct concrete participants in round 1 == participants supplied
  B) Every placeholder references an existing feeder in an earlier round
  C) winner_side is set iff status is COMPLETED
  D) Elimination rounds halve; losers rounds alternate same-count / halve
  E) Hybrid knockout round 1 holds group_count x advancers_per_group entrants
  F) Match numbers and codes are unique in the bracket
  G) Every concrete participant is a bracket entrant
  H) READY matches have two concrete slots
  I) A fresh draft holds exactly the match counts its plan fixes up front
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bracket_engine.models.bracket import Bracket, BracketFormat
from bracket_engine.models.match import (
    MATCH_COMPLETED,
    MATCH_READY,
    SIDE_A,
    SIDE_B,
    STAGE_GRAND_FINAL,
    STAGE_GROUP,
    STAGE_KNOCKOUT,
    STAGE_LOSERS,
    STAGE_SWISS,
    STAGE_WINNERS,
    Match,
)
from bracket_engine.models.slot import SLOT_CONCRETE, SOURCE_GROUP, SOURCE_MATCH
from bracket_engine.services.bracket_errors import InconsistentBracketState
from bracket_engine.services.draw_rules import GenerationPlan
from bracket_engine.utils.match_generation import expected_match_counts

logger = logging.getLogger(__name__)


# ─── Data structures ─────────────────────────────────────────────────────

@dataclass
class Violation:
    code: str
    message: str
    match_code: Optional[str] = None
    participant_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


@dataclass
class InvariantStats:
    matches_checked: int = 0
    placeholders_checked: int = 0
    round_one_participants: int = 0
    rounds_checked: int = 0


@dataclass
class InvariantReport:
    ok: bool
    violations: List[Violation] = field(default_factory=list)
    stats: InvariantStats = field(default_factory=InvariantStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "violations": [
                {
                    "code": v.code,
                    "message": v.message,
                    "match_code": v.match_code,
                    "participant_id": v.participant_id,
                    "context": v.context,
                }
                for v in self.violations
            ],
            "stats": {
                "matches_checked": self.stats.matches_checked,
                "placeholders_checked": self.stats.placeholders_checked,
                "round_one_participants": self.stats.round_one_participants,
                "rounds_checked": self.stats.rounds_checked,
            },
        }


# ─── Invariant A: round-1 participants ───────────────────────────────────

def _check_round_one(
    matches: Sequence[Match], participant_count: int, entrant_ids: set, stats: InvariantStats
) -> List[Violation]:
    """Distinct entrants across the first round must equal N; non-entrants do not count."""
    participants = set()
    for m in matches:
        if m.round_ordinal != 1:
            continue
        for side in (SIDE_A, SIDE_B):
            pid = m.participant_on(side)
            if pid is not None and pid in entrant_ids:
                participants.add(pid)
    stats.round_one_participants = len(participants)
    if len(participants) != participant_count:
        return [
            Violation(
                code="ROUND_ONE_PARTICIPANTS",
                message=f"Round 1 references {len(participants)} participants, expected {participant_count}",
                context={"found": len(participants), "expected": participant_count},
            )
        ]
    return []


# ─── Invariant B: placeholder references ─────────────────────────────────

def _check_references(matches: Sequence[Match], stats: InvariantStats) -> List[Violation]:
    """Every placeholder source must exist and come from an earlier round (or the group stage)."""
    violations: List[Violation] = []
    by_code = {m.match_code: m for m in matches}
    group_sizes: Dict[str, set] = defaultdict(set)
    group_ordinals: Dict[str, int] = {}
    for m in matches:
        if m.group_id is None:
            continue
        for pid in (m.participant_a_id, m.participant_b_id):
            if pid is not None:
                group_sizes[m.group_id].add(pid)
        group_ordinals[m.group_id] = m.round_ordinal

    for m in matches:
        for side in (SIDE_A, SIDE_B):
            source = m.source_of(side)
            if source is None:
                continue
            stats.placeholders_checked += 1
            if source.source_type == SOURCE_MATCH:
                feeder = by_code.get(source.source_ref)
                if feeder is None:
                    violations.append(
                        Violation(
                            code="DANGLING_PLACEHOLDER",
                            message=f"{m.match_code} side {side} references unknown match {source.source_ref}",
                            match_code=m.match_code,
                        )
                    )
                elif feeder.round_ordinal >= m.round_ordinal:
                    violations.append(
                        Violation(
                            code="PLACEHOLDER_ORDER",
                            message=(
                                f"{m.match_code} (round {m.round_ordinal}) is fed by "
                                f"{feeder.match_code} (round {feeder.round_ordinal})"
                            ),
                            match_code=m.match_code,
                        )
                    )
            elif source.source_type == SOURCE_GROUP:
                members = group_sizes.get(source.source_ref)
                if members is None:
                    violations.append(
                        Violation(
                            code="DANGLING_PLACEHOLDER",
                            message=f"{m.match_code} side {side} references unknown group {source.source_ref}",
                            match_code=m.match_code,
                        )
                    )
                elif source.rank is None or not 1 <= source.rank <= len(members):
                    violations.append(
                        Violation(
                            code="DANGLING_PLACEHOLDER",
                            message=(
                                f"{m.match_code} side {side} references rank {source.rank} "
                                f"of group {source.source_ref} ({len(members)} members)"
                            ),
                            match_code=m.match_code,
                        )
                    )
                elif group_ordinals[source.source_ref] >= m.round_ordinal:
                    violations.append(
                        Violation(
                            code="PLACEHOLDER_ORDER",
                            message=f"{m.match_code} is not after group {source.source_ref}",
                            match_code=m.match_code,
                        )
                    )
            else:
                violations.append(
                    Violation(
                        code="DANGLING_PLACEHOLDER",
                        message=f"{m.match_code} side {side} has unknown source type {source.source_type}",
                        match_code=m.match_code,
                    )
                )
    return violations


# ─── Invariant C: winner iff completed ───────────────────────────────────

def _check_winner_status(matches: Sequence[Match]) -> List[Violation]:
    violations: List[Violation] = []
    for m in matches:
        completed = m.status == MATCH_COMPLETED
        if completed != (m.winner_side is not None):
            violations.append(
                Violation(
                    code="WINNER_STATUS_MISMATCH",
                    message=f"{m.match_code} has status {m.status} and winner_side {m.winner_side}",
                    match_code=m.match_code,
                )
            )
            continue
        if completed and (m.winner_side not in (SIDE_A, SIDE_B) or m.participant_on(m.winner_side) is None):
            violations.append(
                Violation(
                    code="WINNER_NOT_CONCRETE",
                    message=f"{m.match_code} winner side {m.winner_side} holds no participant",
                    match_code=m.match_code,
                )
            )
    return violations


# ─── Invariant D: round shape ────────────────────────────────────────────

def _round_counts(matches: Sequence[Match], stage: str) -> List[int]:
    counts: Dict[int, int] = defaultdict(int)
    for m in matches:
        if m.stage == stage:
            counts[m.round_ordinal] += 1
    return [counts[ordinal] for ordinal in sorted(counts)]


def _check_round_shape(matches: Sequence[Match], stats: InvariantStats) -> List[Violation]:
    """Each elimination round has ceil(previous / 2) matches; losers rounds alternate same / halve."""
    violations: List[Violation] = []
    for stage in (STAGE_KNOCKOUT, STAGE_WINNERS):
        counts = _round_counts(matches, stage)
        stats.rounds_checked += len(counts)
        for index in range(1, len(counts)):
            expected = (counts[index - 1] + 1) // 2
            if counts[index] != expected:
                violations.append(
                    Violation(
                        code="ROUND_SHAPE",
                        message=f"{stage} round {index + 1} has {counts[index]} matches, expected {expected}",
                        context={"stage": stage, "counts": counts},
                    )
                )
        if counts and counts[-1] != 1:
            violations.append(
                Violation(
                    code="ROUND_SHAPE",
                    message=f"{stage} final round has {counts[-1]} matches",
                    context={"stage": stage, "counts": counts},
                )
            )

    losers = _round_counts(matches, STAGE_LOSERS)
    stats.rounds_checked += len(losers)
    for index in range(1, len(losers)):
        # L1 -> L2 keeps the count, L2 -> L3 halves, and so on
        expected = losers[index - 1] if index % 2 == 1 else (losers[index - 1] + 1) // 2
        if losers[index] != expected:
            violations.append(
                Violation(
                    code="ROUND_SHAPE",
                    message=f"{STAGE_LOSERS} round {index + 1} has {losers[index]} matches, expected {expected}",
                    context={"stage": STAGE_LOSERS, "counts": losers},
                )
            )
    return violations


# ─── Invariant E: hybrid knockout entrants ───────────────────────────────

def _check_hybrid_entrants(matches: Sequence[Match], group_count: int, advancers: int) -> List[Violation]:
    knockout = [m for m in matches if m.stage == STAGE_KNOCKOUT]
    if not knockout:
        return [Violation(code="HYBRID_ENTRANTS", message="Hybrid bracket has no knockout stage")]
    first = min(m.round_ordinal for m in knockout)
    entrants = set()
    for m in knockout:
        if m.round_ordinal != first:
            continue
        for side in (SIDE_A, SIDE_B):
            source = m.source_of(side)
            if source is not None and source.source_type == SOURCE_GROUP:
                entrants.add((source.source_ref, source.rank))
    expected = group_count * advancers
    if len(entrants) != expected:
        return [
            Violation(
                code="HYBRID_ENTRANTS",
                message=f"Knockout round 1 has {len(entrants)} group entrants, expected {expected}",
                context={"found": len(entrants), "expected": expected},
            )
        ]
    return []


# ─── Invariants F, G, H ──────────────────────────────────────────────────

def _check_identity(matches: Sequence[Match]) -> List[Violation]:
    violations: List[Violation] = []
    seen_numbers: Dict[int, str] = {}
    seen_codes = set()
    for m in matches:
        if m.match_code in seen_codes:
            violations.append(
                Violation(code="DUPLICATE_MATCH_CODE", message=f"Match code {m.match_code} repeated", match_code=m.match_code)
            )
        seen_codes.add(m.match_code)
        if m.match_number in seen_numbers:
            violations.append(
                Violation(
                    code="DUPLICATE_MATCH_NUMBER",
                    message=f"Match number {m.match_number} used by {seen_numbers[m.match_number]} and {m.match_code}",
                    match_code=m.match_code,
                )
            )
        seen_numbers[m.match_number] = m.match_code
    return violations


def _check_participants(matches: Sequence[Match], entrant_ids: set) -> List[Violation]:
    violations: List[Violation] = []
    for m in matches:
        for side in (SIDE_A, SIDE_B):
            pid = m.participant_on(side)
            if pid is not None and pid not in entrant_ids:
                violations.append(
                    Violation(
                        code="UNKNOWN_PARTICIPANT",
                        message=f"{m.match_code} side {side} holds non-entrant {pid}",
                        match_code=m.match_code,
                        participant_id=pid,
                    )
                )
    return violations


def _check_ready(matches: Sequence[Match]) -> List[Violation]:
    return [
        Violation(
            code="READY_NOT_CONCRETE",
            message=f"{m.match_code} is READY without two concrete slots",
            match_code=m.match_code,
        )
        for m in matches
        if m.status == MATCH_READY and not (m.slot_a_kind == SLOT_CONCRETE and m.slot_b_kind == SLOT_CONCRETE)
    ]


# ─── Invariant I: match counts per plan ──────────────────────────────────

_COUNT_STAGES = {
    "group_matches": (STAGE_GROUP,),
    "knockout_matches": (STAGE_KNOCKOUT, STAGE_WINNERS),
    "losers_matches": (STAGE_LOSERS,),
    "grand_final_matches": (STAGE_GRAND_FINAL,),
}


def check_match_counts(plan: GenerationPlan, matches: Sequence[Match]) -> List[Violation]:
    """Compare a draft against expected_match_counts; Swiss drafts hold round 1 only."""
    expected = expected_match_counts(plan)
    found = {key: sum(1 for m in matches if m.stage in stages) for key, stages in _COUNT_STAGES.items()}
    found["swiss_matches_per_round"] = sum(1 for m in matches if m.stage == STAGE_SWISS and m.round_ordinal == 1)
    return [
        Violation(
            code="MATCH_COUNT",
            message=f"{key}: built {found[key]}, plan expects {expected[key]}",
            context={"count": key, "found": found[key], "expected": expected[key]},
        )
        for key in expected
        if found[key] != expected[key]
    ]


# ─── Public API ──────────────────────────────────────────────────────────

def verify_bracket(bracket: Bracket, entrant_ids: Iterable[str], matches: Iterable[Match]) -> InvariantReport:
    """Recompute every invariant for one bracket. Pure; never raises for a violation."""
    matches = sorted(matches, key=lambda m: (m.round_ordinal, m.match_number))
    entrant_set = set(entrant_ids)
    stats = InvariantStats(matches_checked=len(matches))
    violations: List[Violation] = []

    violations += _check_round_one(matches, bracket.participant_count, entrant_set, stats)
    violations += _check_references(matches, stats)
    violations += _check_winner_status(matches)
    violations += _check_round_shape(matches, stats)
    if bracket.format == BracketFormat.hybrid.value:
        violations += _check_hybrid_entrants(matches, bracket.group_count or 0, bracket.advancers_per_group or 0)
    violations += _check_identity(matches)
    violations += _check_participants(matches, entrant_set)
    violations += _check_ready(matches)

    return InvariantReport(ok=not violations, violations=violations, stats=stats)


def ensure_bracket_consistent(bracket: Bracket, entrant_ids: Iterable[str], matches: Iterable[Match]) -> InvariantReport:
    """verify_bracket, raising InconsistentBracketState (logged at ERROR) on any violation."""
    report = verify_bracket(bracket, entrant_ids, matches)
    if not report.ok:
        logger.error(
            "Bracket invariants violated for tournament=%s event=%s: %s",
            bracket.tournament_id,
            bracket.event_type,
            [v.code for v in report.violations],
        )
        raise InconsistentBracketState(
            f"{len(report.violations)} bracket invariant violation(s)",
            context=report.to_dict(),
        )
    return report


def ensure_plan_counts(plan: GenerationPlan, matches: Iterable[Match]) -> None:
    """Raise InconsistentBracketState (logged at ERROR) when a draft does not match its plan."""
    violations = check_match_counts(plan, list(matches))
    if violations:
        logger.error("Draft does not match its %s plan: %s", plan.format.value, [v.message for v in violations])
        raise InconsistentBracketState(
            f"{len(violations)} match count violation(s)",
            context={
                "plan": plan.to_dict(),
                "violations": [v.context for v in violations],
            },
        )
