"""
Advancement: when a match finishes (or a group completes), rewrite the
downstream placeholder slots that reference it.

Works on in-memory Match objects only; the caller owns the session and the
transaction. Every trigger is planned, checked, then applied as one unit:
  - placeholder           -> rewritten
  - already the same slot -> no-op (idempotent)
  - a different slot      -> SlotAlreadyResolved, nothing applied
After each rewrite the downstream match status is refreshed; bye matches
auto-complete and double-bye matches cancel, which cascades further.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from bracket_engine.models.match import (
    GRAND_FINAL_CODE,
    GRAND_FINAL_RESET_CODE,
    MATCH_CANCELLED,
    MATCH_COMPLETED,
    MATCH_PENDING,
    MATCH_READY,
    SIDE_A,
    SIDE_B,
    Match,
)
from bracket_engine.models.slot import (
    BYE,
    ROLE_WINNER,
    SLOT_BYE,
    SLOT_CONCRETE,
    SLOT_PLACEHOLDER,
    SOURCE_GROUP,
    SOURCE_MATCH,
    ConcreteSlot,
    PlaceholderSlot,
    Slot,
)
from bracket_engine.services.bracket_errors import InconsistentBracketState, SlotAlreadyResolved
from bracket_engine.services.standings import rank_group

logger = logging.getLogger(__name__)

TRIGGER_MATCH = "MATCH"
TRIGGER_GROUP = "GROUP"


@dataclass
class SlotRewrite:
    match: Match
    side: str
    slot: Slot


@dataclass
class ResolutionReport:
    rewrites: int = 0
    auto_completed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    ready: List[str] = field(default_factory=list)
    groups_resolved: List[str] = field(default_factory=list)
    touched: List[Match] = field(default_factory=list)

    def merge(self, other: "ResolutionReport") -> None:
        self.rewrites += other.rewrites
        self.auto_completed.extend(other.auto_completed)
        self.cancelled.extend(other.cancelled)
        self.ready.extend(other.ready)
        self.groups_resolved.extend(other.groups_resolved)
        for match in other.touched:
            _touch(self, match)


class PlaceholderResolver:
    """
    Resolver over one bracket's matches.

    Args:
        matches: every match of the bracket (mutated in place)
        seeds: participant id -> seed, for group ranking tie-breaks
    """

    def __init__(self, matches: Iterable[Match], seeds: Dict[str, int]):
        self.matches = sorted(matches, key=lambda m: (m.round_ordinal, m.match_number))
        self.seeds = seeds
        self.by_code: Dict[str, Match] = {m.match_code: m for m in self.matches}
        self.group_matches: Dict[str, List[Match]] = {}
        self.consumers: Dict[Tuple[str, str], List[Tuple[Match, str, PlaceholderSlot]]] = {}

        for match in self.matches:
            if match.group_id is not None:
                self.group_matches.setdefault(match.group_id, []).append(match)
            for side in (SIDE_A, SIDE_B):
                source = match.source_of(side)
                if source is None:
                    continue
                self.consumers.setdefault((source.source_type, source.source_ref), []).append((match, side, source))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def settle(self) -> ResolutionReport:
        """Refresh every open match; auto-advance byes and cascade. Used after building rounds."""
        report = ResolutionReport()
        queue: Deque[Tuple[str, str]] = deque()
        for match in self.matches:
            if match.status in (MATCH_PENDING, MATCH_READY):
                self._refresh(match, report, queue)
        self._drain(queue, report)
        return report

    def match_finished(self, match: Match) -> ResolutionReport:
        """Propagate a completed (or corrected) match, and its group if that group is now done."""
        report = ResolutionReport()
        queue: Deque[Tuple[str, str]] = deque()
        self._enqueue_finished(match, queue)
        self._drain(queue, report)
        return report

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _enqueue_finished(self, match: Match, queue: Deque[Tuple[str, str]]) -> None:
        queue.append((TRIGGER_MATCH, match.match_code))
        if match.group_id is not None and self.group_complete(match.group_id):
            queue.append((TRIGGER_GROUP, match.group_id))

    def _drain(self, queue: Deque[Tuple[str, str]], report: ResolutionReport) -> None:
        while queue:
            kind, ref = queue.popleft()
            if kind == TRIGGER_GROUP:
                rewrites = self._plan_group(ref)
                if rewrites:
                    report.groups_resolved.append(ref)
            else:
                feeder = self.by_code[ref]
                if feeder.match_code == GRAND_FINAL_CODE and self._handle_reset(feeder, report):
                    continue
                rewrites = self._plan_match(feeder)

            effective = self._check(rewrites)
            for rewrite in effective:
                rewrite.match.set_slot(rewrite.side, rewrite.slot)
                report.rewrites += 1
                _touch(report, rewrite.match)
                logger.debug(
                    "Resolved %s side %s <- %s via %s %s",
                    rewrite.match.match_code, rewrite.side, rewrite.slot, kind, ref,
                )
            for match in _unique(r.match for r in effective):
                self._refresh(match, report, queue)

    def _plan_match(self, feeder: Match) -> List[SlotRewrite]:
        if feeder.status not in (MATCH_COMPLETED, MATCH_CANCELLED):
            return []
        return [
            SlotRewrite(target, side, self._outcome(feeder, source.role))
            for target, side, source in self.consumers.get((SOURCE_MATCH, feeder.match_code), [])
        ]

    def _plan_group(self, group_id: str) -> List[SlotRewrite]:
        if not self.group_complete(group_id):
            return []
        ranking = rank_group(self.group_matches[group_id], self.seeds)
        rewrites: List[SlotRewrite] = []
        for target, side, source in self.consumers.get((SOURCE_GROUP, group_id), []):
            if source.rank is None or source.rank > len(ranking):
                raise InconsistentBracketState(
                    f"{target.match_code} references rank {source.rank} of group {group_id} "
                    f"which has {len(ranking)} members",
                    context={"match_code": target.match_code, "group_id": group_id},
                )
            rewrites.append(SlotRewrite(target, side, ConcreteSlot(ranking[source.rank - 1])))
        return rewrites

    def _handle_reset(self, grand_final: Match, report: ResolutionReport) -> bool:
        """
        Grand final won by the winners-bracket side: the reset is not played.

        Returns True when the reset was dealt with here (no slot rewrites).
        """
        reset = self.by_code.get(GRAND_FINAL_RESET_CODE)
        if reset is None or grand_final.status != MATCH_COMPLETED:
            return False

        if grand_final.winner_side == SIDE_A:
            if reset.status == MATCH_CANCELLED:
                return True
            if reset.status != MATCH_PENDING:
                raise SlotAlreadyResolved(
                    "Grand final reset already resolved for the losers-bracket champion",
                    context={"match_code": reset.match_code, "status": reset.status},
                )
            reset.status = MATCH_CANCELLED
            report.cancelled.append(reset.match_code)
            _touch(report, reset)
            logger.debug("Grand final won from the winners bracket; %s cancelled", reset.match_code)
            return True

        if reset.status == MATCH_CANCELLED:
            raise SlotAlreadyResolved(
                "Grand final reset was already cancelled",
                context={"match_code": reset.match_code},
            )
        return False

    def _outcome(self, feeder: Match, role: Optional[str]) -> Slot:
        if feeder.status == MATCH_CANCELLED:
            return BYE
        participant_id = feeder.winner_id() if role == ROLE_WINNER else feeder.loser_id()
        if participant_id is None:
            return BYE
        return ConcreteSlot(participant_id)

    def _check(self, rewrites: List[SlotRewrite]) -> List[SlotRewrite]:
        """Drop no-ops; raise before anything is applied if a resolved slot would change."""
        effective: List[SlotRewrite] = []
        for rewrite in rewrites:
            current = rewrite.match.get_slot(rewrite.side)
            if current.kind == SLOT_PLACEHOLDER:
                effective.append(rewrite)
            elif current == rewrite.slot:
                continue
            else:
                raise SlotAlreadyResolved(
                    f"{rewrite.match.match_code} side {rewrite.side} already holds {current}, "
                    f"cannot rewrite to {rewrite.slot}",
                    context={
                        "match_code": rewrite.match.match_code,
                        "side": rewrite.side,
                        "current": _describe(current),
                        "requested": _describe(rewrite.slot),
                    },
                )
        return effective

    def _refresh(self, match: Match, report: ResolutionReport, queue: Deque[Tuple[str, str]]) -> None:
        """Recompute an open match's status from its slots."""
        if match.status not in (MATCH_PENDING, MATCH_READY):
            return
        kind_a, kind_b = match.slot_a_kind, match.slot_b_kind

        if kind_a == SLOT_CONCRETE and kind_b == SLOT_CONCRETE:
            if match.status != MATCH_READY:
                match.status = MATCH_READY
                report.ready.append(match.match_code)
                _touch(report, match)
            return

        if SLOT_PLACEHOLDER in (kind_a, kind_b):
            match.status = MATCH_PENDING
            return

        if kind_a == SLOT_BYE and kind_b == SLOT_BYE:
            match.status = MATCH_CANCELLED
            report.cancelled.append(match.match_code)
        else:
            # One concrete side against a bye advances without play
            match.status = MATCH_COMPLETED
            match.winner_side = SIDE_A if kind_a == SLOT_CONCRETE else SIDE_B
            match.completed_at = datetime.utcnow()
            report.auto_completed.append(match.match_code)
        _touch(report, match)
        self._enqueue_finished(match, queue)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def group_complete(self, group_id: str) -> bool:
        matches = self.group_matches.get(group_id, [])
        return bool(matches) and all(m.status == MATCH_COMPLETED for m in matches)


def _touch(report: ResolutionReport, match: Match) -> None:
    if not any(m is match for m in report.touched):
        report.touched.append(match)


def _unique(matches: Iterable[Match]) -> List[Match]:
    result: List[Match] = []
    for match in matches:
        if not any(m is match for m in result):
            result.append(match)
    return result


def _describe(slot: Slot) -> dict:
    if isinstance(slot, ConcreteSlot):
        return {"kind": slot.kind, "participant_id": slot.participant_id}
    if isinstance(slot, PlaceholderSlot):
        return {"kind": slot.kind, "source_type": slot.source_type, "source_ref": slot.source_ref}
    return {"kind": slot.kind}
