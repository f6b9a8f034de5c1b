"""
Bracket Orchestrator - generation and result progression.

Generation:
  validate format -> seed participants -> plan -> generation lock ->
  build rounds in memory (DRAFT) -> settle byes -> validate -> persist atomically

Results:
  resolution lock -> apply result -> resolver cascade -> Swiss next round ->
  bracket status / champion -> validate -> commit (rollback on any error)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlmodel import Session

from bracket_engine.models.bracket import (
    BRACKET_COMPLETED,
    BRACKET_DRAFT,
    BRACKET_IN_PROGRESS,
    Bracket,
    BracketFormat,
)
from bracket_engine.models.entrant import BracketEntrant
from bracket_engine.models.match import (
    GRAND_FINAL_CODE,
    GRAND_FINAL_RESET_CODE,
    MATCH_CANCELLED,
    MATCH_COMPLETED,
    MATCH_ONGOING,
    MATCH_PENDING,
    MATCH_READY,
    SIDE_A,
    SIDE_B,
    STAGE_KNOCKOUT,
    STAGE_SWISS,
    Match,
)
from bracket_engine.models.slot import ConcreteSlot
from bracket_engine.services import bracket_store
from bracket_engine.services.advancement_service import PlaceholderResolver, ResolutionReport
from bracket_engine.services.bracket_errors import (
    BracketEngineError,
    InvalidMatchResult,
    MatchNotFound,
    SlotAlreadyResolved,
    SlotNotResolved,
)
from bracket_engine.services.bracket_invariants import ensure_plan_counts
from bracket_engine.services.bracket_locks import forget_resolution_lock, generation_lock, resolution_lock
from bracket_engine.services.bracket_store import BracketDraft
from bracket_engine.services.draw_rules import GenerationPlan, build_generation_plan, parse_format
from bracket_engine.services.knockout import (
    build_double_elimination,
    build_single_elimination,
    hybrid_entrant_slots,
)
from bracket_engine.services.standings import (
    GroupStanding,
    SwissStanding,
    compute_group_standings,
    compute_swiss_standings,
    played_pairs,
    rank_group,
)
from bracket_engine.services.swiss_pairing import build_swiss_round, pair_first_round, pair_next_round
from bracket_engine.utils.group_wiring import build_group_matches, snake_assign
from bracket_engine.utils.seeding import ParticipantEntry, SeededParticipant, rank_participants

logger = logging.getLogger(__name__)

FORMAT_LABELS = {
    BracketFormat.single_elimination: "Single Elimination",
    BracketFormat.double_elimination: "Double Elimination",
    BracketFormat.round_robin: "Round Robin",
    BracketFormat.swiss_system: "Swiss System",
    BracketFormat.hybrid: "Groups + Knockout",
}


@dataclass
class RoundView:
    ordinal: int
    name: str
    stage: str
    matches: List[Match] = field(default_factory=list)


@dataclass
class BracketView:
    bracket: Bracket
    entrants: List[BracketEntrant]
    rounds: List[RoundView]


# ─── Generation ──────────────────────────────────────────────────────────

def build_draft(
    tournament_id: str,
    event_type: str,
    plan: GenerationPlan,
    seeded: List[SeededParticipant],
    name: Optional[str] = None,
) -> BracketDraft:
    """Materialise every round the plan fixes up front. Nothing touches the database."""
    ratings = [p.rating for p in seeded]
    bracket = Bracket(
        tournament_id=tournament_id,
        event_type=event_type,
        name=name or f"{event_type} {FORMAT_LABELS[plan.format]}",
        format=plan.format.value,
        status=BRACKET_DRAFT,
        participant_count=plan.participant_count,
        group_size=plan.group_size,
        advancers_per_group=plan.advancers_per_group,
        group_count=plan.group_count,
        bracket_size=plan.bracket_size,
        swiss_total_rounds=plan.swiss_rounds,
        rating_min=min(ratings),
        rating_max=max(ratings),
    )

    group_of: Dict[str, str] = {}
    seed_slots = [ConcreteSlot(p.participant_id) for p in seeded]

    if plan.format == BracketFormat.single_elimination:
        matches = build_single_elimination(seed_slots)
    elif plan.format == BracketFormat.double_elimination:
        matches = build_double_elimination(seed_slots)
    elif plan.format == BracketFormat.swiss_system:
        matches = build_swiss_round(pair_first_round([p.participant_id for p in seeded]), number_start=1)
    else:
        groups = snake_assign(seeded, plan.group_count)
        for group_id, members in groups.items():
            for member in members:
                group_of[member.participant_id] = group_id
        matches = build_group_matches(groups)
        if plan.format == BracketFormat.hybrid:
            matches += build_single_elimination(
                hybrid_entrant_slots(list(groups), plan.advancers_per_group),
                ordinal_start=2,
                number_start=len(matches) + 1,
            )

    ensure_plan_counts(plan, matches)

    entrants = [
        BracketEntrant(
            participant_id=p.participant_id,
            display_name=p.display_name,
            rating=p.rating,
            registered_at=p.registered_at,
            seed=p.seed,
            group_id=group_of.get(p.participant_id),
        )
        for p in seeded
    ]

    report = PlaceholderResolver(matches, {p.participant_id: p.seed for p in seeded}).settle()
    logger.debug(
        "Draft %s/%s: %d matches, %d byes auto-advanced, %d cancelled",
        tournament_id, event_type, len(matches), len(report.auto_completed), len(report.cancelled),
    )
    return BracketDraft(bracket=bracket, entrants=entrants, matches=matches)


def generate_bracket(
    session: Session,
    tournament_id: str,
    event_type: str,
    bracket_format: Union[str, BracketFormat],
    participants: Iterable[ParticipantEntry],
    group_size: Optional[int] = None,
    advancers_per_group: Optional[int] = None,
    name: Optional[str] = None,
) -> Bracket:
    """
    Generate (or replace) the bracket for (tournament_id, event_type).

    Raises:
        UnsupportedFormat, InsufficientParticipants, InvalidFormatParameters:
            before anything is written
        DuplicateGenerationInProgress: another generation holds the lock
        InconsistentBracketState: the built bracket failed validation (rolled back)
    """
    fmt = parse_format(bracket_format)
    seeded = rank_participants(participants)
    plan = build_generation_plan(fmt, len(seeded), group_size, advancers_per_group)

    with generation_lock(session, tournament_id, event_type):
        draft = build_draft(tournament_id, event_type, plan, seeded, name)
        existing = bracket_store.get_bracket(session, tournament_id, event_type)
        if existing is None:
            bracket = bracket_store.replace_all_for_tournament(session, tournament_id, event_type, draft)
        else:
            # No result may be recorded into the bracket being replaced
            replaced_id = existing.id
            with resolution_lock(replaced_id):
                bracket = bracket_store.replace_all_for_tournament(session, tournament_id, event_type, draft)
            forget_resolution_lock(replaced_id)

    logger.info(
        "Generated %s bracket id=%s tournament=%s event=%s participants=%d matches=%d",
        fmt.value, bracket.id, tournament_id, event_type, len(seeded), len(draft.matches),
    )
    return bracket


def _snapshot_participants(entrants: Iterable[BracketEntrant]) -> List[ParticipantEntry]:
    return [
        ParticipantEntry(id=e.participant_id, display_name=e.display_name, rating=e.rating, registered_at=e.registered_at)
        for e in entrants
    ]


def regenerate_bracket(
    session: Session,
    tournament_id: str,
    event_type: str,
    bracket_format: Optional[Union[str, BracketFormat]] = None,
    participants: Optional[Iterable[ParticipantEntry]] = None,
    group_size: Optional[int] = None,
    advancers_per_group: Optional[int] = None,
    name: Optional[str] = None,
) -> Bracket:
    """
    Delete-then-generate in one transaction.

    Omitted arguments reuse the existing bracket: its format, its entrant
    snapshot and (when the format is unchanged) its group options.
    """
    existing = bracket_store.get_bracket(session, tournament_id, event_type)
    if existing is None:
        if participants is None:
            bracket_store.require_bracket(session, tournament_id, event_type)
        return generate_bracket(
            session, tournament_id, event_type, bracket_format, participants, group_size, advancers_per_group, name
        )

    fmt = parse_format(bracket_format) if bracket_format is not None else parse_format(existing.format)
    if participants is None:
        participants = _snapshot_participants(bracket_store.list_entrants(session, existing.id))
    if fmt.value == existing.format:
        # A single all-play-all group is re-derived from the participant count
        if group_size is None and (fmt == BracketFormat.hybrid or existing.group_count != 1):
            group_size = existing.group_size
        if advancers_per_group is None:
            advancers_per_group = existing.advancers_per_group
    if name is None:
        name = existing.name if fmt.value == existing.format else None

    logger.info("Regenerating bracket id=%s tournament=%s event=%s as %s", existing.id, tournament_id, event_type, fmt.value)
    return generate_bracket(
        session, tournament_id, event_type, fmt, participants, group_size, advancers_per_group, name
    )


def delete_bracket(session: Session, tournament_id: str, event_type: str) -> int:
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    with resolution_lock(bracket.id):
        deleted_id = bracket_store.delete_bracket(session, tournament_id, event_type)
    forget_resolution_lock(deleted_id)
    return deleted_id


# ─── Results ─────────────────────────────────────────────────────────────

def derive_winner_side(winner_side: Optional[str], score_a: Optional[int], score_b: Optional[int]) -> str:
    """
    Normalise the reported outcome.

    Without winner_side the higher score wins; a tie or a missing score is
    rejected. With winner_side, scores (if both given) must not contradict it.
    """
    for score in (score_a, score_b):
        if score is not None and score < 0:
            raise InvalidMatchResult("Scores cannot be negative", context={"score_a": score_a, "score_b": score_b})

    if winner_side is None:
        if score_a is None or score_b is None:
            raise InvalidMatchResult("winner_side or both scores are required")
        if score_a == score_b:
            raise InvalidMatchResult(
                "Tied scores need an explicit winner_side", context={"score_a": score_a, "score_b": score_b}
            )
        return SIDE_A if score_a > score_b else SIDE_B

    side = str(winner_side).strip().upper()
    if side not in (SIDE_A, SIDE_B):
        raise InvalidMatchResult(f"winner_side must be 'A' or 'B', got {winner_side!r}")
    if score_a is not None and score_b is not None:
        winner_score, loser_score = (score_a, score_b) if side == SIDE_A else (score_b, score_a)
        if winner_score < loser_score:
            raise InvalidMatchResult(
                f"winner_side {side} contradicts the score {score_a}-{score_b}",
                context={"winner_side": side, "score_a": score_a, "score_b": score_b},
            )
    return side


def _seed_map(entrants: Iterable[BracketEntrant]) -> Dict[str, int]:
    return {e.participant_id: e.seed for e in entrants}


def _find(matches: List[Match], match_id: int) -> Match:
    for m in matches:
        if m.id == match_id:
            return m
    raise MatchNotFound(f"Match {match_id} not found", context={"match_id": match_id})


def _check_recordable(match: Match) -> None:
    if match.status == MATCH_PENDING:
        raise SlotNotResolved(
            f"Match {match.match_code} is waiting on unresolved entrants",
            context={"match_id": match.id, "match_code": match.match_code},
        )
    if match.status == MATCH_CANCELLED:
        raise InvalidMatchResult(
            f"Match {match.match_code} was cancelled", context={"match_id": match.id, "match_code": match.match_code}
        )
    if match.is_bye_match():
        raise InvalidMatchResult(
            f"Match {match.match_code} is a bye and is decided automatically",
            context={"match_id": match.id, "match_code": match.match_code},
        )


def _next_swiss_round(bracket: Bracket, matches: List[Match], seeds: Dict[str, int], finished_round: int) -> List[Match]:
    """Pair round finished_round + 1 once every match of finished_round is completed."""
    if not bracket.swiss_total_rounds or finished_round >= bracket.swiss_total_rounds:
        return []
    current = [m for m in matches if m.round_ordinal == finished_round]
    if not all(m.status == MATCH_COMPLETED for m in current):
        return []
    if any(m.round_ordinal == finished_round + 1 for m in matches):
        return []

    standings = compute_swiss_standings(matches, seeds)
    pairing = pair_next_round(finished_round + 1, standings, played_pairs(matches))
    number_start = max(m.match_number for m in matches) + 1
    new_matches = build_swiss_round(pairing, number_start)
    for m in new_matches:
        m.bracket_id = bracket.id
    logger.info(
        "Swiss bracket id=%s: paired round %d (%d matches, bye=%s, rematches=%d)",
        bracket.id, pairing.round_number, len(new_matches), pairing.bye_participant_id, pairing.rematches,
    )
    return new_matches


def _champion(bracket: Bracket, matches: List[Match], seeds: Dict[str, int]) -> Optional[str]:
    """Champion id once the bracket is decided, else None."""
    fmt = bracket.format
    by_code = {m.match_code: m for m in matches}

    if fmt == BracketFormat.double_elimination.value:
        grand_final = by_code.get(GRAND_FINAL_CODE)
        reset = by_code.get(GRAND_FINAL_RESET_CODE)
        if reset is not None and reset.status == MATCH_COMPLETED:
            return reset.winner_id()
        if grand_final is not None and grand_final.status == MATCH_COMPLETED and grand_final.winner_side == SIDE_A:
            return grand_final.winner_id()
        return None

    if fmt in (BracketFormat.single_elimination.value, BracketFormat.hybrid.value):
        knockout = [m for m in matches if m.stage == STAGE_KNOCKOUT]
        if not knockout:
            return None
        final = max(knockout, key=lambda m: (m.round_ordinal, m.match_number))
        return final.winner_id()

    if fmt == BracketFormat.swiss_system.value:
        last = [m for m in matches if m.round_ordinal == bracket.swiss_total_rounds]
        if last and all(m.status == MATCH_COMPLETED for m in last):
            return compute_swiss_standings(matches, seeds)[0].participant_id
        return None

    # Round robin: a single champion only when one group plays everyone
    if matches and all(m.status == MATCH_COMPLETED for m in matches) and bracket.group_count == 1:
        return rank_group(matches, seeds)[0]
    return None


def _bracket_finished(bracket: Bracket, matches: List[Match], champion: Optional[str]) -> bool:
    if champion is not None:
        return True
    if bracket.format == BracketFormat.round_robin.value:
        return bool(matches) and all(m.status == MATCH_COMPLETED for m in matches)
    return False


def _refresh_bracket_status(bracket: Bracket, matches: List[Match], seeds: Dict[str, int]) -> None:
    champion = _champion(bracket, matches, seeds)
    if _bracket_finished(bracket, matches, champion):
        if bracket.status != BRACKET_COMPLETED:
            logger.info("Bracket id=%s completed champion=%s", bracket.id, champion)
        bracket.status = BRACKET_COMPLETED
        bracket.champion_id = champion
    else:
        bracket.status = BRACKET_IN_PROGRESS
        bracket.champion_id = None
    bracket.updated_at = datetime.utcnow()


def record_match_result(
    session: Session,
    match_id: int,
    winner_side: Optional[str] = None,
    score_a: Optional[int] = None,
    score_b: Optional[int] = None,
) -> Match:
    """
    Record (or correct) a match result and run the resolver cascade.

    Re-recording the same result is a no-op. A different winner re-runs
    the cascade, which fails with SlotAlreadyResolved if the old winner has
    already been placed downstream.

    Raises:
        MatchNotFound, SlotNotResolved, InvalidMatchResult, SlotAlreadyResolved,
        BracketBusy, InconsistentBracketState
    """
    side = derive_winner_side(winner_side, score_a, score_b)
    bracket_id = bracket_store.get_match(session, match_id).bracket_id

    with resolution_lock(bracket_id):
        # Another request may have committed while we waited on the lock
        session.expire_all()
        bracket = session.get(Bracket, bracket_id)
        matches = bracket_store.list_matches(session, bracket_id)
        match = _find(matches, match_id)
        _check_recordable(match)

        if (
            match.status == MATCH_COMPLETED
            and match.winner_side == side
            and match.score_a == score_a
            and match.score_b == score_b
        ):
            logger.debug("Result for %s unchanged; nothing to do", match.match_code)
            return match

        entrants = bracket_store.list_entrants(session, bracket_id)
        seeds = _seed_map(entrants)

        try:
            if (
                match.status == MATCH_COMPLETED
                and match.winner_side != side
                and match.stage == STAGE_SWISS
                and any(m.round_ordinal > match.round_ordinal for m in matches)
            ):
                raise SlotAlreadyResolved(
                    f"Swiss round {match.round_ordinal + 1} was already paired from this result",
                    context={"match_id": match.id, "match_code": match.match_code},
                )

            now = datetime.utcnow()
            match.winner_side = side
            match.score_a = score_a
            match.score_b = score_b
            match.status = MATCH_COMPLETED
            match.started_at = match.started_at or now
            match.completed_at = now

            report: ResolutionReport = PlaceholderResolver(matches, seeds).match_finished(match)

            if bracket.format == BracketFormat.swiss_system.value:
                new_matches = _next_swiss_round(bracket, matches, seeds, match.round_ordinal)
                if new_matches:
                    matches.extend(new_matches)
                    session.add_all(new_matches)
                    report.merge(PlaceholderResolver(matches, seeds).settle())

            _refresh_bracket_status(bracket, matches, seeds)
            bracket_store.save_progress(session, bracket, seeds.keys(), matches)
        except BracketEngineError:
            session.rollback()
            raise

        logger.info(
            "Recorded %s winner=%s (%s-%s) bracket=%s rewrites=%d auto=%s cancelled=%s",
            match.match_code, side, score_a, score_b, bracket_id,
            report.rewrites, report.auto_completed, report.cancelled,
        )
        session.refresh(match)
        return match


def start_match(session: Session, match_id: int) -> Match:
    """READY -> ONGOING. Starting an ongoing match again is a no-op."""
    match = bracket_store.get_match(session, match_id)
    with resolution_lock(match.bracket_id):
        session.refresh(match)
        if match.status == MATCH_ONGOING:
            return match
        if match.status == MATCH_PENDING:
            raise SlotNotResolved(
                f"Match {match.match_code} is waiting on unresolved entrants",
                context={"match_id": match.id, "match_code": match.match_code},
            )
        if match.status != MATCH_READY:
            raise InvalidMatchResult(
                f"Match {match.match_code} cannot start from status {match.status}",
                context={"match_id": match.id, "status": match.status},
            )
        match = bracket_store.update_match(
            session, match_id, {"status": MATCH_ONGOING, "started_at": datetime.utcnow()}
        )
    logger.info("Started match %s (id=%s)", match.match_code, match.id)
    return match


# ─── Views ───────────────────────────────────────────────────────────────

def load_bracket_view(session: Session, tournament_id: str, event_type: str) -> BracketView:
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    matches = bracket_store.list_matches(session, bracket.id)
    rounds: Dict[int, RoundView] = {}
    for m in matches:
        view = rounds.get(m.round_ordinal)
        if view is None:
            view = RoundView(ordinal=m.round_ordinal, name=m.round_name, stage=m.stage)
            rounds[m.round_ordinal] = view
        view.matches.append(m)
    return BracketView(
        bracket=bracket,
        entrants=bracket_store.list_entrants(session, bracket.id),
        rounds=[rounds[o] for o in sorted(rounds)],
    )


def group_standings(session: Session, tournament_id: str, event_type: str) -> Dict[str, List[GroupStanding]]:
    """Current table of every group (empty for formats without groups)."""
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    entrants = bracket_store.list_entrants(session, bracket.id)
    seeds = _seed_map(entrants)
    members: Dict[str, List[str]] = {}
    for e in entrants:
        if e.group_id is not None:
            members.setdefault(e.group_id, []).append(e.participant_id)
    matches = bracket_store.list_matches(session, bracket.id)
    return {
        group_id: compute_group_standings([m for m in matches if m.group_id == group_id], seeds, members[group_id])
        for group_id in sorted(members)
    }


def swiss_standings(session: Session, tournament_id: str, event_type: str) -> List[SwissStanding]:
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    seeds = _seed_map(bracket_store.list_entrants(session, bracket.id))
    return compute_swiss_standings(bracket_store.list_matches(session, bracket.id), seeds)
