"""
Bracket storage interface over a SQLModel Session.

A bracket is written atomically: either absent or fully present. Every write
path validates the bracket before committing and rolls back on violation.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from bracket_engine.models.bracket import BRACKET_GENERATED, Bracket
from bracket_engine.models.entrant import BracketEntrant
from bracket_engine.models.match import Match
from bracket_engine.services.bracket_errors import BracketEngineError, BracketNotFound, MatchNotFound
from bracket_engine.services.bracket_invariants import InvariantReport, ensure_bracket_consistent

logger = logging.getLogger(__name__)

# Columns callers may change through update_match
MUTABLE_MATCH_FIELDS = frozenset(
    {"status", "winner_side", "score_a", "score_b", "started_at", "completed_at"}
)


@dataclass
class BracketDraft:
    """In-memory bracket (status DRAFT) awaiting persistence."""

    bracket: Bracket
    entrants: List[BracketEntrant] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)


# ─── Reads ───────────────────────────────────────────────────────────────

def get_bracket(session: Session, tournament_id: str, event_type: str) -> Optional[Bracket]:
    return session.exec(
        select(Bracket).where(Bracket.tournament_id == tournament_id, Bracket.event_type == event_type)
    ).first()


def require_bracket(session: Session, tournament_id: str, event_type: str) -> Bracket:
    bracket = get_bracket(session, tournament_id, event_type)
    if bracket is None:
        raise BracketNotFound(
            f"No bracket for tournament {tournament_id} / {event_type}",
            context={"tournament_id": tournament_id, "event_type": event_type},
        )
    return bracket


def get_match(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if match is None:
        raise MatchNotFound(f"Match {match_id} not found", context={"match_id": match_id})
    return match


def list_matches(session: Session, bracket_id: int) -> List[Match]:
    return list(
        session.exec(
            select(Match).where(Match.bracket_id == bracket_id).order_by(Match.round_ordinal, Match.match_number)
        ).all()
    )


def list_entrants(session: Session, bracket_id: int) -> List[BracketEntrant]:
    return list(
        session.exec(select(BracketEntrant).where(BracketEntrant.bracket_id == bracket_id).order_by(BracketEntrant.seed)).all()
    )


# ─── Writes ──────────────────────────────────────────────────────────────

def _delete_rows(session: Session, bracket: Bracket) -> None:
    for match in list_matches(session, bracket.id):
        session.delete(match)
    for entrant in list_entrants(session, bracket.id):
        session.delete(entrant)
    session.delete(bracket)


def replace_all_for_tournament(session: Session, tournament_id: str, event_type: str, draft: BracketDraft) -> Bracket:
    """
    Atomic create-or-replace of the bracket for (tournament_id, event_type).

    Old matches, entrants and bracket are deleted and the draft inserted in
    one transaction. The draft is validated before commit; on any failure the
    transaction is rolled back and the previous bracket (if any) survives.
    """
    try:
        existing = get_bracket(session, tournament_id, event_type)
        if existing is not None:
            logger.info("Replacing bracket id=%s tournament=%s event=%s", existing.id, tournament_id, event_type)
            _delete_rows(session, existing)
            # Deletes must reach the database before the new rows hit the unique constraints
            session.flush()

        bracket = draft.bracket
        bracket.tournament_id = tournament_id
        bracket.event_type = event_type
        bracket.status = BRACKET_GENERATED
        session.add(bracket)
        session.flush()

        for entrant in draft.entrants:
            entrant.bracket_id = bracket.id
        for match in draft.matches:
            match.bracket_id = bracket.id
        session.add_all(draft.entrants)
        session.add_all(draft.matches)
        session.flush()

        ensure_bracket_consistent(bracket, [e.participant_id for e in draft.entrants], draft.matches)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(bracket)
    return bracket


def save_progress(
    session: Session,
    bracket: Bracket,
    entrant_ids: Iterable[str],
    matches: Iterable[Match],
) -> InvariantReport:
    """
    Validate and commit in-memory changes to one bracket's matches.

    Raises whatever ensure_bracket_consistent raises, after rolling back.
    """
    matches = list(matches)
    try:
        session.add(bracket)
        session.add_all(matches)
        report = ensure_bracket_consistent(bracket, entrant_ids, matches)
        session.commit()
    except BracketEngineError:
        session.rollback()
        raise
    return report


def update_match(session: Session, match_id: int, fields: Dict[str, Any]) -> Match:
    """
    Apply column updates to one match and commit.

    Only MUTABLE_MATCH_FIELDS may change; structure (slots, codes, rounds) never does.
    """
    unknown = set(fields) - MUTABLE_MATCH_FIELDS
    if unknown:
        raise ValueError(f"update_match: fields not updatable: {sorted(unknown)}")
    match = get_match(session, match_id)
    for key, value in fields.items():
        setattr(match, key, value)
    session.add(match)
    session.commit()
    session.refresh(match)
    return match


def delete_bracket(session: Session, tournament_id: str, event_type: str) -> Optional[int]:
    """Delete a bracket with its entrants and matches. Returns the deleted id, None if absent."""
    bracket = get_bracket(session, tournament_id, event_type)
    if bracket is None:
        return None
    bracket_id = bracket.id
    _delete_rows(session, bracket)
    session.commit()
    logger.info("Deleted bracket id=%s tournament=%s event=%s", bracket_id, tournament_id, event_type)
    return bracket_id
