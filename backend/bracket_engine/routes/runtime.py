"""
Runtime: match start and result recording.
When a result is recorded, the advancement service fills downstream slots
(and pairs the next Swiss round once a round is complete).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from bracket_engine.database import get_session
from bracket_engine.models.bracket import Bracket
from bracket_engine.routes.brackets import MatchView, display_names, http_error, match_view
from bracket_engine.services import bracket_orchestrator, bracket_store
from bracket_engine.services.bracket_errors import BracketEngineError

router = APIRouter()


class MatchResultUpdate(BaseModel):
    winner_side: Optional[str] = None  # "A" | "B"; derived from scores when omitted
    score_a: Optional[int] = None
    score_b: Optional[int] = None


class MatchRuntimeResponse(BaseModel):
    match: MatchView
    bracket_status: str
    champion_id: Optional[str] = None


def _runtime_response(session: Session, match) -> MatchRuntimeResponse:
    bracket = session.get(Bracket, match.bracket_id)
    names = display_names(bracket_store.list_entrants(session, bracket.id))
    return MatchRuntimeResponse(
        match=match_view(match, names),
        bracket_status=bracket.status,
        champion_id=bracket.champion_id,
    )


@router.post("/matches/{match_id}/start", response_model=MatchRuntimeResponse)
def start_match(match_id: int, session: Session = Depends(get_session)) -> MatchRuntimeResponse:
    """READY -> ONGOING."""
    try:
        match = bracket_orchestrator.start_match(session, match_id)
    except BracketEngineError as e:
        raise http_error(e)
    return _runtime_response(session, match)


@router.put("/matches/{match_id}/result", response_model=MatchRuntimeResponse)
def record_match_result(
    match_id: int,
    payload: MatchResultUpdate,
    session: Session = Depends(get_session),
) -> MatchRuntimeResponse:
    """Record or correct a result. Re-sending the same result is a no-op."""
    try:
        match = bracket_orchestrator.record_match_result(
            session,
            match_id,
            winner_side=payload.winner_side,
            score_a=payload.score_a,
            score_b=payload.score_b,
        )
    except BracketEngineError as e:
        raise http_error(e)
    return _runtime_response(session, match)
