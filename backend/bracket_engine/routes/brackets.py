"""
Bracket generation and read endpoints.

Thin layer over bracket_orchestrator: request parsing, engine error -> HTTP
translation ("CODE: message" details) and display labels for slots.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from bracket_engine.database import get_session
from bracket_engine.models.bracket import Bracket, BracketFormat
from bracket_engine.models.entrant import BracketEntrant
from bracket_engine.models.match import Match
from bracket_engine.models.slot import ROLE_WINNER, SLOT_BYE, SLOT_CONCRETE, SOURCE_GROUP
from bracket_engine.services import bracket_orchestrator, bracket_report
from bracket_engine.services.bracket_errors import BracketEngineError
from bracket_engine.utils.group_wiring import matchday_of
from bracket_engine.utils.seeding import ParticipantEntry

logger = logging.getLogger(__name__)

router = APIRouter()


def http_error(err: BracketEngineError) -> HTTPException:
    """Engine error -> HTTPException with a 'CODE: message' detail."""
    if err.http_status >= 500:
        logger.error("Bracket engine failure: %s context=%s", err, err.context)
    return HTTPException(status_code=err.http_status, detail=str(err))


# ─── Schemas ─────────────────────────────────────────────────────────────

class ParticipantIn(BaseModel):
    id: str
    display_name: str
    rating: float
    registered_at: Optional[datetime] = None


class GenerateBracketRequest(BaseModel):
    format: str
    participants: List[ParticipantIn]
    group_size: Optional[int] = None
    advancers_per_group: Optional[int] = None
    name: Optional[str] = None


class RegenerateBracketRequest(BaseModel):
    format: Optional[str] = None
    participants: Optional[List[ParticipantIn]] = None
    group_size: Optional[int] = None
    advancers_per_group: Optional[int] = None
    name: Optional[str] = None


class SlotView(BaseModel):
    kind: str
    label: str
    participant_id: Optional[str] = None
    source_type: Optional[str] = None
    source_ref: Optional[str] = None
    rank: Optional[int] = None
    role: Optional[str] = None


class MatchView(BaseModel):
    id: int
    match_code: str
    match_number: int
    stage: str
    round_ordinal: int
    round_name: str
    sequence_in_round: int
    group_id: Optional[str] = None
    matchday: Optional[int] = None
    status: str
    slot_a: SlotView
    slot_b: SlotView
    winner_side: Optional[str] = None
    winner_id: Optional[str] = None
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RoundResponse(BaseModel):
    ordinal: int
    name: str
    stage: str
    matches: List[MatchView]


class EntrantView(BaseModel):
    participant_id: str
    display_name: str
    rating: float
    seed: int
    group_id: Optional[str] = None


class BracketResponse(BaseModel):
    id: int
    tournament_id: str
    event_type: str
    name: str
    format: str
    status: str
    participant_count: int
    group_size: Optional[int] = None
    advancers_per_group: Optional[int] = None
    group_count: Optional[int] = None
    bracket_size: Optional[int] = None
    swiss_total_rounds: Optional[int] = None
    rating_min: Optional[float] = None
    rating_max: Optional[float] = None
    champion_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    entrants: List[EntrantView] = Field(default_factory=list)
    rounds: List[RoundResponse] = Field(default_factory=list)


class GroupStandingView(BaseModel):
    rank: int
    participant_id: str
    display_name: str
    seed: int
    played: int
    wins: int
    losses: int
    points_for: int
    points_against: int
    point_diff: int


class SwissStandingView(BaseModel):
    rank: int
    participant_id: str
    display_name: str
    seed: int
    points: float
    buchholz: float
    wins: int
    losses: int
    byes: int


class StandingsResponse(BaseModel):
    format: str
    groups: Dict[str, List[GroupStandingView]] = Field(default_factory=dict)
    swiss: List[SwissStandingView] = Field(default_factory=list)


class DeleteBracketResponse(BaseModel):
    deleted: bool
    bracket_id: int


# ─── Presentation ────────────────────────────────────────────────────────

def slot_label(match: Match, side: str, names: Dict[str, str]) -> str:
    """Display label: participant name, 'BYE', 'Group C #1', 'Winner of W1-3' or 'Loser of W1-3'."""
    slot = match.get_slot(side)
    if slot.kind == SLOT_CONCRETE:
        return names.get(slot.participant_id, slot.participant_id)
    if slot.kind == SLOT_BYE:
        return "BYE"
    if slot.source_type == SOURCE_GROUP:
        return f"Group {slot.source_ref} #{slot.rank}"
    verb = "Winner" if slot.role == ROLE_WINNER else "Loser"
    return f"{verb} of {slot.source_ref}"


def _slot_view(match: Match, side: str, names: Dict[str, str]) -> SlotView:
    slot = match.get_slot(side)
    source = match.source_of(side)
    return SlotView(
        kind=slot.kind,
        label=slot_label(match, side, names),
        participant_id=match.participant_on(side),
        source_type=source.source_type if source else None,
        source_ref=source.source_ref if source else None,
        rank=source.rank if source else None,
        role=source.role if source else None,
    )


def match_view(match: Match, names: Dict[str, str], matchdays: Optional[Dict[str, int]] = None) -> MatchView:
    return MatchView(
        id=match.id,
        match_code=match.match_code,
        match_number=match.match_number,
        stage=match.stage,
        round_ordinal=match.round_ordinal,
        round_name=match.round_name,
        sequence_in_round=match.sequence_in_round,
        group_id=match.group_id,
        matchday=(matchdays or {}).get(match.match_code),
        status=match.status,
        slot_a=_slot_view(match, "A", names),
        slot_b=_slot_view(match, "B", names),
        winner_side=match.winner_side,
        winner_id=match.winner_id(),
        score_a=match.score_a,
        score_b=match.score_b,
        started_at=match.started_at,
        completed_at=match.completed_at,
    )


def display_names(entrants: List[BracketEntrant]) -> Dict[str, str]:
    return {e.participant_id: e.display_name for e in entrants}


def _bracket_response(view: bracket_orchestrator.BracketView) -> BracketResponse:
    bracket: Bracket = view.bracket
    names = display_names(view.entrants)
    group_matches = [m for r in view.rounds for m in r.matches if m.group_id is not None]
    matchdays = matchday_of(group_matches)
    return BracketResponse(
        id=bracket.id,
        tournament_id=bracket.tournament_id,
        event_type=bracket.event_type,
        name=bracket.name,
        format=bracket.format,
        status=bracket.status,
        participant_count=bracket.participant_count,
        group_size=bracket.group_size,
        advancers_per_group=bracket.advancers_per_group,
        group_count=bracket.group_count,
        bracket_size=bracket.bracket_size,
        swiss_total_rounds=bracket.swiss_total_rounds,
        rating_min=bracket.rating_min,
        rating_max=bracket.rating_max,
        champion_id=bracket.champion_id,
        created_at=bracket.created_at,
        updated_at=bracket.updated_at,
        entrants=[
            EntrantView(
                participant_id=e.participant_id,
                display_name=e.display_name,
                rating=e.rating,
                seed=e.seed,
                group_id=e.group_id,
            )
            for e in view.entrants
        ],
        rounds=[
            RoundResponse(
                ordinal=r.ordinal,
                name=r.name,
                stage=r.stage,
                matches=[match_view(m, names, matchdays) for m in r.matches],
            )
            for r in view.rounds
        ],
    )


def _participants(items: Optional[List[ParticipantIn]]) -> Optional[List[ParticipantEntry]]:
    if items is None:
        return None
    return [
        ParticipantEntry(id=p.id, display_name=p.display_name, rating=p.rating, registered_at=p.registered_at)
        for p in items
    ]


# ─── Endpoints ───────────────────────────────────────────────────────────

@router.post(
    "/tournaments/{tournament_id}/brackets/{event_type}/generate",
    response_model=BracketResponse,
    status_code=201,
)
def generate_bracket(
    tournament_id: str,
    event_type: str,
    payload: GenerateBracketRequest,
    session: Session = Depends(get_session),
) -> BracketResponse:
    """Generate the bracket for an event, replacing any existing one."""
    try:
        bracket_orchestrator.generate_bracket(
            session,
            tournament_id,
            event_type,
            payload.format,
            _participants(payload.participants),
            group_size=payload.group_size,
            advancers_per_group=payload.advancers_per_group,
            name=payload.name,
        )
        view = bracket_orchestrator.load_bracket_view(session, tournament_id, event_type)
    except BracketEngineError as e:
        raise http_error(e)
    return _bracket_response(view)


@router.post("/tournaments/{tournament_id}/brackets/{event_type}/regenerate", response_model=BracketResponse)
def regenerate_bracket(
    tournament_id: str,
    event_type: str,
    payload: Optional[RegenerateBracketRequest] = None,
    session: Session = Depends(get_session),
) -> BracketResponse:
    """Rebuild the bracket. Omitted fields reuse the current bracket's format, entrants and options."""
    payload = payload or RegenerateBracketRequest()
    try:
        bracket_orchestrator.regenerate_bracket(
            session,
            tournament_id,
            event_type,
            bracket_format=payload.format,
            participants=_participants(payload.participants),
            group_size=payload.group_size,
            advancers_per_group=payload.advancers_per_group,
            name=payload.name,
        )
        view = bracket_orchestrator.load_bracket_view(session, tournament_id, event_type)
    except BracketEngineError as e:
        raise http_error(e)
    return _bracket_response(view)


@router.get("/tournaments/{tournament_id}/brackets/{event_type}", response_model=BracketResponse)
def get_bracket(tournament_id: str, event_type: str, session: Session = Depends(get_session)) -> BracketResponse:
    try:
        view = bracket_orchestrator.load_bracket_view(session, tournament_id, event_type)
    except BracketEngineError as e:
        raise http_error(e)
    return _bracket_response(view)


@router.delete("/tournaments/{tournament_id}/brackets/{event_type}", response_model=DeleteBracketResponse)
def delete_bracket(tournament_id: str, event_type: str, session: Session = Depends(get_session)):
    try:
        bracket_id = bracket_orchestrator.delete_bracket(session, tournament_id, event_type)
    except BracketEngineError as e:
        raise http_error(e)
    return DeleteBracketResponse(deleted=True, bracket_id=bracket_id)


@router.get("/tournaments/{tournament_id}/brackets/{event_type}/standings", response_model=StandingsResponse)
def get_standings(tournament_id: str, event_type: str, session: Session = Depends(get_session)):
    """Group tables (round robin / hybrid) or the Swiss table."""
    try:
        view = bracket_orchestrator.load_bracket_view(session, tournament_id, event_type)
        names = display_names(view.entrants)
        response = StandingsResponse(format=view.bracket.format)
        if view.bracket.format == BracketFormat.swiss_system.value:
            response.swiss = [
                SwissStandingView(
                    rank=row.rank,
                    participant_id=row.participant_id,
                    display_name=names.get(row.participant_id, row.participant_id),
                    seed=row.seed,
                    points=row.points,
                    buchholz=row.buchholz,
                    wins=row.wins,
                    losses=row.losses,
                    byes=row.byes,
                )
                for row in bracket_orchestrator.swiss_standings(session, tournament_id, event_type)
            ]
        else:
            tables = bracket_orchestrator.group_standings(session, tournament_id, event_type)
            response.groups = {
                group_id: [
                    GroupStandingView(
                        rank=row.rank,
                        participant_id=row.participant_id,
                        display_name=names.get(row.participant_id, row.participant_id),
                        seed=row.seed,
                        played=row.played,
                        wins=row.wins,
                        losses=row.losses,
                        points_for=row.points_for,
                        points_against=row.points_against,
                        point_diff=row.point_diff,
                    )
                    for row in rows
                ]
                for group_id, rows in tables.items()
            }
    except BracketEngineError as e:
        raise http_error(e)
    return response


@router.get("/tournaments/{tournament_id}/brackets/{event_type}/stats")
def get_bracket_stats(tournament_id: str, event_type: str, session: Session = Depends(get_session)):
    try:
        return bracket_report.bracket_stats(session, tournament_id, event_type).to_dict()
    except BracketEngineError as e:
        raise http_error(e)


@router.get("/tournaments/{tournament_id}/brackets/{event_type}/analysis")
def get_bracket_analysis(tournament_id: str, event_type: str, session: Session = Depends(get_session)):
    try:
        return bracket_report.bracket_analysis(session, tournament_id, event_type).to_dict()
    except BracketEngineError as e:
        raise http_error(e)
