"""Shared builders for bracket tests."""
from datetime import datetime, timedelta
from typing import Dict, List

from sqlmodel import Session

from bracket_engine.models.match import MATCH_ONGOING, MATCH_READY, Match
from bracket_engine.services import bracket_store
from bracket_engine.services.bracket_orchestrator import record_match_result
from bracket_engine.utils.seeding import ParticipantEntry


def make_participants(n: int, base_rating: float = 2000.0, step: float = 10.0) -> List[ParticipantEntry]:
    """n participants p01..pNN with strictly decreasing ratings (p01 = seed 1)."""
    start = datetime(2026, 1, 1, 9, 0, 0)
    return [
        ParticipantEntry(
            id=f"p{i:02d}",
            display_name=f"Player {i}",
            rating=base_rating - step * (i - 1),
            registered_at=start + timedelta(minutes=i),
        )
        for i in range(1, n + 1)
    ]


def participants_payload(n: int) -> List[dict]:
    return [
        {
            "id": p.id,
            "display_name": p.display_name,
            "rating": p.rating,
            "registered_at": p.registered_at.isoformat(),
        }
        for p in make_participants(n)
    ]


def by_code(matches: List[Match]) -> Dict[str, Match]:
    return {m.match_code: m for m in matches}


def play_out(session: Session, bracket_id: int, max_steps: int = 500) -> int:
    """
    Record results until no playable match is left. Side A always wins 3-1.

    Returns the number of results recorded.
    """
    recorded = 0
    for _ in range(max_steps):
        playable = [
            m for m in bracket_store.list_matches(session, bracket_id) if m.status in (MATCH_READY, MATCH_ONGOING)
        ]
        if not playable:
            return recorded
        record_match_result(session, playable[0].id, score_a=3, score_b=1)
        recorded += 1
    raise AssertionError("bracket did not finish")
