"""
Bracket Report - progress statistics and seeding balance for one bracket.

Stats:
1. Match counts per status (bye advances counted separately)
2. Completion rate over playable matches
3. Participant rating summary

Analysis:
1. Rating spread of the whole field
2. Per-group average rating and the gap between strongest and weakest group
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from bracket_engine.models.match import (
    MATCH_CANCELLED,
    MATCH_COMPLETED,
    MATCH_ONGOING,
    MATCH_PENDING,
    MATCH_READY,
)
from bracket_engine.services import bracket_store


@dataclass
class BracketStats:
    bracket_id: int
    format: str
    status: str
    total_participants: int
    total_matches: int
    matches_by_status: Dict[str, int]
    bye_matches: int
    completion_rate: float
    average_rating: Optional[float]
    rating_range: Optional[str]
    champion_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bracket_id": self.bracket_id,
            "format": self.format,
            "status": self.status,
            "total_participants": self.total_participants,
            "total_matches": self.total_matches,
            "matches_by_status": dict(self.matches_by_status),
            "bye_matches": self.bye_matches,
            "completion_rate": self.completion_rate,
            "average_rating": self.average_rating,
            "rating_range": self.rating_range,
            "champion_id": self.champion_id,
        }


@dataclass
class GroupBalance:
    group_id: str
    size: int
    average_rating: float
    top_seed: int


@dataclass
class BracketAnalysis:
    bracket_id: int
    rating_min: Optional[float]
    rating_max: Optional[float]
    rating_spread: Optional[float]
    rating_stdev: Optional[float]
    groups: List[GroupBalance] = field(default_factory=list)
    group_balance_gap: Optional[float] = None  # strongest minus weakest group average

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bracket_id": self.bracket_id,
            "rating_min": self.rating_min,
            "rating_max": self.rating_max,
            "rating_spread": self.rating_spread,
            "rating_stdev": self.rating_stdev,
            "groups": [
                {
                    "group_id": g.group_id,
                    "size": g.size,
                    "average_rating": g.average_rating,
                    "top_seed": g.top_seed,
                }
                for g in self.groups
            ],
            "group_balance_gap": self.group_balance_gap,
        }


def bracket_stats(session: Session, tournament_id: str, event_type: str) -> BracketStats:
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    matches = bracket_store.list_matches(session, bracket.id)
    entrants = bracket_store.list_entrants(session, bracket.id)

    by_status = {s: 0 for s in (MATCH_PENDING, MATCH_READY, MATCH_ONGOING, MATCH_COMPLETED, MATCH_CANCELLED)}
    bye_matches = 0
    for m in matches:
        by_status[m.status] = by_status.get(m.status, 0) + 1
        if m.is_bye_match():
            bye_matches += 1

    # Byes and cancelled matches are never played
    playable = [m for m in matches if not m.is_bye_match() and m.status != MATCH_CANCELLED]
    played = sum(1 for m in playable if m.status == MATCH_COMPLETED)
    completion_rate = round(played / len(playable), 4) if playable else 0.0

    ratings = [e.rating for e in entrants]
    return BracketStats(
        bracket_id=bracket.id,
        format=bracket.format,
        status=bracket.status,
        total_participants=len(entrants),
        total_matches=len(matches),
        matches_by_status=by_status,
        bye_matches=bye_matches,
        completion_rate=completion_rate,
        average_rating=round(statistics.mean(ratings), 1) if ratings else None,
        rating_range=f"{min(ratings):g} - {max(ratings):g}" if ratings else None,
        champion_id=bracket.champion_id,
    )


def bracket_analysis(session: Session, tournament_id: str, event_type: str) -> BracketAnalysis:
    bracket = bracket_store.require_bracket(session, tournament_id, event_type)
    entrants = bracket_store.list_entrants(session, bracket.id)
    ratings = [e.rating for e in entrants]

    by_group: Dict[str, list] = {}
    for e in entrants:
        if e.group_id is not None:
            by_group.setdefault(e.group_id, []).append(e)

    groups = [
        GroupBalance(
            group_id=group_id,
            size=len(members),
            average_rating=round(statistics.mean(m.rating for m in members), 1),
            top_seed=min(m.seed for m in members),
        )
        for group_id, members in sorted(by_group.items())
    ]
    gap = None
    if groups:
        averages = [g.average_rating for g in groups]
        gap = round(max(averages) - min(averages), 1)

    return BracketAnalysis(
        bracket_id=bracket.id,
        rating_min=min(ratings) if ratings else None,
        rating_max=max(ratings) if ratings else None,
        rating_spread=(max(ratings) - min(ratings)) if ratings else None,
        rating_stdev=round(statistics.pstdev(ratings), 2) if ratings else None,
        groups=groups,
        group_balance_gap=gap,
    )
