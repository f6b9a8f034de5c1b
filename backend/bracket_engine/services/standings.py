"""
Standings - group tables and Swiss tables computed from completed matches.

Group order: wins, head-to-head wins inside the tied block, point
differential, points scored, seed.
Swiss order: points, Buchholz, seed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from itertools import groupby
from typing import Dict, Iterable, List, Optional, Set

from bracket_engine.models.match import MATCH_COMPLETED, SIDE_A, Match

SWISS_WIN_POINTS = 1.0


@dataclass
class GroupStanding:
    participant_id: str
    seed: int
    played: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    head_to_head_wins: int = 0
    rank: int = 0

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against


@dataclass
class SwissStanding:
    participant_id: str
    seed: int
    points: float = 0.0
    buchholz: float = 0.0
    wins: int = 0
    losses: int = 0
    byes: int = 0
    opponents: List[str] = field(default_factory=list)
    rank: int = 0

    @property
    def had_bye(self) -> bool:
        return self.byes > 0


def _completed_pairs(matches: Iterable[Match]) -> List[Match]:
    """Completed matches with two concrete sides."""
    return [m for m in matches if m.status == MATCH_COMPLETED and m.both_concrete() and m.winner_side]


def group_rank_key(row: GroupStanding) -> tuple:
    """Sort key after head-to-head is known. Lower = better."""
    return (-row.wins, -row.head_to_head_wins, -row.point_diff, -row.points_for, row.seed)


def compute_group_standings(
    matches: Iterable[Match],
    seeds: Dict[str, int],
    members: Optional[Iterable[str]] = None,
) -> List[GroupStanding]:
    """
    Rank one group.

    Args:
        matches: the group's matches (any status; only completed ones count)
        seeds: participant id -> seed, used for the final tie-break
        members: group members; defaults to everyone appearing in matches

    Missing scores count as 0 points.
    """
    matches = list(matches)
    if members is None:
        member_ids: List[str] = []
        for m in matches:
            for pid in (m.participant_a_id, m.participant_b_id):
                if pid is not None and pid not in member_ids:
                    member_ids.append(pid)
    else:
        member_ids = list(members)

    rows: Dict[str, GroupStanding] = {
        pid: GroupStanding(participant_id=pid, seed=seeds.get(pid, 0)) for pid in member_ids
    }
    completed = _completed_pairs(matches)

    for m in completed:
        a, b = m.participant_a_id, m.participant_b_id
        if a not in rows or b not in rows:
            continue
        score_a = m.score_a or 0
        score_b = m.score_b or 0
        rows[a].played += 1
        rows[b].played += 1
        rows[a].points_for += score_a
        rows[a].points_against += score_b
        rows[b].points_for += score_b
        rows[b].points_against += score_a
        winner = a if m.winner_side == SIDE_A else b
        loser = b if m.winner_side == SIDE_A else a
        rows[winner].wins += 1
        rows[loser].losses += 1

    # Head-to-head is only meaningful inside a block tied on wins
    ordered = sorted(rows.values(), key=lambda r: -r.wins)
    for _wins, block_iter in groupby(ordered, key=lambda r: r.wins):
        block = list(block_iter)
        if len(block) < 2:
            continue
        block_ids: Set[str] = {r.participant_id for r in block}
        for m in completed:
            if m.participant_a_id in block_ids and m.participant_b_id in block_ids:
                winner = m.participant_a_id if m.winner_side == SIDE_A else m.participant_b_id
                rows[winner].head_to_head_wins += 1

    result = sorted(rows.values(), key=group_rank_key)
    for index, row in enumerate(result, start=1):
        row.rank = index
    return result


def rank_group(matches: Iterable[Match], seeds: Dict[str, int], members: Optional[Iterable[str]] = None) -> List[str]:
    """Participant ids in finishing order."""
    return [row.participant_id for row in compute_group_standings(matches, seeds, members)]


def swiss_rank_key(row: SwissStanding) -> tuple:
    return (-row.points, -row.buchholz, row.seed)


def compute_swiss_standings(matches: Iterable[Match], seeds: Dict[str, int]) -> List[SwissStanding]:
    """
    Swiss table over completed matches.

    A win (bye included) is worth SWISS_WIN_POINTS. Buchholz is the sum of the
    points of every opponent actually faced; byes add nothing to it.
    """
    rows: Dict[str, SwissStanding] = {pid: SwissStanding(participant_id=pid, seed=seed) for pid, seed in seeds.items()}

    for m in matches:
        if m.status != MATCH_COMPLETED or not m.winner_side:
            continue
        winner = m.winner_id()
        if m.is_bye_match():
            if winner in rows:
                rows[winner].points += SWISS_WIN_POINTS
                rows[winner].wins += 1
                rows[winner].byes += 1
            continue
        loser = m.loser_id()
        if winner not in rows or loser not in rows:
            continue
        rows[winner].points += SWISS_WIN_POINTS
        rows[winner].wins += 1
        rows[loser].losses += 1
        rows[winner].opponents.append(loser)
        rows[loser].opponents.append(winner)

    for row in rows.values():
        row.buchholz = sum(rows[opp].points for opp in row.opponents)

    result = sorted(rows.values(), key=swiss_rank_key)
    for index, row in enumerate(result, start=1):
        row.rank = index
    return result


def played_pairs(matches: Iterable[Match]) -> Set[frozenset]:
    """Every unordered pair that has already been scheduled against each other."""
    pairs: Set[frozenset] = set()
    for m in matches:
        if m.both_concrete():
            pairs.add(frozenset((m.participant_a_id, m.participant_b_id)))
    return pairs

