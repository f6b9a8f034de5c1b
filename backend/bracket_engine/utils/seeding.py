"""
Participant seeding.

Deterministic rules for turning approved, rated participants into a seed order.
Seed 1 = highest rating. Ties: earlier registration first, then participant id.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from bracket_engine.services.bracket_errors import InsufficientParticipants, InvalidFormatParameters

MIN_PARTICIPANTS = 4


@dataclass
class ParticipantEntry:
    """Approved participant as supplied by the registration subsystem."""

    id: str
    display_name: str
    rating: float
    registered_at: Optional[datetime] = None


@dataclass
class SeededParticipant:
    seed: int
    participant_id: str
    display_name: str
    rating: float
    registered_at: Optional[datetime] = None


def seed_rank_key(entry: ParticipantEntry) -> tuple:
    """
    Return sort key for seeding. Lower = better.

    Order: -rating, registered_at (missing timestamps last), participant id.
    """
    has_no_timestamp = entry.registered_at is None
    registered = entry.registered_at or datetime.max
    return (-entry.rating, has_no_timestamp, registered, entry.id)


def rank_participants(participants: Iterable[ParticipantEntry]) -> List[SeededParticipant]:
    """
    Order approved participants into a seed sequence.

    Raises:
        InsufficientParticipants: fewer than MIN_PARTICIPANTS supplied
        InvalidFormatParameters: the same participant id supplied twice
    """
    entries = list(participants)
    if len(entries) < MIN_PARTICIPANTS:
        raise InsufficientParticipants(
            f"At least {MIN_PARTICIPANTS} participants are required, got {len(entries)}",
            context={"participant_count": len(entries), "minimum": MIN_PARTICIPANTS},
        )

    seen = set()
    for entry in entries:
        if entry.id in seen:
            raise InvalidFormatParameters(
                f"Participant {entry.id} supplied more than once",
                context={"participant_id": entry.id},
            )
        seen.add(entry.id)

    ordered = sorted(entries, key=seed_rank_key)
    return [
        SeededParticipant(
            seed=index + 1,
            participant_id=entry.id,
            display_name=entry.display_name,
            rating=entry.rating,
            registered_at=entry.registered_at,
        )
        for index, entry in enumerate(ordered)
    ]
