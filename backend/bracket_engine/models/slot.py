"""
Typed match slots.

A slot is exactly one of:
  ConcreteSlot    - a known participant
  PlaceholderSlot - "rank r of group G" or "winner/loser of match M"
  ByeSlot         - no opponent; the other side advances automatically

Placeholders are rewritten once, to Concrete or to Bye, by the advancement service.
"""
from dataclasses import dataclass
from typing import Optional, Union

SLOT_CONCRETE = "CONCRETE"
SLOT_PLACEHOLDER = "PLACEHOLDER"
SLOT_BYE = "BYE"

SOURCE_GROUP = "GROUP"
SOURCE_MATCH = "MATCH"

ROLE_WINNER = "WINNER"
ROLE_LOSER = "LOSER"


@dataclass(frozen=True)
class ConcreteSlot:
    participant_id: str

    kind = SLOT_CONCRETE


@dataclass(frozen=True)
class PlaceholderSlot:
    source_type: str  # SOURCE_GROUP | SOURCE_MATCH
    source_ref: str  # group id ("A") or match code ("W1-3")
    rank: Optional[int] = None  # group finishing position (GROUP sources)
    role: Optional[str] = None  # ROLE_WINNER | ROLE_LOSER (MATCH sources)

    kind = SLOT_PLACEHOLDER

    @classmethod
    def group_rank(cls, group_id: str, rank: int) -> "PlaceholderSlot":
        return cls(source_type=SOURCE_GROUP, source_ref=group_id, rank=rank)

    @classmethod
    def match_winner(cls, match_code: str) -> "PlaceholderSlot":
        return cls(source_type=SOURCE_MATCH, source_ref=match_code, role=ROLE_WINNER)

    @classmethod
    def match_loser(cls, match_code: str) -> "PlaceholderSlot":
        return cls(source_type=SOURCE_MATCH, source_ref=match_code, role=ROLE_LOSER)


@dataclass(frozen=True)
class ByeSlot:
    kind = SLOT_BYE


BYE = ByeSlot()

Slot = Union[ConcreteSlot, PlaceholderSlot, ByeSlot]
