from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from bracket_engine.models.slot import (
    BYE,
    SLOT_BYE,
    SLOT_CONCRETE,
    SLOT_PLACEHOLDER,
    ConcreteSlot,
    PlaceholderSlot,
    Slot,
)

if TYPE_CHECKING:
    from bracket_engine.models.bracket import Bracket

SIDE_A = "A"
SIDE_B = "B"

# Match runtime states
MATCH_PENDING = "PENDING"  # at least one slot still a placeholder
MATCH_READY = "READY"  # both slots concrete
MATCH_ONGOING = "ONGOING"
MATCH_COMPLETED = "COMPLETED"
MATCH_CANCELLED = "CANCELLED"

# Stages
STAGE_GROUP = "GROUP"
STAGE_KNOCKOUT = "KNOCKOUT"
STAGE_WINNERS = "WINNERS"
STAGE_LOSERS = "LOSERS"
STAGE_GRAND_FINAL = "GRAND_FINAL"
STAGE_SWISS = "SWISS"

GRAND_FINAL_CODE = "GF"
GRAND_FINAL_RESET_CODE = "GF2"


class Match(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("bracket_id", "match_code", name="uq_match_bracket_code"),
        SAUniqueConstraint("bracket_id", "match_number", name="uq_match_bracket_number"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bracket_id: Optional[int] = Field(default=None, foreign_key="bracket.id", index=True)
    stage: str  # GROUP | KNOCKOUT | WINNERS | LOSERS | GRAND_FINAL | SWISS
    round_ordinal: int
    round_name: str
    sequence_in_round: int
    match_number: int
    match_code: str
    group_id: Optional[str] = Field(default=None)  # GROUP stage only

    # Side A
    slot_a_kind: str = Field(default=SLOT_PLACEHOLDER)  # CONCRETE | PLACEHOLDER | BYE
    participant_a_id: Optional[str] = Field(default=None)
    source_a_type: Optional[str] = Field(default=None)  # GROUP | MATCH
    source_a_ref: Optional[str] = Field(default=None)
    source_a_rank: Optional[int] = Field(default=None)
    source_a_role: Optional[str] = Field(default=None)  # WINNER | LOSER

    # Side B
    slot_b_kind: str = Field(default=SLOT_PLACEHOLDER)
    participant_b_id: Optional[str] = Field(default=None)
    source_b_type: Optional[str] = Field(default=None)
    source_b_ref: Optional[str] = Field(default=None)
    source_b_rank: Optional[int] = Field(default=None)
    source_b_role: Optional[str] = Field(default=None)

    status: str = Field(default=MATCH_PENDING)
    winner_side: Optional[str] = Field(default=None)  # "A" | "B", only when COMPLETED
    score_a: Optional[int] = Field(default=None)
    score_b: Optional[int] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    bracket: Optional["Bracket"] = Relationship(back_populates="matches")

    def get_slot(self, side: str) -> Slot:
        prefix = _side_prefix(side)
        kind = getattr(self, f"slot_{prefix}_kind")
        if kind == SLOT_CONCRETE:
            return ConcreteSlot(participant_id=getattr(self, f"participant_{prefix}_id"))
        if kind == SLOT_BYE:
            return BYE
        return PlaceholderSlot(
            source_type=getattr(self, f"source_{prefix}_type"),
            source_ref=getattr(self, f"source_{prefix}_ref"),
            rank=getattr(self, f"source_{prefix}_rank"),
            role=getattr(self, f"source_{prefix}_role"),
        )

    def set_slot(self, side: str, slot: Slot) -> None:
        """Write a slot. Placeholder source columns are kept for traceability."""
        prefix = _side_prefix(side)
        setattr(self, f"slot_{prefix}_kind", slot.kind)
        if isinstance(slot, ConcreteSlot):
            setattr(self, f"participant_{prefix}_id", slot.participant_id)
        elif isinstance(slot, PlaceholderSlot):
            setattr(self, f"participant_{prefix}_id", None)
            setattr(self, f"source_{prefix}_type", slot.source_type)
            setattr(self, f"source_{prefix}_ref", slot.source_ref)
            setattr(self, f"source_{prefix}_rank", slot.rank)
            setattr(self, f"source_{prefix}_role", slot.role)
        else:
            setattr(self, f"participant_{prefix}_id", None)

    def source_of(self, side: str) -> Optional[PlaceholderSlot]:
        """Original placeholder of a side, kept after resolution. None for seeded sides."""
        prefix = _side_prefix(side)
        source_type = getattr(self, f"source_{prefix}_type")
        if source_type is None:
            return None
        return PlaceholderSlot(
            source_type=source_type,
            source_ref=getattr(self, f"source_{prefix}_ref"),
            rank=getattr(self, f"source_{prefix}_rank"),
            role=getattr(self, f"source_{prefix}_role"),
        )

    def participant_on(self, side: str) -> Optional[str]:
        slot = self.get_slot(side)
        if isinstance(slot, ConcreteSlot):
            return slot.participant_id
        return None

    def winner_id(self) -> Optional[str]:
        if self.status != MATCH_COMPLETED or self.winner_side is None:
            return None
        return self.participant_on(self.winner_side)

    def loser_id(self) -> Optional[str]:
        if self.status != MATCH_COMPLETED or self.winner_side is None:
            return None
        return self.participant_on(other_side(self.winner_side))

    def is_bye_match(self) -> bool:
        return self.slot_a_kind == SLOT_BYE or self.slot_b_kind == SLOT_BYE

    def both_concrete(self) -> bool:
        return self.slot_a_kind == SLOT_CONCRETE and self.slot_b_kind == SLOT_CONCRETE


def other_side(side: str) -> str:
    return SIDE_B if side == SIDE_A else SIDE_A


def _side_prefix(side: str) -> str:
    if side == SIDE_A:
        return "a"
    if side == SIDE_B:
        return "b"
    raise ValueError(f"Invalid side: {side}")
