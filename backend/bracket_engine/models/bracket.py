from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracket_engine.models.entrant import BracketEntrant
    from bracket_engine.models.match import Match


class BracketFormat(str, Enum):
    single_elimination = "single_elimination"
    double_elimination = "double_elimination"
    round_robin = "round_robin"
    swiss_system = "swiss_system"
    hybrid = "hybrid"


# Bracket lifecycle
BRACKET_DRAFT = "DRAFT"  # in-memory only, never persisted
BRACKET_GENERATED = "GENERATED"
BRACKET_IN_PROGRESS = "IN_PROGRESS"
BRACKET_COMPLETED = "COMPLETED"


class Bracket(SQLModel, table=True):
    # One bracket per tournament per event type
    # Ids are never reused after a regeneration
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "event_type", name="uq_bracket_tournament_event"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: str = Field(index=True)
    event_type: str  # e.g. "singles" | "doubles"
    name: str
    format: str
    status: str = Field(default=BRACKET_DRAFT)
    participant_count: int

    # Plan parameters (null where the format does not use them)
    group_size: Optional[int] = Field(default=None)
    advancers_per_group: Optional[int] = Field(default=None)
    group_count: Optional[int] = Field(default=None)
    bracket_size: Optional[int] = Field(default=None)
    swiss_total_rounds: Optional[int] = Field(default=None)

    rating_min: Optional[float] = Field(default=None)
    rating_max: Optional[float] = Field(default=None)
    champion_id: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    matches: List["Match"] = Relationship(back_populates="bracket")
    entrants: List["BracketEntrant"] = Relationship(back_populates="bracket")
