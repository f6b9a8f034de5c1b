from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracket_engine.models.bracket import Bracket


class BracketEntrant(SQLModel, table=True):
    """Seeded participant snapshot taken at generation time."""

    __table_args__ = (
        SAUniqueConstraint("bracket_id", "participant_id", name="uq_entrant_bracket_participant"),
        SAUniqueConstraint("bracket_id", "seed", name="uq_entrant_bracket_seed"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bracket_id: Optional[int] = Field(default=None, foreign_key="bracket.id", index=True)
    participant_id: str
    display_name: str
    rating: float
    registered_at: Optional[datetime] = Field(default=None)
    seed: int  # 1-based, 1 = highest rating
    group_id: Optional[str] = Field(default=None)  # group stage formats only

    bracket: Optional["Bracket"] = Relationship(back_populates="entrants")
