from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class GenerationLock(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "event_type", name="uq_generationlock_tournament_event"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: str
    event_type: str
    acquired_at: datetime = Field(default_factory=datetime.utcnow)
    owner: Optional[str] = None
