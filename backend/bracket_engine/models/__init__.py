from bracket_engine.models.bracket import Bracket, BracketFormat
from bracket_engine.models.entrant import BracketEntrant
from bracket_engine.models.generation_lock import GenerationLock
from bracket_engine.models.match import Match
from bracket_engine.models.slot import BYE, ByeSlot, ConcreteSlot, PlaceholderSlot, Slot

__all__ = [
    "Bracket",
    "BracketFormat",
    "BracketEntrant",
    "GenerationLock",
    "Match",
    "Slot",
    "ConcreteSlot",
    "PlaceholderSlot",
    "ByeSlot",
    "BYE",
]
