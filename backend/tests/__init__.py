# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from bracket_engine.models.bracket import Bracket  # noqa: F401
from bracket_engine.models.entrant import BracketEntrant  # noqa: F401
from bracket_engine.models.generation_lock import GenerationLock  # noqa: F401
from bracket_engine.models.match import Match  # noqa: F401
