# Import every model so Base.metadata knows all tables.
from songbattle.models.user import User  # noqa: F401
from songbattle.models.battle import (  # noqa: F401
    Battle,
    BattleStatus,
    Participant,
    Round,
    RoundPhase,
    Submission,
    Visibility,
    Vote,
)
from songbattle.models.task import RoundTask  # noqa: F401
from songbattle.models.event import Event  # noqa: F401
