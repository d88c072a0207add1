from dataclasses import dataclass
from typing import Optional


ALREADY_SUBMITTED = "You have already submitted a song for this round"
MAXIMUM_SUBMITTED = "You have already submitted the maximum number of songs"


@dataclass(frozen=True)
class OrderDecision:
    allowed: bool
    position: Optional[int] = None
    message: Optional[str] = None


def decide_submission_order(existing_count: int, double_submissions: bool) -> OrderDecision:
    """Decide whether a participant's next entry in a round is allowed, and its position.

    ``existing_count`` must be read inside the same transaction that inserts
    the entry; a stale count would let concurrent attempts over-admit.
    """
    if existing_count <= 0:
        return OrderDecision(allowed=True, position=1)
    if existing_count == 1 and double_submissions:
        return OrderDecision(allowed=True, position=2)
    if existing_count == 1:
        return OrderDecision(allowed=False, message=ALREADY_SUBMITTED)
    return OrderDecision(allowed=False, message=MAXIMUM_SUBMITTED)
