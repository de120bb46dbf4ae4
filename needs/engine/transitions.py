"""
Transition Validator

The legal status graph. A self-transition is always legal; anything not in
the table is rejected and the status stays where it was.
"""

from typing import Dict, FrozenSet, List

from ..common.errors import IllegalTransitionError
from ..common.schemas.need_records import NeedStatus

_W, _R, _O, _Y, _G = (
    NeedStatus.WHITE,
    NeedStatus.RED,
    NeedStatus.ORANGE,
    NeedStatus.YELLOW,
    NeedStatus.GREEN,
)

LEGAL_TRANSITIONS: Dict[NeedStatus, FrozenSet[NeedStatus]] = {
    _W: frozenset({_R, _Y, _O}),
    _R: frozenset({_Y, _O}),
    _Y: frozenset({_O, _G, _R, _W}),
    _O: frozenset({_G, _R, _Y}),
    _G: frozenset({_Y, _O, _R}),
}


def is_legal(from_status: NeedStatus, to_status: NeedStatus) -> bool:
    if from_status == to_status:
        return True
    return to_status in LEGAL_TRANSITIONS.get(from_status, frozenset())


def allowed_targets(from_status: NeedStatus) -> List[NeedStatus]:
    """Legal targets including staying put, most severe first."""
    targets = set(LEGAL_TRANSITIONS.get(from_status, frozenset())) | {from_status}
    return sorted(targets, key=severity_rank, reverse=True)


def require_legal(from_status: NeedStatus, to_status: NeedStatus, **context) -> None:
    """Raise IllegalTransitionError unless from -> to is in the graph."""
    if not is_legal(from_status, to_status):
        raise IllegalTransitionError(from_status, to_status, **context)


def severity_rank(status: NeedStatus) -> int:
    """RED > ORANGE > YELLOW > GREEN > WHITE"""
    return status.severity
