"""
Prediction state machine
"""

from typing import Dict, FrozenSet

from src.database.enums import PredictionStatus
from src.utils.exceptions import ConflictError

S = PredictionStatus

TRANSITIONS: Dict[PredictionStatus, FrozenSet[PredictionStatus]] = {
    S.NEW: frozenset({S.ACKNOWLEDGED, S.DISMISSED, S.FALSE_POSITIVE, S.WORK_ORDER_CREATED}),
    S.ACKNOWLEDGED: frozenset({S.WORK_ORDER_CREATED, S.RESOLVED}),
    S.DISMISSED: frozenset({S.RESOLVED}),
    S.FALSE_POSITIVE: frozenset({S.RESOLVED}),
    S.WORK_ORDER_CREATED: frozenset({S.RESOLVED}),
    S.RESOLVED: frozenset(),
}

OPEN_STATUSES = frozenset({S.NEW, S.ACKNOWLEDGED})


def can_transition(current: PredictionStatus, target: PredictionStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(prediction_id: str, current: str, target: PredictionStatus) -> PredictionStatus:
    """Validate a transition from a stored status value

    Raises:
        ConflictError: when the table does not allow it
    """
    status = PredictionStatus(current)
    if not can_transition(status, target):
        raise ConflictError(
            f"Prediction {prediction_id} cannot move from {status.value} to {target.value}",
            {'prediction_id': prediction_id, 'status': status.value, 'requested': target.value}
        )
    return status
