from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal, Optional, Tuple

OrderStatus = Literal["pending", "preparing", "ready", "picked_up"]

ORDER_STATUSES: Tuple[str, ...] = ("pending", "preparing", "ready", "picked_up")

NEXT_STATUS: Dict[str, str] = {
    "pending": "preparing",
    "preparing": "ready",
    "ready": "picked_up",
}

ACTION_LABELS: Dict[str, str] = {
    "preparing": "Start Preparing",
    "ready": "Mark Ready",
    "picked_up": "Mark Picked Up",
}


class InvalidTransitionError(Exception):
    """Raised when a status change is not the single forward step from the current status."""


@dataclass(frozen=True)
class StatusAction:
    label: str
    target: str


def next_status(status: str) -> Optional[str]:
    if status not in ORDER_STATUSES:
        raise ValueError(f"Unknown order status: {status}")
    return NEXT_STATUS.get(status)


def available_action(status: str) -> Optional[StatusAction]:
    """Return the one action a kitchen screen offers for ``status``, or None when terminal."""
    target = next_status(status)
    if target is None:
        return None
    return StatusAction(label=ACTION_LABELS[target], target=target)


def check_transition(current: str, new_status: str) -> None:
    if new_status not in ORDER_STATUSES:
        raise InvalidTransitionError(f"Unknown order status: {new_status}")
    expected = next_status(current)
    if expected is None:
        raise InvalidTransitionError(f"Order is already {current}; no further transition")
    if new_status != expected:
        raise InvalidTransitionError(
            f"Cannot move order from {current} to {new_status}; next status is {expected}"
        )
