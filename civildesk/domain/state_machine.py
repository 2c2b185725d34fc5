from __future__ import annotations

from civildesk.domain.errors import InvalidStatusTransitionError
from civildesk.domain.states import ALLOWED_TRANSITIONS, ComplaintStatus


class StateMachine:
    def can_transition(self, current: ComplaintStatus, target: ComplaintStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(current, set())

    def transition(self, current: ComplaintStatus, target: ComplaintStatus) -> ComplaintStatus:
        if not self.can_transition(current, target):
            raise InvalidStatusTransitionError(
                current,
                target,
                f"Cannot change status from {current.value} to {target.value}",
            )
        return target
