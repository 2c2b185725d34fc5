from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from civildesk.domain.errors import ForbiddenError, UnauthorizedError

ROLE_APPLICANT = "applicant"
ROLE_CLERK = "clerk"
ROLE_DECISION_MAKER = "decision_maker"

ALL_ROLES = frozenset({ROLE_APPLICANT, ROLE_CLERK, ROLE_DECISION_MAKER})
STAFF_ROLES = frozenset({ROLE_CLERK, ROLE_DECISION_MAKER})

# Role names issued by the legacy account service.
ROLE_ALIASES = {
    "APPLICANT": ROLE_APPLICANT,
    "OFFICER": ROLE_CLERK,
    "APPROVER": ROLE_DECISION_MAKER,
    "decision-maker": ROLE_DECISION_MAKER,
}

OPERATION_ROLES: dict[str, frozenset[str]] = {
    "complaint.submit": frozenset({ROLE_APPLICANT}),
    "complaint.list": ALL_ROLES,
    "complaint.read": ALL_ROLES,
    "complaint.delete": frozenset({ROLE_APPLICANT}),
    "complaint.review": frozenset({ROLE_CLERK}),
    "complaint.dispose": frozenset({ROLE_CLERK}),
    "complaint.notify": frozenset({ROLE_CLERK}),
    "complaint.notifications": frozenset({ROLE_CLERK}),
    "document.download": ALL_ROLES,
    "approval.request": frozenset({ROLE_CLERK}),
    "approval.read": STAFF_ROLES,
    "approval.list": frozenset({ROLE_DECISION_MAKER}),
    "approval.approve": frozenset({ROLE_DECISION_MAKER}),
    "approval.reject": frozenset({ROLE_DECISION_MAKER}),
}


def normalize_role(role: Any) -> str:
    raw = str(role or "").strip()
    return ROLE_ALIASES.get(raw, raw.lower())


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: str
    name: str = ""

    @property
    def is_applicant(self) -> bool:
        return self.role == ROLE_APPLICANT

    @property
    def is_clerk(self) -> bool:
        return self.role == ROLE_CLERK

    @property
    def is_decision_maker(self) -> bool:
        return self.role == ROLE_DECISION_MAKER


def authorize(caller: Caller | None, operation: str) -> Caller:
    if caller is None:
        raise UnauthorizedError("Authentication token is required")
    allowed = OPERATION_ROLES.get(operation)
    if allowed is None:
        raise ForbiddenError(f"Unknown operation: {operation}")
    if caller.role not in allowed:
        raise ForbiddenError("Access denied")
    return caller


def ensure_owner(caller: Caller, owner_id: Any, message: str = "Access denied") -> None:
    if int(owner_id) != int(caller.user_id):
        raise ForbiddenError(message)
