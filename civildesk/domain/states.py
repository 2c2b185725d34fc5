from __future__ import annotations

from enum import Enum


class ComplaintStatus(str, Enum):
    RECEIVED = "RECEIVED"
    REVIEWING = "REVIEWING"
    PROCESSED = "PROCESSED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Clerk's recommendation, distinct from the approval outcome.
class ProcessType(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    HOLD = "HOLD"
    TRANSFER = "TRANSFER"


ALLOWED_TRANSITIONS: dict[ComplaintStatus, set[ComplaintStatus]] = {
    ComplaintStatus.RECEIVED: {ComplaintStatus.REVIEWING},
    ComplaintStatus.REVIEWING: {ComplaintStatus.PROCESSED},
    ComplaintStatus.PROCESSED: {ComplaintStatus.PENDING_APPROVAL},
    ComplaintStatus.PENDING_APPROVAL: {ComplaintStatus.APPROVED, ComplaintStatus.REJECTED},
    ComplaintStatus.APPROVED: set(),
    ComplaintStatus.REJECTED: {ComplaintStatus.REVIEWING},
}

# Statuses a clerk's read moves into REVIEWING.
AUTO_REVIEW_STATUSES = frozenset({ComplaintStatus.RECEIVED, ComplaintStatus.REJECTED})

TERMINAL_APPROVAL_STATUSES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED})

# Approval outcome -> complaint status it drives.
APPROVAL_OUTCOME_STATUS: dict[ApprovalStatus, ComplaintStatus] = {
    ApprovalStatus.APPROVED: ComplaintStatus.APPROVED,
    ApprovalStatus.REJECTED: ComplaintStatus.REJECTED,
}
