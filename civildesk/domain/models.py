from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from civildesk.domain.errors import InvalidStatusTransitionError, ValidationError
from civildesk.domain.states import ApprovalStatus, ComplaintStatus, TERMINAL_APPROVAL_STATUSES


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def clean_text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def require_text(value: Any, message: str) -> str:
    text = clean_text(value)
    if not text:
        raise ValidationError(message)
    return text


@dataclass
class User:
    id: int
    user_id: str
    name: str
    role: str
    phone: str | None = None


@dataclass
class ComplaintType:
    id: int
    name: str
    description: str = ""


@dataclass
class Complaint:
    receipt_number: str
    type_id: int
    title: str
    content: str
    contact_phone: str
    applicant_id: int
    status: ComplaintStatus = ComplaintStatus.RECEIVED
    review_comment: str | None = None
    process_type: str | None = None
    process_reason: str | None = None
    processed_by_id: int | None = None
    processed_at: str | None = None
    id: int | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        if row["id"] is None:
            row.pop("id")
        return row


@dataclass
class Document:
    complaint_id: int
    file_name: str
    stored_path: str
    mime_type: str
    file_size: int
    id: int | None = None
    uploaded_at: str = field(default_factory=utc_now)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        if row["id"] is None:
            row.pop("id")
        return row


@dataclass
class Notification:
    """Outbound advisory to another agency. Append-only; always SENT."""

    complaint_id: int
    target_agency: str
    notification_content: str
    status: str = "SENT"
    id: int | None = None
    sent_at: str = field(default_factory=utc_now)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        if row["id"] is None:
            row.pop("id")
        return row


@dataclass
class Approval:
    """Binding decision record for a processed complaint.

    Created once in PENDING, then resolved exactly once through ``decide``.
    Decision fields are never patched afterwards.
    """

    complaint_id: int
    title: str
    content: str
    requester_id: int
    approver_id: int
    status: ApprovalStatus = ApprovalStatus.PENDING
    approval_reason: str | None = None
    rejection_reason: str | None = None
    follow_up_action: str | None = None
    id: int | None = None
    requested_at: str = field(default_factory=utc_now)
    decided_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Approval":
        return cls(
            complaint_id=int(row["complaint_id"]),
            title=str(row.get("title") or ""),
            content=str(row.get("content") or ""),
            requester_id=int(row["requester_id"]),
            approver_id=int(row["approver_id"]),
            status=ApprovalStatus(row.get("status") or ApprovalStatus.PENDING.value),
            approval_reason=row.get("approval_reason"),
            rejection_reason=row.get("rejection_reason"),
            follow_up_action=row.get("follow_up_action"),
            id=row.get("id"),
            requested_at=str(row.get("requested_at") or utc_now()),
            decided_at=row.get("decided_at"),
        )

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        if row["id"] is None:
            row.pop("id")
        return row

    def decide(
        self,
        outcome: ApprovalStatus,
        *,
        reason: str,
        follow_up_action: str | None = None,
        decided_at: str | None = None,
    ) -> dict[str, Any]:
        if self.status in TERMINAL_APPROVAL_STATUSES:
            raise InvalidStatusTransitionError(
                self.status,
                outcome,
                f"Cannot change approval from {self.status.value} to {outcome.value}",
            )
        if outcome not in TERMINAL_APPROVAL_STATUSES:
            raise ValidationError(f"Unsupported approval outcome: {outcome.value}")

        decision: dict[str, Any] = {
            "status": outcome.value,
            "decided_at": decided_at or utc_now(),
        }
        if outcome == ApprovalStatus.APPROVED:
            decision["approval_reason"] = require_text(reason, "Approval reason is required")
        else:
            decision["rejection_reason"] = require_text(reason, "Rejection reason is required")
            decision["follow_up_action"] = require_text(follow_up_action, "Follow-up action is required")

        self.status = outcome
        self.decided_at = decision["decided_at"]
        self.approval_reason = decision.get("approval_reason")
        self.rejection_reason = decision.get("rejection_reason")
        self.follow_up_action = decision.get("follow_up_action")
        return decision


@dataclass
class VerificationSession:
    session_id: str
    complaint_id: int
    receipt_number: str
    contact_phone: str
    code: str
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def complaint_status(row: dict[str, Any]) -> ComplaintStatus:
    return ComplaintStatus(row["status"])
