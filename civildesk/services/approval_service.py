from __future__ import annotations

import logging
from typing import Any

from civildesk.domain.errors import ForbiddenError, InvalidStatusTransitionError, NotFoundError, ValidationError
from civildesk.domain.models import Approval, clean_text, complaint_status, require_text
from civildesk.domain.policy import ROLE_DECISION_MAKER, Caller, authorize, normalize_role
from civildesk.domain.states import APPROVAL_OUTCOME_STATUS, ApprovalStatus, ComplaintStatus
from civildesk.infra.repositories import StaleRecordError, UniqueViolationError
from civildesk.services.complaint_service import ComplaintService, page_window

logger = logging.getLogger(__name__)

DISPOSITION_FIELDS = ("process_type", "process_reason", "processed_by_id", "processed_at")


ONE_APPROVAL_MESSAGE = (
    "Approval has already been requested for this complaint; "
    "a complaint can be submitted for approval only once and cannot be resubmitted"
)


class ApprovalService:
    """Decision records bound 1:1 to processed complaints.

    Resolving an approval and moving its complaint to the matching final
    status happen inside one repository transaction, so the two records are
    never observed out of step.
    """

    def __init__(self, complaints: ComplaintService) -> None:
        self.complaints = complaints
        self.repo = complaints.repo

    def create(
        self,
        caller: Caller,
        *,
        complaint_id: Any,
        title: Any,
        content: Any,
        approver_id: Any,
    ) -> dict[str, Any]:
        authorize(caller, "approval.request")
        clean_title = require_text(title, "Approval title is required")
        clean_content = require_text(content, "Approval content is required")
        try:
            resolved_approver = int(approver_id or 0)
        except (TypeError, ValueError):
            resolved_approver = 0
        if not resolved_approver:
            raise ValidationError("A decision-maker must be selected")

        complaint = self.complaints.require_complaint(complaint_id)
        current = complaint_status(complaint)
        if current != ComplaintStatus.PROCESSED:
            raise InvalidStatusTransitionError(
                current,
                ComplaintStatus.PENDING_APPROVAL,
                f"Cannot change status from {current.value} to {ComplaintStatus.PENDING_APPROVAL.value}",
            )

        approver = self.repo.get_user(resolved_approver)
        if not approver or normalize_role(approver.get("role")) != ROLE_DECISION_MAKER:
            raise ValidationError("Invalid decision-maker")

        if self.repo.get_approval_by_complaint(int(complaint["id"])):
            raise ValidationError(ONE_APPROVAL_MESSAGE)

        approval = Approval(
            complaint_id=int(complaint["id"]),
            title=clean_title,
            content=clean_content,
            requester_id=int(caller.user_id),
            approver_id=resolved_approver,
            requested_at=self.complaints.clock().isoformat(),
        )
        with self.repo.transaction():
            try:
                row = self.repo.create_approval(approval.to_row())
            except UniqueViolationError as exc:
                raise ValidationError(ONE_APPROVAL_MESSAGE) from exc
            self.complaints.transition(int(complaint["id"]), ComplaintStatus.PENDING_APPROVAL)

        logger.info(
            "Approval %s requested for complaint %s by clerk %s -> decision-maker %s",
            row["id"],
            complaint.get("receipt_number"),
            caller.user_id,
            resolved_approver,
        )
        return self._enrich(row)

    def get(self, caller: Caller, approval_id: Any) -> dict[str, Any]:
        authorize(caller, "approval.read")
        row = self._require_approval(approval_id)
        if caller.is_clerk and int(row["requester_id"]) != int(caller.user_id):
            raise ForbiddenError("Clerks can only view approvals they requested")
        if caller.is_decision_maker and int(row["approver_id"]) != int(caller.user_id):
            raise ForbiddenError("Decision-makers can only view approvals assigned to them")
        return self._enrich(row)

    def list_assigned(self, caller: Caller, *, page: Any = None, limit: Any = None) -> dict[str, Any]:
        authorize(caller, "approval.list")
        current_page, current_limit, offset = page_window(page, limit)
        items, total = self.repo.list_approvals(int(caller.user_id), offset=offset, limit=current_limit)
        return {
            "items": [self._with_names(r) for r in items],
            "total": total,
            "page": current_page,
            "limit": current_limit,
        }

    def approve(self, caller: Caller, approval_id: Any, reason: Any) -> dict[str, Any]:
        authorize(caller, "approval.approve")
        text = require_text(reason, "Approval reason is required")
        return self._decide(caller, approval_id, ApprovalStatus.APPROVED, reason=text)

    def reject(self, caller: Caller, approval_id: Any, reason: Any, follow_up_action: Any) -> dict[str, Any]:
        authorize(caller, "approval.reject")
        text = require_text(reason, "Rejection reason is required")
        follow_up = require_text(follow_up_action, "Follow-up action is required")
        return self._decide(caller, approval_id, ApprovalStatus.REJECTED, reason=text, follow_up_action=follow_up)

    def _decide(
        self,
        caller: Caller,
        approval_id: Any,
        outcome: ApprovalStatus,
        *,
        reason: str,
        follow_up_action: str | None = None,
    ) -> dict[str, Any]:
        with self.repo.transaction():
            row = self._require_approval(approval_id)
            approval = Approval.from_row(row)
            if approval.status != ApprovalStatus.PENDING:
                raise InvalidStatusTransitionError(
                    approval.status,
                    outcome,
                    f"Cannot change approval from {approval.status.value} to {outcome.value}",
                )
            if approval.approver_id != int(caller.user_id):
                raise ForbiddenError("Only the assigned decision-maker can resolve this approval")

            decision = approval.decide(
                outcome,
                reason=reason,
                follow_up_action=follow_up_action,
                decided_at=self.complaints.clock().isoformat(),
            )
            try:
                updated = self.repo.record_approval_decision(int(row["id"]), decision)
            except StaleRecordError as exc:
                raise InvalidStatusTransitionError(
                    ApprovalStatus.PENDING,
                    outcome,
                    "Approval has already been decided",
                ) from exc
            self.complaints.transition(approval.complaint_id, APPROVAL_OUTCOME_STATUS[outcome])

        logger.info("Approval %s %s by decision-maker %s", updated["id"], outcome.value, caller.user_id)
        return self._enrich(updated)

    def _require_approval(self, approval_id: Any) -> dict[str, Any]:
        try:
            aid = int(approval_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid approval id") from exc
        row = self.repo.get_approval(aid)
        if not row:
            raise NotFoundError("Approval not found")
        return row

    def _with_names(self, row: dict[str, Any]) -> dict[str, Any]:
        out = dict(row)
        requester = self.repo.get_user(int(row["requester_id"])) or {}
        approver = self.repo.get_user(int(row["approver_id"])) or {}
        out["requester_name"] = clean_text(requester.get("name")) or None
        out["approver_name"] = clean_text(approver.get("name")) or None
        complaint = self.repo.get_complaint(int(row["complaint_id"]))
        out["complaint"] = self.complaints.summarize(complaint) if complaint else None
        return out

    # Read-time join; nothing here is stored on the approval itself.
    def _enrich(self, row: dict[str, Any]) -> dict[str, Any]:
        out = self._with_names(row)
        complaint = out.get("complaint") or {}
        for key in DISPOSITION_FIELDS:
            out[key] = complaint.get(key)
        out["review_comment"] = complaint.get("review_comment")
        out["notifications"] = self.repo.list_notifications(int(row["complaint_id"]))
        return out
