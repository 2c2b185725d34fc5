from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from civildesk.config import settings
from civildesk.domain.errors import InvalidStatusTransitionError, NotFoundError, ValidationError
from civildesk.domain.models import (
    Complaint,
    Document,
    Notification,
    UploadedFile,
    clean_text,
    complaint_status,
    require_text,
)
from civildesk.domain.policy import Caller, authorize, ensure_owner
from civildesk.domain.state_machine import StateMachine
from civildesk.domain.states import AUTO_REVIEW_STATUSES, ComplaintStatus, ProcessType
from civildesk.infra.blob_store import BlobStore, LocalBlobStore, validate_uploads
from civildesk.infra.repositories import ComplaintRepository, InMemoryRepository
from civildesk.services.receipt_numbers import allocate_receipt_number

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


def local_clock() -> Callable[[], datetime]:
    try:
        tz = ZoneInfo(settings.receipt_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown RECEIPT_TIMEZONE %r; falling back to UTC", settings.receipt_timezone)
        tz = timezone.utc
    return lambda: datetime.now(tz)


def page_window(page: Any, limit: Any) -> tuple[int, int, int]:
    try:
        current_page = int(page) if page else 1
    except (TypeError, ValueError):
        current_page = 1
    try:
        current_limit = int(limit) if limit else DEFAULT_PAGE_SIZE
    except (TypeError, ValueError):
        current_limit = DEFAULT_PAGE_SIZE
    current_page = current_page if current_page > 0 else 1
    current_limit = current_limit if current_limit > 0 else DEFAULT_PAGE_SIZE
    return current_page, current_limit, (current_page - 1) * current_limit


class ComplaintService:
    def __init__(
        self,
        repo: ComplaintRepository | None = None,
        blob_store: BlobStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repo = repo or InMemoryRepository()
        self.sm = StateMachine()
        self.clock = clock or local_clock()
        self._blob_store = blob_store

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = LocalBlobStore()
        return self._blob_store

    # Status Transition Engine: every status write goes through here.
    def transition(
        self,
        complaint_id: Any,
        target: ComplaintStatus,
        updates: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        row = self.require_complaint(complaint_id)
        current = complaint_status(row)
        nxt = self.sm.transition(current, target)

        payload = dict(updates or {})
        payload["status"] = nxt.value
        updated = self.repo.update_complaint(int(row["id"]), payload)
        logger.info("Complaint %s status %s -> %s", row.get("receipt_number"), current.value, nxt.value)
        return updated

    def submit(
        self,
        caller: Caller,
        *,
        type_id: Any,
        title: Any,
        content: Any,
        contact_phone: Any,
        attachments: Iterable[UploadedFile] = (),
    ) -> dict[str, Any]:
        authorize(caller, "complaint.submit")

        fields = [clean_text(v) for v in (type_id, title, content, contact_phone)]
        if not all(fields):
            raise ValidationError("Required input is missing")
        raw_type, clean_title, clean_content, clean_phone = fields

        try:
            resolved_type = int(raw_type)
        except ValueError as exc:
            raise ValidationError("Complaint type id must be numeric") from exc
        if not self.repo.get_complaint_type(resolved_type):
            raise ValidationError("Unknown complaint type")

        uploads = validate_uploads(attachments)
        now = self.clock()

        def insert(receipt_number: str) -> dict[str, Any]:
            complaint = Complaint(
                receipt_number=receipt_number,
                type_id=resolved_type,
                title=clean_title,
                content=clean_content,
                contact_phone=clean_phone,
                applicant_id=int(caller.user_id),
                created_at=now.isoformat(),
                updated_at=now.isoformat(),
            )
            return self.repo.create_complaint(complaint.to_row())

        # Blobs are written first so a failed save never leaves a complaint behind.
        stored: list[tuple[UploadedFile, str]] = []
        try:
            for upload in uploads:
                stored.append((upload, self.blob_store.save(upload)))
            with self.repo.transaction():
                row = allocate_receipt_number(now, self.repo.count_complaints_with_receipt_prefix, insert)
                for upload, stored_path in stored:
                    self._record_document(int(row["id"]), upload, stored_path)
        except BaseException:
            self._discard_blobs(path for _, path in stored)
            raise

        logger.info("Complaint %s received from applicant %s", row["receipt_number"], caller.user_id)
        return self.describe(row)

    def get(self, caller: Caller, complaint_id: int) -> dict[str, Any]:
        authorize(caller, "complaint.read")
        row = self.require_complaint(complaint_id)
        if caller.is_applicant:
            ensure_owner(caller, row["applicant_id"], "Applicants can only view their own complaints")

        # Opening a complaint as a clerk puts it under review.
        if caller.is_clerk and complaint_status(row) in AUTO_REVIEW_STATUSES:
            with self.repo.transaction():
                row = self.require_complaint(complaint_id)
                if complaint_status(row) in AUTO_REVIEW_STATUSES:
                    row = self.transition(int(row["id"]), ComplaintStatus.REVIEWING)
        return self.describe(row)

    def list_complaints(
        self,
        caller: Caller,
        *,
        status: str | None = None,
        page: Any = None,
        limit: Any = None,
    ) -> dict[str, Any]:
        authorize(caller, "complaint.list")
        status_filter = clean_text(status) or None
        if status_filter is not None and status_filter not in {s.value for s in ComplaintStatus}:
            raise ValidationError("Unknown complaint status")

        current_page, current_limit, offset = page_window(page, limit)
        items, total = self.repo.list_complaints(
            status=status_filter,
            applicant_id=int(caller.user_id) if caller.is_applicant else None,
            offset=offset,
            limit=current_limit,
        )
        return {
            "items": [self.summarize(r) for r in items],
            "total": total,
            "page": current_page,
            "limit": current_limit,
        }

    def record_review(self, caller: Caller, complaint_id: int, comment: Any) -> dict[str, Any]:
        authorize(caller, "complaint.review")
        text = require_text(comment, "Review comment is required")

        with self.repo.transaction():
            row = self.require_complaint(complaint_id)
            current = complaint_status(row)
            if current != ComplaintStatus.REVIEWING:
                raise InvalidStatusTransitionError(
                    current,
                    ComplaintStatus.REVIEWING,
                    f"Review comments can only be saved while REVIEWING (current: {current.value})",
                )
            updated = self.repo.update_complaint(int(row["id"]), {"review_comment": text})
        return self.describe(updated)

    def dispose(self, caller: Caller, complaint_id: int, process_type: Any, reason: Any) -> dict[str, Any]:
        authorize(caller, "complaint.dispose")
        raw_type = clean_text(process_type)
        if raw_type not in {p.value for p in ProcessType}:
            raise ValidationError("Process type must be one of APPROVE/REJECT/HOLD/TRANSFER")
        text = require_text(reason, "Process reason is required")

        with self.repo.transaction():
            updated = self.transition(
                complaint_id,
                ComplaintStatus.PROCESSED,
                {
                    "process_type": raw_type,
                    "process_reason": text,
                    "processed_by_id": int(caller.user_id),
                    "processed_at": self.clock().isoformat(),
                },
            )
        logger.info("Complaint %s disposed as %s by clerk %s", updated.get("receipt_number"), raw_type, caller.user_id)
        return self.describe(updated)

    def delete(self, caller: Caller, complaint_id: int) -> dict[str, str]:
        authorize(caller, "complaint.delete")
        with self.repo.transaction():
            row = self.require_complaint(complaint_id)
            ensure_owner(caller, row["applicant_id"], "Applicants can only delete their own complaints")
            current = complaint_status(row)
            if current != ComplaintStatus.RECEIVED:
                raise InvalidStatusTransitionError(
                    current,
                    "DELETED",
                    f"Only RECEIVED complaints can be deleted (current: {current.value})",
                )
            documents = self.repo.list_documents(int(row["id"]))
            self.repo.delete_complaint(int(row["id"]))

        self._discard_blobs(str(doc["stored_path"]) for doc in documents)
        logger.info("Complaint %s deleted by applicant %s", row.get("receipt_number"), caller.user_id)
        return {"message": "Complaint deleted"}

    def notify_agency(self, caller: Caller, complaint_id: int, target_agency: Any, content: Any) -> dict[str, Any]:
        authorize(caller, "complaint.notify")
        agency = require_text(target_agency, "Target agency is required")
        text = require_text(content, "Notification content is required")
        row = self.require_complaint(complaint_id)

        # Delivery is simulated; the record is always SENT.
        notification = Notification(
            complaint_id=int(row["id"]),
            target_agency=agency,
            notification_content=text,
            sent_at=self.clock().isoformat(),
        )
        created = self.repo.create_notification(notification.to_row())
        logger.info("Notification sent to %s for complaint %s", agency, row.get("receipt_number"))
        return created

    def list_notifications(self, caller: Caller, complaint_id: int) -> list[dict[str, Any]]:
        authorize(caller, "complaint.notifications")
        row = self.require_complaint(complaint_id)
        return self.repo.list_notifications(int(row["id"]))

    def get_document(self, caller: Caller, complaint_id: int, document_id: int) -> tuple[dict[str, Any], bytes]:
        authorize(caller, "document.download")
        row = self.require_complaint(complaint_id)
        if caller.is_applicant:
            ensure_owner(caller, row["applicant_id"], "Applicants can only download their own documents")

        doc = self.repo.get_document(int(document_id))
        if not doc:
            raise NotFoundError("Document not found")
        if int(doc["complaint_id"]) != int(row["id"]):
            raise NotFoundError("Document does not belong to this complaint")
        return doc, self.blob_store.read(str(doc["stored_path"]))

    def describe(self, row: dict[str, Any]) -> dict[str, Any]:
        complaint_id = int(row["id"])
        detail = self.summarize(row)
        detail["documents"] = self.repo.list_documents(complaint_id)
        detail["notifications"] = self.repo.list_notifications(complaint_id)
        detail["approval"] = self.repo.get_approval_by_complaint(complaint_id)
        return detail

    def summarize(self, row: dict[str, Any]) -> dict[str, Any]:
        out = dict(row)
        out["type"] = self.repo.get_complaint_type(int(row["type_id"]))
        return out

    def _record_document(self, complaint_id: int, upload: UploadedFile, stored_path: str) -> dict[str, Any]:
        document = Document(
            complaint_id=complaint_id,
            file_name=upload.file_name,
            stored_path=stored_path,
            mime_type=upload.mime_type,
            file_size=upload.size,
        )
        return self.repo.create_document(document.to_row())

    def _discard_blobs(self, stored_paths: Iterable[str]) -> None:
        for stored_path in stored_paths:
            try:
                self.blob_store.delete(stored_path)
            except Exception:
                logger.exception("Could not remove stored file %s", stored_path)

    def require_complaint(self, complaint_id: Any) -> dict[str, Any]:
        try:
            cid = int(complaint_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid complaint id") from exc
        row = self.repo.get_complaint(cid)
        if not row:
            raise NotFoundError("Complaint not found")
        return row
