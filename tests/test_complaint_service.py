"""Complaint lifecycle: intake, review, disposition, deletion and notices."""
from contextlib import contextmanager

import pytest

from civildesk.domain.errors import (
    ForbiddenError,
    InternalError,
    InvalidStatusTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from civildesk.domain.models import UploadedFile
from civildesk.domain.states import ComplaintStatus
from civildesk.infra.blob_store import LocalBlobStore
from civildesk.services.complaint_service import ComplaintService, page_window


class FlakyBlobStore:
    """Local store whose n-th save fails."""

    def __init__(self, root, fail_on):
        self.inner = LocalBlobStore(root)
        self.fail_on = fail_on
        self.saves = 0

    def save(self, upload):
        self.saves += 1
        if self.saves == self.fail_on:
            raise OSError("No space left on device")
        return self.inner.save(upload)

    def read(self, stored_path):
        return self.inner.read(stored_path)

    def delete(self, stored_path):
        self.inner.delete(stored_path)


class TestSubmit:
    def test_creates_received_complaint(self, submit):
        row = submit()
        assert row["status"] == "RECEIVED"
        assert row["receipt_number"] == "CMP-20240315-0001"
        assert row["applicant_id"] == 1
        assert row["type"]["name"] == "Road repair"
        assert row["documents"] == []
        assert row["approval"] is None

    def test_receipt_numbers_increase_within_day(self, submit):
        first = submit()
        second = submit(title="Second")
        assert second["receipt_number"] == "CMP-20240315-0002"
        assert first["receipt_number"] != second["receipt_number"]

    @pytest.mark.parametrize("field", ["type_id", "title", "content", "contact_phone"])
    def test_missing_field_rejected(self, submit, repo, field):
        with pytest.raises(ValidationError):
            submit(**{field: "   "})
        items, total = repo.list_complaints()
        assert total == 0

    def test_unknown_type_rejected(self, submit):
        with pytest.raises(ValidationError):
            submit(type_id=99)

    def test_only_applicants_submit(self, submit, clerk):
        with pytest.raises(ForbiddenError):
            submit(caller=clerk)

    def test_anonymous_submit_unauthorized(self, complaints):
        with pytest.raises(UnauthorizedError):
            complaints.submit(None, type_id=1, title="t", content="c", contact_phone="p")

    def test_attachments_are_stored(self, submit, complaints, applicant, pdf_upload):
        row = submit(attachments=[pdf_upload])
        assert len(row["documents"]) == 1
        doc = row["documents"][0]
        assert doc["file_name"] == "photo.pdf"
        assert doc["file_size"] == len(pdf_upload.data)

        meta, data = complaints.get_document(applicant, row["id"], doc["id"])
        assert data == pdf_upload.data
        assert meta["mime_type"] == "application/pdf"

    def test_rejects_unsupported_attachment(self, submit):
        bad = UploadedFile(file_name="run.exe", mime_type="application/x-msdownload", data=b"MZ")
        with pytest.raises(ValidationError, match="Unsupported file type"):
            submit(attachments=[bad])

    def test_rejects_too_many_attachments(self, submit, pdf_upload):
        with pytest.raises(ValidationError):
            submit(attachments=[pdf_upload] * 6)

    def test_failed_attachment_save_leaves_nothing_behind(self, repo, clock, applicant, pdf_upload, tmp_path):
        store = FlakyBlobStore(tmp_path / "flaky", fail_on=2)
        service = ComplaintService(repo, blob_store=store, clock=clock)
        with pytest.raises(OSError):
            service.submit(
                applicant,
                type_id=1,
                title="Pothole",
                content="Near the bus stop",
                contact_phone="010-1234-5678",
                attachments=[pdf_upload, pdf_upload],
            )

        items, total = repo.list_complaints()
        assert total == 0
        assert list((tmp_path / "flaky").iterdir()) == []

    def test_failed_document_record_rolls_back_complaint(self, submit, repo, blob_store, pdf_upload, monkeypatch):
        def broken_create_document(row):
            raise InternalError("documents table unavailable")

        monkeypatch.setattr(repo, "create_document", broken_create_document)
        with pytest.raises(InternalError):
            submit(attachments=[pdf_upload])

        items, total = repo.list_complaints()
        assert total == 0
        assert list(blob_store.root.iterdir()) == []

        monkeypatch.undo()
        assert submit()["receipt_number"] == "CMP-20240315-0001"


class TestRead:
    def test_clerk_read_starts_review(self, submit, complaints, clerk):
        row = submit()
        seen = complaints.get(clerk, row["id"])
        assert seen["status"] == "REVIEWING"

    def test_second_clerk_read_is_idempotent(self, submit, complaints, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        assert complaints.get(clerk, row["id"])["status"] == "REVIEWING"

    def test_applicant_read_does_not_change_status(self, submit, complaints, applicant):
        row = submit()
        assert complaints.get(applicant, row["id"])["status"] == "RECEIVED"

    def test_decision_maker_read_does_not_change_status(self, submit, complaints, decision_maker):
        row = submit()
        assert complaints.get(decision_maker, row["id"])["status"] == "RECEIVED"

    def test_applicant_cannot_read_others(self, submit, complaints, other_applicant):
        row = submit()
        with pytest.raises(ForbiddenError):
            complaints.get(other_applicant, row["id"])

    def test_missing_complaint(self, complaints, clerk):
        with pytest.raises(NotFoundError):
            complaints.get(clerk, 404)

    def test_clerk_read_of_processed_keeps_status(self, processed, complaints, clerk):
        assert complaints.get(clerk, processed["id"])["status"] == "PROCESSED"


class TestList:
    def test_applicant_sees_only_own(self, submit, complaints, applicant, other_applicant):
        submit()
        submit(caller=other_applicant)
        result = complaints.list_complaints(applicant)
        assert result["total"] == 1
        assert all(item["applicant_id"] == 1 for item in result["items"])

    def test_clerk_sees_all_and_filters_by_status(self, submit, complaints, clerk, other_applicant):
        first = submit()
        submit(caller=other_applicant)
        complaints.get(clerk, first["id"])

        assert complaints.list_complaints(clerk)["total"] == 2
        reviewing = complaints.list_complaints(clerk, status="REVIEWING")
        assert [i["id"] for i in reviewing["items"]] == [first["id"]]

    def test_pagination(self, submit, complaints, clerk):
        for n in range(3):
            submit(title=f"Complaint {n}")
        page = complaints.list_complaints(clerk, page=2, limit=2)
        assert page["total"] == 3
        assert page["page"] == 2
        assert len(page["items"]) == 1

    def test_unknown_status_filter(self, complaints, clerk):
        with pytest.raises(ValidationError):
            complaints.list_complaints(clerk, status="ARCHIVED")

    def test_page_window_defaults(self):
        assert page_window(None, None) == (1, 10, 0)
        assert page_window("3", "5") == (3, 5, 10)
        assert page_window(-1, "x") == (1, 10, 0)


class TestReviewAndDispose:
    def test_review_requires_reviewing(self, submit, complaints, clerk):
        row = submit()
        with pytest.raises(InvalidStatusTransitionError):
            complaints.record_review(clerk, row["id"], "note")

    def test_review_saves_comment_without_status_change(self, submit, complaints, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        updated = complaints.record_review(clerk, row["id"], "Checked on site")
        assert updated["review_comment"] == "Checked on site"
        assert updated["status"] == "REVIEWING"

    def test_review_requires_comment(self, submit, complaints, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        with pytest.raises(ValidationError):
            complaints.record_review(clerk, row["id"], "  ")

    def test_dispose_records_fields(self, processed):
        assert processed["status"] == "PROCESSED"
        assert processed["process_type"] == "APPROVE"
        assert processed["process_reason"] == "Repair scheduled"
        assert processed["processed_by_id"] == 3
        assert processed["processed_at"].startswith("2024-03-15")

    def test_dispose_from_received_is_invalid(self, submit, complaints, clerk, repo):
        row = submit()
        with pytest.raises(InvalidStatusTransitionError):
            complaints.dispose(clerk, row["id"], "HOLD", "Waiting")
        stored = repo.get_complaint(row["id"])
        assert stored["status"] == "RECEIVED"
        assert stored["process_type"] is None

    def test_dispose_rejects_unknown_type(self, submit, complaints, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        with pytest.raises(ValidationError):
            complaints.dispose(clerk, row["id"], "ESCALATE", "reason")

    def test_dispose_requires_reason(self, submit, complaints, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        with pytest.raises(ValidationError):
            complaints.dispose(clerk, row["id"], "HOLD", "")

    def test_applicant_cannot_dispose(self, submit, complaints, applicant):
        row = submit()
        with pytest.raises(ForbiddenError):
            complaints.dispose(applicant, row["id"], "HOLD", "reason")

    def test_transition_engine_rejects_skips(self, submit, complaints):
        row = submit()
        with pytest.raises(InvalidStatusTransitionError):
            complaints.transition(row["id"], ComplaintStatus.APPROVED)


class TestDelete:
    def test_owner_deletes_received_complaint(self, submit, complaints, applicant, repo, blob_store, pdf_upload):
        row = submit(attachments=[pdf_upload])
        stored_path = row["documents"][0]["stored_path"]

        assert complaints.delete(applicant, row["id"]) == {"message": "Complaint deleted"}
        assert repo.get_complaint(row["id"]) is None
        assert repo.list_documents(row["id"]) == []
        with pytest.raises(NotFoundError):
            blob_store.read(stored_path)

    def test_cannot_delete_after_review_started(self, submit, complaints, applicant, clerk):
        row = submit()
        complaints.get(clerk, row["id"])
        with pytest.raises(InvalidStatusTransitionError):
            complaints.delete(applicant, row["id"])

    def test_review_started_during_delete_keeps_complaint(self, submit, complaints, applicant, clerk, repo, monkeypatch):
        row = submit()
        real_transaction = repo.transaction
        # A clerk opens the complaint just as the applicant's delete begins.
        interleaved = [lambda: complaints.get(clerk, row["id"])]

        @contextmanager
        def transaction():
            if interleaved:
                interleaved.pop()()
            with real_transaction() as inner:
                yield inner

        monkeypatch.setattr(repo, "transaction", transaction)
        with pytest.raises(InvalidStatusTransitionError):
            complaints.delete(applicant, row["id"])
        assert repo.get_complaint(row["id"])["status"] == "REVIEWING"

    def test_cannot_delete_others(self, submit, complaints, other_applicant):
        row = submit()
        with pytest.raises(ForbiddenError):
            complaints.delete(other_applicant, row["id"])

    def test_staff_cannot_delete(self, submit, complaints, clerk):
        row = submit()
        with pytest.raises(ForbiddenError):
            complaints.delete(clerk, row["id"])


class TestNotifications:
    def test_notice_is_recorded_as_sent(self, submit, complaints, clerk):
        row = submit()
        created = complaints.notify_agency(clerk, row["id"], "Road Agency", "Please inspect")
        assert created["status"] == "SENT"
        assert created["target_agency"] == "Road Agency"

        listed = complaints.list_notifications(clerk, row["id"])
        assert [n["id"] for n in listed] == [created["id"]]

    def test_notice_does_not_change_status(self, submit, complaints, clerk, repo):
        row = submit()
        complaints.notify_agency(clerk, row["id"], "Road Agency", "Please inspect")
        assert repo.get_complaint(row["id"])["status"] == "RECEIVED"

    def test_notice_requires_fields(self, submit, complaints, clerk):
        row = submit()
        with pytest.raises(ValidationError):
            complaints.notify_agency(clerk, row["id"], "", "content")
        with pytest.raises(ValidationError):
            complaints.notify_agency(clerk, row["id"], "Agency", " ")

    def test_applicant_cannot_notify(self, submit, complaints, applicant):
        row = submit()
        with pytest.raises(ForbiddenError):
            complaints.notify_agency(applicant, row["id"], "Agency", "content")

    def test_notice_for_missing_complaint(self, complaints, clerk):
        with pytest.raises(NotFoundError):
            complaints.notify_agency(clerk, 77, "Agency", "content")


class TestDocuments:
    def test_other_applicant_cannot_download(self, submit, complaints, other_applicant, pdf_upload):
        row = submit(attachments=[pdf_upload])
        with pytest.raises(ForbiddenError):
            complaints.get_document(other_applicant, row["id"], row["documents"][0]["id"])

    def test_document_must_belong_to_complaint(self, submit, complaints, clerk, pdf_upload):
        first = submit(attachments=[pdf_upload])
        second = submit()
        with pytest.raises(NotFoundError):
            complaints.get_document(clerk, second["id"], first["documents"][0]["id"])
