from __future__ import annotations

from datetime import datetime, timezone

import pytest

from civildesk.domain.policy import ROLE_APPLICANT, ROLE_CLERK, ROLE_DECISION_MAKER, Caller
from civildesk.domain.models import UploadedFile
from civildesk.infra.blob_store import LocalBlobStore
from civildesk.infra.repositories import InMemoryRepository
from civildesk.infra.session_store import InMemoryKeyValueStore
from civildesk.infra.sms_adapter import SmsSendResult
from civildesk.services.approval_service import ApprovalService
from civildesk.services.complaint_service import ComplaintService
from civildesk.services.inquiry_service import InquiryService


FIXED_NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)

APPLICANT_ID = 1
OTHER_APPLICANT_ID = 2
CLERK_ID = 3
DECISION_MAKER_ID = 4
OTHER_DECISION_MAKER_ID = 5
COMPLAINT_TYPE_ID = 1


class RecordingSms:
    """Captures outgoing verification codes instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send_verification_code(self, to_phone, code):
        self.sent.append((to_phone, code))
        return SmsSendResult(ok=True, detail="recorded")


@pytest.fixture
def repo():
    repository = InMemoryRepository()
    for uid, login, name, role in (
        (APPLICANT_ID, "citizen1", "Kim Minsu", ROLE_APPLICANT),
        (OTHER_APPLICANT_ID, "citizen2", "Lee Jiwon", ROLE_APPLICANT),
        (CLERK_ID, "officer1", "Park Clerk", ROLE_CLERK),
        (DECISION_MAKER_ID, "approver1", "Choi Director", ROLE_DECISION_MAKER),
        (OTHER_DECISION_MAKER_ID, "approver2", "Jung Director", ROLE_DECISION_MAKER),
    ):
        repository.upsert_user({"id": uid, "user_id": login, "name": name, "role": role})
    repository.upsert_complaint_type({"id": COMPLAINT_TYPE_ID, "name": "Road repair", "description": ""})
    return repository


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def complaints(repo, blob_store, clock):
    return ComplaintService(repo, blob_store=blob_store, clock=clock)


@pytest.fixture
def approvals(complaints):
    return ApprovalService(complaints)


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def inquiries(complaints, sms):
    return InquiryService(complaints, store=InMemoryKeyValueStore(), sms=sms, verification_code="123456")


@pytest.fixture
def applicant():
    return Caller(user_id=APPLICANT_ID, role=ROLE_APPLICANT, name="Kim Minsu")


@pytest.fixture
def other_applicant():
    return Caller(user_id=OTHER_APPLICANT_ID, role=ROLE_APPLICANT, name="Lee Jiwon")


@pytest.fixture
def clerk():
    return Caller(user_id=CLERK_ID, role=ROLE_CLERK, name="Park Clerk")


@pytest.fixture
def decision_maker():
    return Caller(user_id=DECISION_MAKER_ID, role=ROLE_DECISION_MAKER, name="Choi Director")


@pytest.fixture
def other_decision_maker():
    return Caller(user_id=OTHER_DECISION_MAKER_ID, role=ROLE_DECISION_MAKER, name="Jung Director")


@pytest.fixture
def pdf_upload():
    return UploadedFile(file_name="photo.pdf", mime_type="application/pdf", data=b"%PDF-1.4 demo")


@pytest.fixture
def submit(complaints, applicant):
    """Submit a complaint as the default applicant."""

    def _submit(caller=None, **overrides):
        fields = {
            "type_id": COMPLAINT_TYPE_ID,
            "title": "Pothole on Main St",
            "content": "Large pothole near the bus stop.",
            "contact_phone": "010-1234-5678",
        }
        fields.update(overrides)
        return complaints.submit(caller or applicant, **fields)

    return _submit


@pytest.fixture
def processed(submit, complaints, clerk):
    """A complaint walked through review and disposition."""
    row = submit()
    complaints.get(clerk, row["id"])
    complaints.record_review(clerk, row["id"], "Site inspected")
    return complaints.dispose(clerk, row["id"], "APPROVE", "Repair scheduled")


@pytest.fixture
def pending_approval(processed, approvals, clerk):
    return approvals.create(
        clerk,
        complaint_id=processed["id"],
        title="Repair approval",
        content="Please approve the repair.",
        approver_id=DECISION_MAKER_ID,
    )
