from __future__ import annotations

import hmac
import logging
from typing import Any
from uuid import uuid4

from civildesk.config import settings
from civildesk.domain.errors import NotFoundError, UnauthorizedError
from civildesk.domain.models import VerificationSession, require_text
from civildesk.infra.session_store import InMemoryKeyValueStore, KeyValueStore
from civildesk.infra.sms_adapter import SmsAdapter, mask_phone
from civildesk.services.complaint_service import ComplaintService

logger = logging.getLogger(__name__)


class InquiryService:
    """Anonymous status lookup gated by a single-use SMS verification session."""

    def __init__(
        self,
        complaints: ComplaintService,
        store: KeyValueStore | None = None,
        sms: SmsAdapter | None = None,
        verification_code: str | None = None,
    ) -> None:
        self.complaints = complaints
        self.repo = complaints.repo
        ttl = settings.verification_session_ttl_seconds
        self.store = store if store is not None else InMemoryKeyValueStore(ttl_seconds=ttl or None)
        self.sms = sms or SmsAdapter()
        self.verification_code = verification_code or settings.verification_demo_code

    def start(self, receipt_number: Any) -> dict[str, str]:
        receipt = require_text(receipt_number, "Receipt number is required")
        complaint = self.repo.get_complaint_by_receipt(receipt)
        if not complaint:
            raise NotFoundError("No complaint matches this receipt number")

        session = VerificationSession(
            session_id=str(uuid4()),
            complaint_id=int(complaint["id"]),
            receipt_number=receipt,
            contact_phone=str(complaint.get("contact_phone") or ""),
            code=self.verification_code,
            created_at=self.complaints.clock().isoformat(),
        )
        self.store.put(session.session_id, session)

        result = self.sms.send_verification_code(session.contact_phone, session.code)
        if not result.ok:
            logger.warning(
                "Verification SMS for %s to %s not delivered: %s",
                receipt,
                mask_phone(session.contact_phone),
                result.detail,
            )
        return {
            "verification_id": session.session_id,
            "message": "Verification code sent",
        }

    def confirm(self, verification_id: Any, code: Any) -> dict[str, Any]:
        session_id = require_text(verification_id, "Verification id is required")
        supplied = require_text(code, "Verification code is required")

        session = self.store.get(session_id)
        if session is None:
            raise NotFoundError("Verification session is invalid or already used")
        if not hmac.compare_digest(supplied.encode("utf-8"), str(session.code).encode("utf-8")):
            # Session stays live so the citizen can retry.
            raise UnauthorizedError("Identity verification failed")

        complaint = self.repo.get_complaint(session.complaint_id)
        if not complaint:
            raise NotFoundError("Complaint not found")

        if not self.store.delete(session_id):
            # Consumed concurrently by another confirmation.
            raise NotFoundError("Verification session is invalid or already used")
        logger.info("Verification session confirmed for %s", session.receipt_number)
        return {"success": True, "complaint": self.complaints.describe(complaint)}
