from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from civildesk import __version__
from civildesk.config import configure_logging, settings
from civildesk.domain.errors import ComplaintDeskError, InternalError, ValidationError
from civildesk.domain.models import UploadedFile
from civildesk.domain.policy import Caller
from civildesk.infra.blob_store import BlobStore
from civildesk.infra.repositories import ComplaintRepository, build_repository
from civildesk.infra.session_store import KeyValueStore
from civildesk.infra.sms_adapter import SmsAdapter
from civildesk.seed import seed
from civildesk.services.approval_service import ApprovalService
from civildesk.services.auth_service import AuthService
from civildesk.services.complaint_service import ComplaintService
from civildesk.services.inquiry_service import InquiryService

logger = logging.getLogger(__name__)


class ReviewRequest(BaseModel):
    review_comment: str | None = None


class ProcessRequest(BaseModel):
    process_type: str | None = None
    process_reason: str | None = None


class NotificationRequest(BaseModel):
    target_agency: str | None = None
    notification_content: str | None = None


class ApprovalCreateRequest(BaseModel):
    complaint_id: int | None = None
    title: str | None = None
    content: str | None = None
    approver_id: int | None = None


class ApproveRequest(BaseModel):
    approval_reason: str | None = None


class RejectRequest(BaseModel):
    rejection_reason: str | None = None
    follow_up_action: str | None = None


class InquiryStartRequest(BaseModel):
    receipt_number: str | None = None


class InquiryConfirmRequest(BaseModel):
    verification_id: str | None = None
    code: str | None = None


def _error_response(exc: ComplaintDeskError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    repo: ComplaintRepository | None = None,
    blob_store: BlobStore | None = None,
    clock: Callable[[], datetime] | None = None,
    session_store: KeyValueStore | None = None,
    sms: SmsAdapter | None = None,
    auth: AuthService | None = None,
) -> FastAPI:
    configure_logging()
    using_supabase = False
    if repo is None:
        repo, using_supabase, warning = build_repository()
        if warning:
            logger.warning(warning)
        if not using_supabase and settings.seed_demo_data:
            seeded = seed(repo)
            logger.info(
                "Seeded in-memory repository with %d demo users and %d complaint types",
                len(seeded["users"]),
                len(seeded["complaint_types"]),
            )

    complaints = ComplaintService(repo, blob_store=blob_store, clock=clock)
    approvals = ApprovalService(complaints)
    inquiries = InquiryService(complaints, store=session_store, sms=sms)
    tokens = auth or AuthService()

    app = FastAPI(title="Civil Complaint Desk API", version=__version__)
    app.state.complaints = complaints
    app.state.approvals = approvals
    app.state.inquiries = inquiries
    app.state.auth = tokens

    def _caller(authorization: str | None = Header(default=None, alias="Authorization")) -> Caller:
        return tokens.decode_header(authorization)

    @app.exception_handler(ComplaintDeskError)
    async def desk_error_handler(_request: Request, exc: ComplaintDeskError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid value for {field}" if field else "Invalid request"
        return _error_response(ValidationError(message))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(InternalError())

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "persistence": "supabase" if using_supabase else "memory",
            "version": __version__,
        }

    @app.post("/api/complaints", status_code=201)
    def submit_complaint(
        type_id: str | None = Form(default=None),
        title: str | None = Form(default=None),
        content: str | None = Form(default=None),
        contact_phone: str | None = Form(default=None),
        files: list[UploadFile] = File(default=[]),
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        uploads = [
            UploadedFile(
                file_name=f.filename or "upload",
                mime_type=f.content_type or "application/octet-stream",
                data=f.file.read(),
            )
            for f in files
        ]
        return complaints.submit(
            caller,
            type_id=type_id,
            title=title,
            content=content,
            contact_phone=contact_phone,
            attachments=uploads,
        )

    @app.get("/api/complaints")
    def list_complaints(
        status: str | None = None,
        page: int | None = None,
        limit: int | None = None,
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        return complaints.list_complaints(caller, status=status, page=page, limit=limit)

    @app.get("/api/complaints/{complaint_id}")
    def get_complaint(complaint_id: int, caller: Caller = Depends(_caller)) -> dict[str, Any]:
        return complaints.get(caller, complaint_id)

    @app.delete("/api/complaints/{complaint_id}")
    def delete_complaint(complaint_id: int, caller: Caller = Depends(_caller)) -> dict[str, str]:
        return complaints.delete(caller, complaint_id)

    @app.put("/api/complaints/{complaint_id}/review")
    def review_complaint(
        complaint_id: int,
        payload: ReviewRequest,
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        return complaints.record_review(caller, complaint_id, payload.review_comment)

    @app.put("/api/complaints/{complaint_id}/process")
    def process_complaint(
        complaint_id: int,
        payload: ProcessRequest,
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        return complaints.dispose(caller, complaint_id, payload.process_type, payload.process_reason)

    @app.post("/api/complaints/{complaint_id}/notifications", status_code=201)
    def notify_agency(
        complaint_id: int,
        payload: NotificationRequest,
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        return complaints.notify_agency(caller, complaint_id, payload.target_agency, payload.notification_content)

    @app.get("/api/complaints/{complaint_id}/notifications")
    def list_notifications(complaint_id: int, caller: Caller = Depends(_caller)) -> list[dict[str, Any]]:
        return complaints.list_notifications(caller, complaint_id)

    @app.get("/api/complaints/{complaint_id}/documents/{document_id}")
    def download_document(complaint_id: int, document_id: int, caller: Caller = Depends(_caller)) -> Response:
        doc, data = complaints.get_document(caller, complaint_id, document_id)
        file_name = quote(str(doc.get("file_name") or "document"))
        return Response(
            content=data,
            media_type=str(doc.get("mime_type") or "application/octet-stream"),
            headers={"Content-Disposition": f"attachment; filename*=UTF-8''{file_name}"},
        )

    @app.post("/api/approvals", status_code=201)
    def request_approval(payload: ApprovalCreateRequest, caller: Caller = Depends(_caller)) -> dict[str, Any]:
        return approvals.create(
            caller,
            complaint_id=payload.complaint_id,
            title=payload.title,
            content=payload.content,
            approver_id=payload.approver_id,
        )

    @app.get("/api/approvals")
    def list_approvals(
        page: int | None = None,
        limit: int | None = None,
        caller: Caller = Depends(_caller),
    ) -> dict[str, Any]:
        return approvals.list_assigned(caller, page=page, limit=limit)

    @app.get("/api/approvals/{approval_id}")
    def get_approval(approval_id: int, caller: Caller = Depends(_caller)) -> dict[str, Any]:
        return approvals.get(caller, approval_id)

    @app.put("/api/approvals/{approval_id}/approve")
    def approve(approval_id: int, payload: ApproveRequest, caller: Caller = Depends(_caller)) -> dict[str, Any]:
        return approvals.approve(caller, approval_id, payload.approval_reason)

    @app.put("/api/approvals/{approval_id}/reject")
    def reject(approval_id: int, payload: RejectRequest, caller: Caller = Depends(_caller)) -> dict[str, Any]:
        return approvals.reject(caller, approval_id, payload.rejection_reason, payload.follow_up_action)

    @app.post("/api/inquiry/verify")
    def start_inquiry(payload: InquiryStartRequest) -> dict[str, str]:
        return inquiries.start(payload.receipt_number)

    @app.post("/api/inquiry/confirm")
    def confirm_inquiry(payload: InquiryConfirmRequest) -> dict[str, Any]:
        return inquiries.confirm(payload.verification_id, payload.code)

    return app


app = create_app()
