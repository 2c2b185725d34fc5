from __future__ import annotations

import copy
import itertools
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Iterator

from civildesk.config import settings
from civildesk.infra.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

PENDING = "PENDING"


class RepositoryError(RuntimeError):
    pass


class UniqueViolationError(RepositoryError):
    """Insert rejected by a uniqueness constraint (receipt number, approval per complaint)."""

    def __init__(self, table: str, column: str, value: Any) -> None:
        self.table = table
        self.column = column
        self.value = value
        super().__init__(f"Duplicate {table}.{column}: {value}")


class StaleRecordError(RepositoryError):
    """Conditional write matched no row because the record moved on."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _newest_first(rows: list[dict[str, Any]], ts_key: str) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda r: (str(r.get(ts_key, "")), int(r.get("id") or 0)), reverse=True)


class ComplaintRepository:
    def transaction(self) -> Any:
        raise NotImplementedError

    # Catalog and accounts are owned by other services; read-mostly here.
    def upsert_user(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def upsert_complaint_type(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_complaint_type(self, type_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_complaint(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_complaint(self, complaint_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_complaint_by_receipt(self, receipt_number: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def count_complaints_with_receipt_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    def list_complaints(
        self,
        *,
        status: str | None = None,
        applicant_id: int | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict[str, Any]], int]:
        raise NotImplementedError

    def delete_complaint(self, complaint_id: int) -> None:
        raise NotImplementedError

    def create_document(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_document(self, document_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_documents(self, complaint_id: int) -> list[dict[str, Any]]:
        raise NotImplementedError

    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_notifications(self, complaint_id: int) -> list[dict[str, Any]]:
        raise NotImplementedError

    def create_approval(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_approval(self, approval_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_approval_by_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_approvals(self, approver_id: int, offset: int = 0, limit: int = 10) -> tuple[list[dict[str, Any]], int]:
        raise NotImplementedError

    def record_approval_decision(self, approval_id: int, decision: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class InMemoryRepository(ComplaintRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._users: dict[int, dict[str, Any]] = {}
        self._types: dict[int, dict[str, Any]] = {}
        self._complaints: dict[int, dict[str, Any]] = {}
        self._documents: dict[int, dict[str, Any]] = {}
        self._notifications: dict[int, dict[str, Any]] = {}
        self._approvals: dict[int, dict[str, Any]] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("users", "types", "complaints", "documents", "notifications", "approvals")
        }

    def _tables(self) -> tuple[dict[int, dict[str, Any]], ...]:
        return (
            self._users,
            self._types,
            self._complaints,
            self._documents,
            self._notifications,
            self._approvals,
        )

    @contextmanager
    def transaction(self) -> Iterator["InMemoryRepository"]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables())
            try:
                yield self
            except BaseException:
                for live, saved in zip(self._tables(), snapshot):
                    live.clear()
                    live.update(saved)
                raise

    def _insert(self, table: dict[int, dict[str, Any]], name: str, row: dict[str, Any]) -> dict[str, Any]:
        item = dict(row)
        item["id"] = int(item.get("id") or next(self._ids[name]))
        table[item["id"]] = item
        return dict(item)

    def upsert_user(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if row.get("id") in self._users:
                self._users[int(row["id"])].update(row)
                return dict(self._users[int(row["id"])])
            return self._insert(self._users, "users", row)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._users.get(int(user_id))
            return dict(row) if row else None

    def upsert_complaint_type(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if row.get("id") in self._types:
                self._types[int(row["id"])].update(row)
                return dict(self._types[int(row["id"])])
            return self._insert(self._types, "types", row)

    def get_complaint_type(self, type_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._types.get(int(type_id))
            return dict(row) if row else None

    def create_complaint(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            receipt = row.get("receipt_number")
            if any(c.get("receipt_number") == receipt for c in self._complaints.values()):
                raise UniqueViolationError("complaints", "receipt_number", receipt)
            now = _utc_now()
            return self._insert(
                self._complaints,
                "complaints",
                {"created_at": now, "updated_at": now, **row},
            )

    def update_complaint(self, complaint_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._complaints.get(int(complaint_id))
            if not existing:
                raise RepositoryError(f"Complaint not found: {complaint_id}")
            if "receipt_number" in updates and updates["receipt_number"] != existing.get("receipt_number"):
                raise RepositoryError("Receipt number is immutable")
            existing.update(updates)
            existing["updated_at"] = _utc_now()
            return dict(existing)

    def get_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._complaints.get(int(complaint_id))
            return dict(row) if row else None

    def get_complaint_by_receipt(self, receipt_number: str) -> dict[str, Any] | None:
        with self._lock:
            for row in self._complaints.values():
                if row.get("receipt_number") == receipt_number:
                    return dict(row)
            return None

    def count_complaints_with_receipt_prefix(self, prefix: str) -> int:
        with self._lock:
            return sum(1 for r in self._complaints.values() if str(r.get("receipt_number", "")).startswith(prefix))

    def list_complaints(
        self,
        *,
        status: str | None = None,
        applicant_id: int | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            rows = list(self._complaints.values())
            if status:
                rows = [r for r in rows if r.get("status") == status]
            if applicant_id is not None:
                rows = [r for r in rows if int(r.get("applicant_id", -1)) == int(applicant_id)]
            rows = _newest_first(rows, "created_at")
            return [dict(r) for r in rows[offset : offset + limit]], len(rows)

    def delete_complaint(self, complaint_id: int) -> None:
        with self._lock:
            cid = int(complaint_id)
            for table in (self._documents, self._notifications, self._approvals):
                for key in [k for k, r in table.items() if int(r.get("complaint_id", -1)) == cid]:
                    del table[key]
            self._complaints.pop(cid, None)

    def create_document(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            return self._insert(self._documents, "documents", {"uploaded_at": _utc_now(), **row})

    def get_document(self, document_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._documents.get(int(document_id))
            return dict(row) if row else None

    def list_documents(self, complaint_id: int) -> list[dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._documents.values() if int(r["complaint_id"]) == int(complaint_id)]
            return [dict(r) for r in sorted(rows, key=lambda r: int(r["id"]))]

    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            return self._insert(self._notifications, "notifications", {"sent_at": _utc_now(), **row})

    def list_notifications(self, complaint_id: int) -> list[dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._notifications.values() if int(r["complaint_id"]) == int(complaint_id)]
            return [dict(r) for r in _newest_first(rows, "sent_at")]

    def create_approval(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            cid = int(row["complaint_id"])
            if any(int(a["complaint_id"]) == cid for a in self._approvals.values()):
                raise UniqueViolationError("approvals", "complaint_id", cid)
            return self._insert(self._approvals, "approvals", {"requested_at": _utc_now(), **row})

    def get_approval(self, approval_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._approvals.get(int(approval_id))
            return dict(row) if row else None

    def get_approval_by_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        with self._lock:
            for row in self._approvals.values():
                if int(row["complaint_id"]) == int(complaint_id):
                    return dict(row)
            return None

    def list_approvals(self, approver_id: int, offset: int = 0, limit: int = 10) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            rows = [r for r in self._approvals.values() if int(r["approver_id"]) == int(approver_id)]
            rows = _newest_first(rows, "requested_at")
            return [dict(r) for r in rows[offset : offset + limit]], len(rows)

    def record_approval_decision(self, approval_id: int, decision: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._approvals.get(int(approval_id))
            if not existing:
                raise RepositoryError(f"Approval not found: {approval_id}")
            if existing.get("status") != PENDING:
                raise StaleRecordError(f"Approval {approval_id} is already decided")
            existing.update(decision)
            return dict(existing)


def _is_unique_violation(exc: Exception) -> bool:
    code = str(getattr(exc, "code", "") or "")
    return code == "23505" or "duplicate key" in str(exc).lower()


class SupabaseRepository(ComplaintRepository):
    """PostgREST-backed store.

    PostgREST has no multi-statement transactions, so ``transaction()`` keeps
    an undo log of the writes made inside it and replays it on failure.
    """

    def __init__(self, client: Any) -> None:
        self.client = client
        self._tx = threading.local()

    def _undo_log(self) -> list[Callable[[], None]] | None:
        return getattr(self._tx, "undo", None)

    @contextmanager
    def transaction(self) -> Iterator["SupabaseRepository"]:
        outer = self._undo_log()
        if outer is not None:
            yield self
            return
        self._tx.undo = []
        try:
            yield self
        except BaseException:
            for step in reversed(self._tx.undo):
                try:
                    step()
                except Exception:
                    logger.exception("Compensating write failed during rollback")
            raise
        finally:
            self._tx.undo = None

    def _remember(self, step: Callable[[], None]) -> None:
        log = self._undo_log()
        if log is not None:
            log.append(step)

    def _insert_one(self, table: str, row: dict[str, Any], unique_column: str | None = None) -> dict[str, Any]:
        try:
            res = self.client.table(table).insert(dict(row)).execute()
        except Exception as exc:
            if unique_column and _is_unique_violation(exc):
                raise UniqueViolationError(table, unique_column, row.get(unique_column)) from exc
            raise RepositoryError(f"Insert failed for {table}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Insert failed for {table}")
        created = dict(res.data[0])
        self._remember(lambda: self.client.table(table).delete().eq("id", created["id"]).execute())
        return created

    def _update_one(self, table: str, row_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        before = self._select_one(table, "id", row_id)
        if not before:
            raise RepositoryError(f"{table} row not found: {row_id}")
        try:
            res = self.client.table(table).update(dict(updates)).eq("id", row_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Update failed for {table} {row_id}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Update failed for {table} {row_id}")
        restore = {k: before.get(k) for k in updates}
        self._remember(lambda: self.client.table(table).update(restore).eq("id", row_id).execute())
        return dict(res.data[0])

    def _select_one(self, table: str, column: str, value: Any) -> dict[str, Any] | None:
        res = self.client.table(table).select("*").eq(column, value).limit(1).execute()
        if not res.data:
            return None
        return dict(res.data[0])

    def upsert_user(self, row: dict[str, Any]) -> dict[str, Any]:
        res = self.client.table("users").upsert(dict(row)).execute()
        return dict(res.data[0]) if res.data else dict(row)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        return self._select_one("users", "id", int(user_id))

    def upsert_complaint_type(self, row: dict[str, Any]) -> dict[str, Any]:
        res = self.client.table("complaint_types").upsert(dict(row)).execute()
        return dict(res.data[0]) if res.data else dict(row)

    def get_complaint_type(self, type_id: int) -> dict[str, Any] | None:
        return self._select_one("complaint_types", "id", int(type_id))

    def create_complaint(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("complaints", row, unique_column="receipt_number")

    def update_complaint(self, complaint_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in updates.items() if k != "receipt_number"}
        payload["updated_at"] = _utc_now()
        return self._update_one("complaints", int(complaint_id), payload)

    def get_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        return self._select_one("complaints", "id", int(complaint_id))

    def get_complaint_by_receipt(self, receipt_number: str) -> dict[str, Any] | None:
        return self._select_one("complaints", "receipt_number", receipt_number)

    def count_complaints_with_receipt_prefix(self, prefix: str) -> int:
        res = (
            self.client.table("complaints")
            .select("id", count="exact")
            .like("receipt_number", f"{prefix}%")
            .execute()
        )
        return int(getattr(res, "count", None) or len(res.data or []))

    def list_complaints(
        self,
        *,
        status: str | None = None,
        applicant_id: int | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict[str, Any]], int]:
        q = self.client.table("complaints").select("*", count="exact").order("created_at", desc=True)
        if status:
            q = q.eq("status", status)
        if applicant_id is not None:
            q = q.eq("applicant_id", int(applicant_id))
        res = q.range(offset, offset + limit - 1).execute()
        rows = [dict(r) for r in (res.data or [])]
        return rows, int(getattr(res, "count", None) or len(rows))

    def delete_complaint(self, complaint_id: int) -> None:
        cid = int(complaint_id)
        for table in ("documents", "notifications", "approvals"):
            self.client.table(table).delete().eq("complaint_id", cid).execute()
        self.client.table("complaints").delete().eq("id", cid).execute()

    def create_document(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("documents", row)

    def get_document(self, document_id: int) -> dict[str, Any] | None:
        return self._select_one("documents", "id", int(document_id))

    def list_documents(self, complaint_id: int) -> list[dict[str, Any]]:
        res = self.client.table("documents").select("*").eq("complaint_id", int(complaint_id)).order("id").execute()
        return [dict(r) for r in (res.data or [])]

    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("notifications", row)

    def list_notifications(self, complaint_id: int) -> list[dict[str, Any]]:
        res = (
            self.client.table("notifications")
            .select("*")
            .eq("complaint_id", int(complaint_id))
            .order("sent_at", desc=True)
            .execute()
        )
        return [dict(r) for r in (res.data or [])]

    def create_approval(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("approvals", row, unique_column="complaint_id")

    def get_approval(self, approval_id: int) -> dict[str, Any] | None:
        return self._select_one("approvals", "id", int(approval_id))

    def get_approval_by_complaint(self, complaint_id: int) -> dict[str, Any] | None:
        return self._select_one("approvals", "complaint_id", int(complaint_id))

    def list_approvals(self, approver_id: int, offset: int = 0, limit: int = 10) -> tuple[list[dict[str, Any]], int]:
        res = (
            self.client.table("approvals")
            .select("*", count="exact")
            .eq("approver_id", int(approver_id))
            .order("requested_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        rows = [dict(r) for r in (res.data or [])]
        return rows, int(getattr(res, "count", None) or len(rows))

    def record_approval_decision(self, approval_id: int, decision: dict[str, Any]) -> dict[str, Any]:
        # Conditional update: only a PENDING row can be resolved.
        try:
            res = (
                self.client.table("approvals")
                .update(dict(decision))
                .eq("id", int(approval_id))
                .eq("status", PENDING)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError(f"Decision update failed for approval {approval_id}: {exc}") from exc
        if not res.data:
            raise StaleRecordError(f"Approval {approval_id} is missing or already decided")
        restore = {k: None for k in decision}
        restore["status"] = PENDING
        self._remember(lambda: self.client.table("approvals").update(restore).eq("id", int(approval_id)).execute())
        return dict(res.data[0])


def build_repository() -> tuple[ComplaintRepository, bool, str | None]:
    if not settings.supabase_configured():
        return InMemoryRepository(), False, "Supabase not configured; using in-memory repository."

    client, err = get_supabase_client()
    if client is None:
        return InMemoryRepository(), False, f"Supabase client unavailable ({err}); using in-memory repository."

    try:
        # Connectivity + schema check on the table every operation touches.
        client.table("complaints").select("id").limit(1).execute()
        return SupabaseRepository(client), True, None
    except Exception as exc:
        return (
            InMemoryRepository(),
            False,
            f"Supabase unavailable or schema mismatch ({exc}). Using in-memory repository.",
        )
