"""Idempotent demo data: one user per role and the standard complaint types."""
from __future__ import annotations

import argparse
import logging
from typing import Any

from civildesk.config import configure_logging
from civildesk.domain.models import ComplaintType, User
from civildesk.domain.policy import ROLE_APPLICANT, ROLE_CLERK, ROLE_DECISION_MAKER, Caller
from civildesk.infra.repositories import ComplaintRepository, build_repository
from civildesk.services.auth_service import AuthService

logger = logging.getLogger(__name__)

DEMO_USERS = (
    User(id=1, user_id="applicant", name="Kim Minwon", role=ROLE_APPLICANT, phone="010-1234-5678"),
    User(id=2, user_id="officer", name="Lee Damdang", role=ROLE_CLERK, phone="010-2345-6789"),
    User(id=3, user_id="approver", name="Park Seungin", role=ROLE_DECISION_MAKER, phone="010-3456-7890"),
)

DEMO_COMPLAINT_TYPES = (
    ComplaintType(id=1, name="Move-in report", description="Report of a change of residential address"),
    ComplaintType(id=2, name="Building permit", description="Permit for new construction, extension or renovation"),
    ComplaintType(id=3, name="Business registration", description="New business registration or amendment"),
    ComplaintType(id=4, name="Resident registration copy", description="Issue of a resident registration certificate"),
)


def seed(repo: ComplaintRepository) -> dict[str, list[dict[str, Any]]]:
    users = [repo.upsert_user(vars(u).copy()) for u in DEMO_USERS]
    types = [repo.upsert_complaint_type(vars(t).copy()) for t in DEMO_COMPLAINT_TYPES]
    return {"users": users, "complaint_types": types}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed demo users and complaint types")
    parser.add_argument(
        "--print-tokens",
        action="store_true",
        help="Print a bearer token for each demo user",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    configure_logging()
    repo, using_supabase, warning = build_repository()
    if warning:
        logger.warning(warning)

    result = seed(repo)
    print(f"Seeded {len(result['users'])} users and {len(result['complaint_types'])} complaint types")
    if not using_supabase:
        print("Note: in-memory repository; data is discarded when this process exits.")

    if args.print_tokens:
        auth = AuthService()
        for row in result["users"]:
            caller = Caller(user_id=int(row["id"]), role=str(row["role"]), name=str(row["name"]))
            print(f"{row['user_id']:<10} {auth.issue_token(caller)}")


if __name__ == "__main__":
    main()
