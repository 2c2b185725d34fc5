from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from civildesk.config import settings
from civildesk.domain.errors import UnauthorizedError
from civildesk.domain.policy import ALL_ROLES, Caller, normalize_role


class AuthService:
    """Consumes bearer tokens issued by the account service.

    ``issue_token`` exists for demos and tests; account and credential
    management live elsewhere.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        expire_hours: int | None = None,
    ) -> None:
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expire_hours = expire_hours or settings.access_token_expire_hours

    def issue_token(self, caller: Caller, expires_in: timedelta | None = None) -> str:
        expire = datetime.now(timezone.utc) + (expires_in or timedelta(hours=self.expire_hours))
        payload = {
            "sub": str(caller.user_id),
            "id": caller.user_id,
            "name": caller.name,
            "role": caller.role,
            "exp": expire,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode(self, token: str | None) -> Caller:
        if not token:
            raise UnauthorizedError("Authentication token is required")
        try:
            payload: dict[str, Any] = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise UnauthorizedError("Token has expired") from exc
        except JWTError as exc:
            raise UnauthorizedError("Invalid or expired token") from exc

        raw_id = payload.get("id", payload.get("sub"))
        try:
            user_id = int(raw_id)
        except (TypeError, ValueError) as exc:
            raise UnauthorizedError("Token subject is missing") from exc

        role = normalize_role(payload.get("role"))
        if role not in ALL_ROLES:
            raise UnauthorizedError("Token role is not recognised")
        return Caller(user_id=user_id, role=role, name=str(payload.get("name") or ""))

    def decode_header(self, authorization: str | None) -> Caller:
        if not authorization:
            raise UnauthorizedError("Authentication token is required")
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer":
            raise UnauthorizedError("Invalid token format")
        return self.decode(parts[1])
