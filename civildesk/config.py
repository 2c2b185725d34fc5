from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return default


def _get_int(*keys: str, default: int) -> int:
    raw = _get_config_value(*keys, default=str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(*keys: str, default: bool) -> bool:
    raw = _get_config_value(*keys, default="true" if default else "false")
    return raw.lower() in {"1", "true", "yes", "on"}


def _pick_supabase_key() -> str:
    return (
        _get_config_value("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
        or _get_config_value("SUPABASE_KEY")
        or _get_config_value("SUPABASE_ANON_KEY")
    )


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    supabase_url: str
    supabase_key: str
    jwt_secret_key: str
    jwt_algorithm: str
    access_token_expire_hours: int
    receipt_timezone: str
    verification_demo_code: str
    verification_session_ttl_seconds: int
    sms_gateway_url: str
    sms_api_key: str
    sms_sender: str
    upload_dir: str
    max_upload_bytes: int
    max_upload_files: int
    seed_demo_data: bool

    def supabase_url_valid(self) -> bool:
        # Must be project URL, not postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def supabase_configured(self) -> bool:
        return self.supabase_url_valid() and bool(self.supabase_key)

    def sms_configured(self) -> bool:
        return bool(self.sms_gateway_url and self.sms_api_key)


def load_settings() -> Settings:
    app_env = _get_config_value("APP_ENV", default="dev")
    return Settings(
        app_env=app_env,
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        supabase_key=_pick_supabase_key(),
        jwt_secret_key=_get_config_value(
            "JWT_SECRET_KEY",
            "JWT_SECRET",
            default="civil-complaint-secret-key",
        ),
        jwt_algorithm=_get_config_value("JWT_ALGORITHM", default="HS256"),
        access_token_expire_hours=_get_int("ACCESS_TOKEN_EXPIRE_HOURS", default=24),
        receipt_timezone=_get_config_value("RECEIPT_TIMEZONE", "TZ", default="Asia/Seoul"),
        verification_demo_code=_get_config_value("VERIFICATION_DEMO_CODE", default="123456"),
        verification_session_ttl_seconds=_get_int("VERIFICATION_SESSION_TTL_SECONDS", default=0),
        sms_gateway_url=_get_config_value("SMS_GATEWAY_URL").rstrip("/"),
        sms_api_key=_get_config_value("SMS_API_KEY", "SMS_GATEWAY_KEY"),
        sms_sender=_get_config_value("SMS_SENDER", "SMS_FROM", default="CIVILDESK"),
        upload_dir=_get_config_value("UPLOAD_DIR", default="uploads"),
        max_upload_bytes=_get_int("MAX_UPLOAD_BYTES", default=10 * 1024 * 1024),
        max_upload_files=_get_int("MAX_UPLOAD_FILES", default=5),
        # In-memory fallback starts empty; dev gets the demo users and types.
        seed_demo_data=_get_bool("SEED_DEMO_DATA", default=app_env == "dev"),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


settings = load_settings()
