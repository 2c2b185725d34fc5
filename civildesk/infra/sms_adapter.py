from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from civildesk.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmsSendResult:
    ok: bool
    detail: str


def mask_phone(phone: str) -> str:
    digits = str(phone or "").strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


class SmsAdapter:
    """Fire-and-forget SMS notifier.

    Without a configured gateway the message is only logged (demo mode).
    Delivery failures are reported in the result, never raised.
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.gateway_url = (gateway_url if gateway_url is not None else settings.sms_gateway_url).rstrip("/")
        self.api_key = (api_key if api_key is not None else settings.sms_api_key).strip()
        self.sender = sender or settings.sms_sender
        self.timeout = timeout

    def configured(self) -> bool:
        return bool(self.gateway_url and self.api_key)

    def send(self, to_phone: str, message: str) -> SmsSendResult:
        target = str(to_phone or "").strip()
        if not target:
            return SmsSendResult(ok=False, detail="recipient phone missing")

        if not self.configured():
            logger.info("[mock sms] to=%s message=%s", mask_phone(target), message)
            return SmsSendResult(ok=True, detail="mock")

        try:
            res = requests.post(
                f"{self.gateway_url}/messages",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"from": self.sender, "to": target, "text": message},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("SMS gateway unreachable for %s: %s", mask_phone(target), exc)
            return SmsSendResult(ok=False, detail=f"request_error:{exc}")

        if res.status_code >= 400:
            logger.warning("SMS gateway rejected message [%s] %s", res.status_code, res.text[:200])
            return SmsSendResult(ok=False, detail=f"http_error:{res.status_code}")
        return SmsSendResult(ok=True, detail="sent")

    def send_verification_code(self, to_phone: str, code: str) -> SmsSendResult:
        return self.send(to_phone, f"[Civil Complaint Desk] Your verification code is {code}.")
