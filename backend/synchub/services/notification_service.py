"""
通知出口（邮件 / Slack / 通用 webhook）
  - 三个方法都吞掉异常只记日志，调度主流程不受通知失败影响
  - SMTP_HOST 未配置时邮件只写日志
"""

from __future__ import annotations
import json, logging, smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional, Sequence

import requests

from synchub.utils.serialization import dumps, to_jsonable

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        sender: str = "sync-hub@localhost",
        http_timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender = sender
        self.http_timeout = http_timeout
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, cfg, session: Optional[requests.Session] = None) -> "NotificationService":
        return cls(
            smtp_host=cfg.SMTP_HOST,
            smtp_port=cfg.SMTP_PORT,
            smtp_user=cfg.SMTP_USER,
            smtp_password=cfg.SMTP_PASSWORD,
            sender=cfg.SMTP_SENDER,
            http_timeout=cfg.NOTIFY_HTTP_TIMEOUT,
            session=session,
        )


    def send_email(self, recipients: Sequence[str], subject: str, data: Any) -> bool:
        recipients = [r for r in recipients or [] if r]
        if not recipients:
            return False
        logger.info("Sending email notification subject=%r recipients=%s", subject, recipients)
        if not self.smtp_host:
            logger.info("SMTP not configured; email body: %s", dumps(data))
            return False
        try:
            msg = EmailMessage()
            msg["Subject"] = subject
            msg["From"] = self.sender
            msg["To"] = ", ".join(recipients)
            msg.set_content(json.dumps(to_jsonable(data), ensure_ascii=False, indent=2))
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.http_timeout) as smtp:
                smtp.starttls()
                if self.smtp_user:
                    smtp.login(self.smtp_user, self.smtp_password or "")
                smtp.send_message(msg)
            return True
        except Exception as e:
            logger.error("Failed to send email notification to %s: %s", recipients, e)
            return False


    def send_slack_message(self, config: Dict[str, Any], data: Any) -> bool:
        webhook = (config or {}).get("webhook")
        if not webhook:
            return False
        payload: Dict[str, Any] = {
            "text": _slack_text(data),
            "attachments": [{"text": "```" + json.dumps(to_jsonable(data), ensure_ascii=False, indent=2) + "```"}],
        }
        if config.get("channel"):
            payload["channel"] = config["channel"]
        try:
            resp = self._session.post(webhook, json=payload, timeout=self.http_timeout)
            resp.raise_for_status()
            logger.info("Slack notification sent channel=%s", config.get("channel"))
            return True
        except Exception as e:
            logger.error("Failed to send Slack notification channel=%s: %s", config.get("channel"), e)
            return False


    def send_webhook(self, config: Dict[str, Any], data: Any) -> bool:
        url = (config or {}).get("url")
        if not url:
            return False
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        try:
            resp = self._session.post(url, data=dumps(data).encode("utf-8"), headers=headers, timeout=self.http_timeout)
            resp.raise_for_status()
            logger.info("Webhook notification sent url=%s", url)
            return True
        except Exception as e:
            logger.error("Failed to send webhook notification url=%s: %s", url, e)
            return False


def _slack_text(data: Any) -> str:
    if isinstance(data, dict):
        status = data.get("status") or data.get("event") or "notification"
        name = data.get("scheduleName") or data.get("provider") or ""
        return f"[sync-hub] {name} {status}".strip()
    return "[sync-hub] notification"
