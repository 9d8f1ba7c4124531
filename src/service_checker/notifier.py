"""
Email notifications for failed and recovered services.

One message per batch: all services that went down in a run share a single
alert, all services that came back share a single recovery notice.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

import aiosmtplib

from service_checker.config import SmtpConfig
from service_checker.logging import get_logger
from service_checker.metrics import MetricNames, get_metrics
from service_checker.models import Result

SUBJECT = "Service Checker Alert"


def alert_message(names: List[str]) -> str:
    return (
        f"Your service(s), {', '.join(names)}, are not currently available. "
        "Please check for issues."
    )


def recover_message(names: List[str]) -> str:
    return f"Your service(s), {', '.join(names)}, have recovered. :)"


class EmailNotifier:
    """Sends alert and recovery emails over SMTP."""

    def __init__(self, config: SmtpConfig):
        self.config = config
        self.logger = get_logger("service_checker.notifier")
        self.metrics = get_metrics()

    async def send_alert(self, names: List[str]) -> Result:
        result = await self._send("alert", names, alert_message)
        if result.ok and names:
            self.metrics.increment_counter(MetricNames.ALERTS_SENT, len(names))
        return result

    async def send_recover(self, names: List[str]) -> Result:
        result = await self._send("recover", names, recover_message)
        if result.ok and names:
            self.metrics.increment_counter(MetricNames.RECOVERIES_SENT, len(names))
        return result

    async def _send(self, kind: str, names: List[str], render) -> Result:
        if not names:
            return Result.success()

        text = render(names)
        try:
            await aiosmtplib.send(self._build_message(text), **self._smtp_kwargs())
        except Exception as e:
            self.metrics.increment_counter(MetricNames.NOTIFICATION_ERRORS, labels={"kind": kind})
            return Result.failure(e)

        self.logger.log_notification(kind, names)
        return Result.success()

    def _build_message(self, text: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.config.email_from or self.config.user or ""
        msg["To"] = ", ".join(self.config.email_to)
        msg["Subject"] = SUBJECT
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(text, "html", "utf-8"))
        return msg

    def _smtp_kwargs(self) -> dict:
        kwargs = {
            "hostname": self.config.host,
            "port": self.config.port,
            "timeout": self.config.timeout_seconds,
            "start_tls": self.config.start_tls,
        }
        if self.config.user:
            kwargs["username"] = self.config.user
            kwargs["password"] = self.config.password
        return kwargs
