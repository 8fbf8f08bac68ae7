# speedguard/alerts.py
import asyncio
import json
import smtplib
import time
from email.message import EmailMessage

from speedguard.config import (
    NOTIFICATION_STREAM, PRIMARY_EMAIL, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USER,
)
from speedguard.logging_config import get_logger
from speedguard.models import DeliveryResult

logger = get_logger("alerts", "alerts.log")


class RedisNotificationSink:
    """
    Appends notifications to a Redis stream; the device drains it and raises
    the local notification immediately.
    """

    def __init__(self, redis_client, stream: str = NOTIFICATION_STREAM):
        self.r = redis_client
        self.stream = stream

    async def deliver(self, title: str, body: str) -> DeliveryResult:
        fields = {
            "ts": time.time(),
            "data": json.dumps({"title": title, "body": body}, ensure_ascii=False),
        }
        msg_id = await asyncio.get_running_loop().run_in_executor(None, self.r.xadd, self.stream, fields)
        if isinstance(msg_id, bytes):
            msg_id = msg_id.decode()
        logger.info(f"Notification queued on {self.stream} id={msg_id}: {title}")
        return DeliveryResult(delivered=True, detail=str(msg_id))


class EmailNotificationSink:
    """Sends each notification as an e-mail to PRIMARY_EMAIL over SMTP/SSL."""

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASSWORD,
        recipient: str = PRIMARY_EMAIL,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.recipient = recipient

    def build_message(self, title: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = title
        msg["From"] = self.user or self.recipient
        msg["To"] = self.recipient
        msg.set_content(body)
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP_SSL(self.host, self.port, timeout=30) as smtp:
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)

    async def deliver(self, title: str, body: str) -> DeliveryResult:
        if not self.host or not self.recipient:
            logger.warning("SMTP_HOST or PRIMARY_EMAIL not configured; notification dropped")
            return DeliveryResult(delivered=False, detail="smtp not configured")

        msg = self.build_message(title, body)
        await asyncio.get_running_loop().run_in_executor(None, self._send, msg)
        logger.info(f"Alert e-mailed to {self.recipient}: {title}")
        return DeliveryResult(delivered=True, detail=self.recipient)
