"""Communication nodes."""

import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, List, Optional

from ..core.logging import get_logger
from ..models.core import NodeResult
from .base import failure, success

logger = get_logger(__name__)


class EmailSendHandler:
    """Sends a plain-text email over SMTP.

    ``to``, ``subject`` and ``body`` come from the node parameters. SMTP
    settings (``smtp_host``, ``smtp_port``, ``smtp_username``,
    ``smtp_password``, ``sender``) may be given per node and otherwise fall
    back to the handler's defaults. The blocking SMTP exchange runs in a
    worker thread.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        use_tls: bool = True,
        smtp_factory: Optional[Callable[[str, int], smtplib.SMTP]] = None
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.smtp_factory = smtp_factory or smtplib.SMTP

    async def __call__(self, node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
        recipients = _recipients(parameters.get("to"))
        subject = parameters.get("subject") or ""
        body = parameters.get("body") or ""

        if not recipients:
            return failure(node_id, "Email node requires a 'to' parameter")

        host = parameters.get("smtp_host") or self.host
        if not host:
            return failure(node_id, "No SMTP host configured for email node")

        settings = {
            "host": host,
            "port": int(parameters.get("smtp_port") or self.port),
            "username": parameters.get("smtp_username") or self.username,
            "password": parameters.get("smtp_password") or self.password,
            "sender": parameters.get("sender") or self.sender or parameters.get("smtp_username") or self.username,
        }
        if not settings["sender"]:
            return failure(node_id, "Email node requires a sender address")

        message = MIMEText(str(body), "plain")
        message["From"] = settings["sender"]
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject

        try:
            await asyncio.to_thread(self._send, settings, message, recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Email node {node_id} failed to send: {e}")
            return failure(node_id, f"Failed to send email: {e}")

        logger.info(f"Email node {node_id} sent '{subject}' to {len(recipients)} recipient(s)")
        return success(node_id, {
            "message": "Email sent successfully",
            "to": parameters.get("to"),
            "subject": subject,
        })

    def _send(self, settings: Dict[str, Any], message: MIMEText, recipients: List[str]) -> None:
        with self.smtp_factory(settings["host"], settings["port"]) as server:
            if self.use_tls:
                server.starttls()
            if settings["username"] and settings["password"]:
                server.login(settings["username"], settings["password"])
            server.send_message(message, from_addr=settings["sender"], to_addrs=recipients)


def _recipients(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(item) for item in value]
