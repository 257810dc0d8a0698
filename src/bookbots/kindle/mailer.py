"""MIME message assembly and SMTP delivery for the Kindle sender."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from pathlib import Path

from bookbots.errors import DeliveryError

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[str, str] = {
    ".epub": "application/epub+zip",
    ".mobi": "application/x-mobipocket-ebook",
    ".azw3": "application/vnd.amazon.ebook",
    ".pdf": "application/pdf",
}


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def build_message(sender: str, recipient: str, attachment: Path, data: bytes) -> EmailMessage:
    """Build a multipart message: plain-text body plus one base64 attachment.

    The default email policy wraps base64 output at 76 characters per line,
    as RFC 2045 requires.
    """
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = recipient
    msg["Subject"] = f"Book: {attachment.name}"
    msg.set_content(
        f"Automatically sent by Kindle Sender\n\nFile: {attachment.name}\nSize: {len(data)} bytes"
    )
    maintype, subtype = content_type_for(attachment.name).split("/", 1)
    msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=attachment.name)
    return msg


class SmtpMailer:
    """Sends messages through an authenticated outbound relay.

    STARTTLS is used whenever the relay offers it.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float = 60.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls(context=ssl.create_default_context())
                    smtp.ehlo()
                smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"failed to send email via {self.host}:{self.port}: {e}") from e

    async def deliver(self, message: EmailMessage) -> None:
        """Send on a worker thread so the event loop keeps running."""
        await asyncio.to_thread(self.send, message)
