#!/usr/bin/env python3
"""
Delivery collaborators: where badge images are stored and how baked badges
reach their recipients.

The issuance pipeline only depends on the Store and Mail protocols. The
implementations here keep everything on the local filesystem: LocalStore
writes images into a directory, OutboxMailer writes each email as an .eml
file into an outbox directory for a mail relay (or a person) to pick up.
"""

import asyncio
import html
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr, format_datetime, make_msgid
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The object store rejected or failed a write."""


class MailError(Exception):
    """The email could not be sent."""


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    body: str
    attachment: bytes
    attachment_name: str = 'badge.png'
    attachment_type: str = 'image/png'
    from_name: str = ''
    from_email: str = ''


class Store(Protocol):
    async def put(self, data: bytes, suggested_name: str) -> str:
        """Persist bytes and return the public URL. Raises StoreError."""


class Mail(Protocol):
    async def send(self, message: MailMessage) -> None:
        """Deliver a message. Raises MailError."""


def render_email_body(badge_name: str, message: str = '', service_url: str = '') -> str:
    """Render the HTML body of the badge email."""
    note = ''
    if message:
        paragraphs = ''.join(
            f'<p>{html.escape(line)}</p>' for line in message.splitlines() if line.strip()
        )
        note = f'<blockquote>{paragraphs}</blockquote>'

    footer = ''
    if service_url:
        footer = (
            f'<p>Want to award a badge of your own? Make one at '
            f'<a href="{html.escape(service_url, quote=True)}">'
            f'{html.escape(service_url)}</a>.</p>'
        )

    return f'''<!DOCTYPE html>
<html lang="en">
<body>
    <h1>You've earned the &ldquo;{html.escape(badge_name)}&rdquo; badge!</h1>
    {note}
    <p>Your badge is attached to this email. The image carries a signed
    assertion, so you can upload it to any Open Badges backpack to show it off.</p>
    {footer}
</body>
</html>
'''


class LocalStore:
    """Store that writes objects into a local directory."""

    def __init__(self, root: Path, base_url: str = None):
        self.root = Path(root)
        self.base_url = (base_url or self.root.resolve().as_uri()).rstrip('/')

    def _write(self, data: bytes, name: str) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / name
        with open(path, 'wb') as f:
            f.write(data)
        return path

    async def put(self, data: bytes, suggested_name: str) -> str:
        name = Path(suggested_name).name
        if not name:
            raise StoreError("Empty object name")
        try:
            path = await asyncio.to_thread(self._write, data, name)
        except OSError as e:
            raise StoreError(f"Could not write {name}: {e}") from e
        logger.debug("Stored %d bytes at %s", len(data), path)
        return f"{self.base_url}/{name}"


def build_email(message: MailMessage) -> EmailMessage:
    """Turn a MailMessage into a MIME message with the badge attached."""
    email = EmailMessage()
    email['Subject'] = message.subject
    email['To'] = message.to
    if message.from_email:
        email['From'] = formataddr((message.from_name, message.from_email))
    email['Date'] = format_datetime(datetime.now(timezone.utc))
    email['Message-ID'] = make_msgid()

    email.set_content(message.body, subtype='html')
    maintype, _, subtype = message.attachment_type.partition('/')
    email.add_attachment(
        message.attachment,
        maintype=maintype,
        subtype=subtype,
        filename=message.attachment_name,
    )
    return email


class OutboxMailer:
    """Mailer that writes each message as an .eml file into an outbox directory."""

    def __init__(self, outbox: Path):
        self.outbox = Path(outbox)

    def _write(self, email: EmailMessage) -> Path:
        self.outbox.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
        path = self.outbox / f"{stamp}-{uuid.uuid4().hex[:8]}.eml"
        with open(path, 'wb') as f:
            f.write(email.as_bytes())
        return path

    async def send(self, message: MailMessage) -> None:
        if not message.to:
            raise MailError("Message has no recipient")
        try:
            path = await asyncio.to_thread(self._write, build_email(message))
        except (OSError, ValueError) as e:
            raise MailError(f"Could not queue email to {message.to}: {e}") from e
        logger.info("Queued badge email to %s at %s", message.to, path)
