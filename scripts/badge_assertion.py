#!/usr/bin/env python3
"""
Build Open Badges assertions from a submitted badge.

An assertion is the unsigned claim that a badge was awarded to a recipient.
The recipient is identified by email, either in plain text or as a salted
SHA-256 hash:

    identity = "sha256$" + hex(sha256(email + salt))

The salt is appended to the normalized email. When no salt is configured the
empty string is used and the "salt" key is left out of the recipient object,
so a verifier hashes the bare email.
"""

import hashlib
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


OPENBADGES_CONTEXT = "https://w3id.org/openbadges/v2"


class InvalidInput(ValueError):
    """A submitted value is missing or malformed.

    Carries the form field name so the caller can flag it.
    """

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def normalize_email(email: str) -> str:
    """Normalize email to lowercase and strip whitespace."""
    return email.lower().strip()


def hash_identity(email: str, salt: str | None = None) -> str:
    """Hash an email address the way Open Badges recipient identities are hashed."""
    digest = hashlib.sha256((normalize_email(email) + (salt or '')).encode('utf-8'))
    return 'sha256$' + digest.hexdigest()


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


@dataclass(frozen=True)
class BadgeSpec:
    """The badge being awarded, as submitted."""

    name: str
    description: str
    image_path: Path
    issuer_url: str

    def __post_init__(self):
        # Keys are the form field names the values came from
        for form_field, value in (
            ('name', self.name),
            ('desc', self.description),
            ('issuer', self.issuer_url),
        ):
            if not value or not str(value).strip():
                raise InvalidInput(form_field, 'This field is required.')

        if not self.image_path:
            raise InvalidInput('badgeImage', 'This field is required.')
        path = Path(self.image_path)
        if not path.is_file() or not os.access(path, os.R_OK):
            raise InvalidInput('badgeImage', 'Image file could not be read.')
        object.__setattr__(self, 'image_path', path)


@dataclass(frozen=True)
class Recipient:
    email: str
    hashed: bool = True
    salt: str | None = None


@dataclass(frozen=True)
class Assertion:
    uid: str
    recipient: dict
    badge: dict
    issued_on: datetime
    verify: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Return the JSON payload of the assertion."""
        return {
            "@context": OPENBADGES_CONTEXT,
            "type": "Assertion",
            "uid": self.uid,
            "recipient": dict(self.recipient),
            "badge": dict(self.badge),
            "issuedOn": format_timestamp(self.issued_on),
            "verify": dict(self.verify),
        }


def build_recipient(recipient: Recipient) -> dict:
    """Create the recipient object, hashing the email when requested."""
    if recipient.email is None or not recipient.email.strip():
        raise InvalidInput('recipient', 'A recipient email is required.')

    email = normalize_email(recipient.email)
    if not recipient.hashed:
        return {"type": "email", "identity": email, "hashed": False}

    identity = {
        "type": "email",
        "identity": hash_identity(email, recipient.salt),
        "hashed": True,
    }
    if recipient.salt:
        identity["salt"] = recipient.salt
    return identity


def build_assertion(
    badge: BadgeSpec,
    recipient: Recipient,
    verify_url: str,
    issued_on: datetime = None
) -> Assertion:
    """
    Create an unsigned assertion for a badge and recipient.

    Args:
        badge: The badge being awarded
        recipient: Recipient email and hashing options
        verify_url: URL of the issuer key used to check the signature
        issued_on: Issue time (default: now, truncated to the second)

    Raises:
        InvalidInput: If the recipient email or verify URL is missing
    """
    if not verify_url:
        raise InvalidInput('issuer', 'A verification key URL is required.')

    recipient_object = build_recipient(recipient)

    if issued_on is None:
        issued_on = datetime.now(timezone.utc).replace(microsecond=0)

    # Same inputs at the same instant give the same uid
    uid = uuid.uuid5(
        uuid.NAMESPACE_URL,
        f"{badge.issuer_url}#{recipient_object['identity']}"
        f"/{badge.name}@{format_timestamp(issued_on)}"
    )

    return Assertion(
        uid=str(uid),
        recipient=recipient_object,
        badge={
            "name": badge.name,
            "description": badge.description,
            "issuer": badge.issuer_url,
        },
        issued_on=issued_on,
        verify={"type": "signed", "url": verify_url},
    )
