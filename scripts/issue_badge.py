#!/usr/bin/env python3
"""
Issue a badge: build the assertion, sign it, bake it into the badge image,
store the original image and email the baked badge to the recipient.

Every run ends in exactly one result:

- Delivered: the recipient was sent their badge
- Rejected: a submitted field is missing or malformed; nothing was stored
  or sent, and the form can be corrected and resubmitted
- Failed: a system fault (bad key, unbakeable image, store or mail failure);
  no stage after the failing one runs, and nothing is retried

Stages run strictly in order:

    validating -> building -> signing -> baking -> storing -> emailing

Only validating and building can reject. Everything after building is
all-or-nothing.

Preview runs validating and building only, and returns the image as a data
URI for display.
"""

import argparse
import asyncio
import hashlib
import json
import logging
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Union

from badge_assertion import BadgeSpec, InvalidInput, Recipient, build_assertion, normalize_email
from bake_badge import BakeError, bake
from delivery import (
    LocalStore,
    Mail,
    MailError,
    MailMessage,
    OutboxMailer,
    Store,
    StoreError,
    render_email_body,
)
from issuer_config import Settings, issuer_profile, load_settings
from log_setup import setup_logging
from preview_badge import PreviewResult, data_uri, image_mime_type, render_preview
from sign_credential import IssuerKey, SigningError, load_private_key, sign_assertion


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

# Form field name -> BadgeForm attribute, in the order they are checked
REQUIRED_FIELDS = (
    ('badgeImage', 'badge_image'),
    ('name', 'name'),
    ('desc', 'desc'),
    ('recipient', 'recipient'),
)


class Stage(str, Enum):
    VALIDATING = 'validating'
    BUILDING = 'building'
    SIGNING = 'signing'
    BAKING = 'baking'
    STORING = 'storing'
    EMAILING = 'emailing'


@dataclass(frozen=True)
class BadgeForm:
    """The submitted badge form."""

    badge_image: Path | None
    name: str = ''
    desc: str = ''
    recipient: str = ''
    msg: str = ''

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> 'BadgeForm':
        image = data.get('badgeImage')
        return cls(
            badge_image=Path(image) if image else None,
            name=str(data.get('name') or ''),
            desc=str(data.get('desc') or ''),
            recipient=str(data.get('recipient') or ''),
            msg=str(data.get('msg') or ''),
        )


@dataclass(frozen=True)
class Delivered:
    recipient_email: str
    preview_data_uri: str
    image_url: str


@dataclass(frozen=True)
class Rejected:
    field: str
    message: str


@dataclass(frozen=True)
class Failed:
    stage: Stage
    cause: Exception

    @property
    def message(self) -> str:
        return f"{self.stage.value} failed: {self.cause}"


IssuanceResult = Union[Delivered, Rejected, Failed]


@dataclass(frozen=True)
class ValidatedForm:
    badge: BadgeSpec
    image: bytes
    recipient: Recipient
    message: str


def name_to_slug(name: str) -> str:
    """
    Convert a name to a file-name-safe slug.

    Example: "Bug Squasher" -> "bug-squasher"
    """
    slug = name.lower().strip()
    slug = re.sub(r'[\s_]+', '-', slug)
    slug = re.sub(r'[^a-z0-9-]', '', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-') or 'badge'


def read_image(path: Path) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


class IssuancePipeline:
    """Runs badge issuance and preview for one submitted form at a time.

    Holds no per-run state, so one pipeline can serve concurrent runs.
    """

    def __init__(self, settings: Settings, issuer_key: IssuerKey, store: Store, mail: Mail):
        self.settings = settings
        self.issuer_key = issuer_key
        self.store = store
        self.mail = mail

    def recipient_for(self, email: str) -> Recipient:
        return Recipient(
            email=email,
            hashed=self.settings.hash_recipient,
            salt=self.settings.assertion_salt,
        )

    def validate(self, form: BadgeForm) -> ValidatedForm | Rejected:
        for form_field, attr in REQUIRED_FIELDS:
            value = getattr(form, attr)
            if not value or not str(value).strip():
                return Rejected(form_field, 'This field is required.')

        if not EMAIL_PATTERN.match(form.recipient.strip()):
            return Rejected('recipient', 'Enter a valid email address.')

        try:
            badge = BadgeSpec(
                name=form.name.strip(),
                description=form.desc.strip(),
                image_path=form.badge_image,
                issuer_url=self.settings.issuer_url,
            )
            image = read_image(badge.image_path)
        except InvalidInput as e:
            return Rejected(e.field, e.message)
        except OSError:
            return Rejected('badgeImage', 'Image file could not be read.')

        if image_mime_type(image) is None:
            return Rejected('badgeImage', 'File must be an image.')

        return ValidatedForm(
            badge=badge,
            image=image,
            recipient=self.recipient_for(form.recipient),
            message=form.msg.strip(),
        )

    def _fail(self, stage: Stage, cause: Exception) -> Failed:
        logger.error("Badge issuance failed while %s", stage.value, exc_info=cause)
        return Failed(stage, cause)

    async def run_issuance(self, form: BadgeForm) -> IssuanceResult:
        validated = await asyncio.to_thread(self.validate, form)
        if isinstance(validated, Rejected):
            logger.info("Rejected %s: %s", validated.field, validated.message)
            return validated

        logger.debug("Make assertion")
        try:
            assertion = build_assertion(
                validated.badge, validated.recipient, self.issuer_key.verification_method
            )
        except InvalidInput as e:
            logger.info("Rejected %s: %s", e.field, e.message)
            return Rejected(e.field, e.message)

        logger.debug("Sign assertion %s", assertion.uid)
        try:
            signed = sign_assertion(assertion, self.issuer_key)
        except SigningError as e:
            return self._fail(Stage.SIGNING, e)

        logger.debug("Bake badge")
        try:
            baked = bake(validated.image, signed)
        except BakeError as e:
            return self._fail(Stage.BAKING, e)

        logger.debug("Start upload")
        object_name = hashlib.sha256(validated.image).hexdigest() + baked.extension
        try:
            image_url = await self.store.put(validated.image, object_name)
        except (StoreError, asyncio.TimeoutError, OSError) as e:
            return self._fail(Stage.STORING, e)

        logger.debug("Send email")
        recipient_email = normalize_email(form.recipient)
        message = MailMessage(
            to=recipient_email,
            subject=self.settings.email_subject,
            body=render_email_body(
                validated.badge.name, validated.message, self.settings.service_url
            ),
            attachment=baked.data,
            attachment_name=name_to_slug(validated.badge.name) + baked.extension,
            attachment_type=baked.mime_type,
            from_name=self.settings.email_from_name,
            from_email=self.settings.email_from_email,
        )
        try:
            await self.mail.send(message)
        except (MailError, asyncio.TimeoutError, OSError) as e:
            return self._fail(Stage.EMAILING, e)

        logger.info("Issued %r to %s", validated.badge.name, recipient_email)
        return Delivered(
            recipient_email=recipient_email,
            preview_data_uri=data_uri(validated.image),
            image_url=image_url,
        )

    async def run_preview(self, form: BadgeForm) -> PreviewResult | Rejected:
        validated = await asyncio.to_thread(self.validate, form)
        if isinstance(validated, Rejected):
            return validated

        try:
            return render_preview(
                validated.badge,
                validated.image,
                validated.recipient,
                self.issuer_key.verification_method,
                validated.message,
            )
        except InvalidInput as e:
            return Rejected(e.field, e.message)


def _add_form_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        'image',
        type=Path,
        help='Path to the badge image (PNG or SVG)'
    )
    parser.add_argument(
        '--name', '-n',
        type=str,
        required=True,
        help='Badge title'
    )
    parser.add_argument(
        '--description', '-d',
        type=str,
        required=True,
        help='Badge description'
    )
    parser.add_argument(
        '--recipient', '-r',
        type=str,
        required=True,
        help="Recipient's email address"
    )
    parser.add_argument(
        '--message', '-m',
        type=str,
        default='',
        help='Message to the recipient'
    )


def main():
    parser = argparse.ArgumentParser(
        description='Preview or issue a baked, signed badge'
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    preview_parser = subparsers.add_parser('preview', help='Show what would be issued')
    _add_form_arguments(preview_parser)

    issue_parser = subparsers.add_parser('issue', help='Sign, bake and send a badge')
    _add_form_arguments(issue_parser)

    subparsers.add_parser('issuer', help='Print the issuer profile JSON')

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.log_level)

    if args.command == 'issuer':
        print(json.dumps(issuer_profile(settings), indent=2))
        return

    try:
        issuer_key = load_private_key(settings.private_key_file, settings.private_key)
    except SigningError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    pipeline = IssuancePipeline(
        settings,
        issuer_key,
        store=LocalStore(settings.store_dir, settings.store_base_url),
        mail=OutboxMailer(settings.outbox_dir),
    )
    form = BadgeForm(
        badge_image=args.image,
        name=args.name,
        desc=args.description,
        recipient=args.recipient,
        msg=args.message,
    )

    if args.command == 'preview':
        result = asyncio.run(pipeline.run_preview(form))
    else:
        result = asyncio.run(pipeline.run_issuance(form))

    if isinstance(result, Rejected):
        print(f"Error: {result.field}: {result.message}", file=sys.stderr)
        sys.exit(2)
    if isinstance(result, Failed):
        print(f"Error: {result.message}", file=sys.stderr)
        sys.exit(1)

    if isinstance(result, PreviewResult):
        print(json.dumps({
            "assertion": result.assertion_summary,
            "message": result.message,
            "imageDataUri": result.image_data_uri,
        }, indent=2))
    else:
        print(f"Badge sent to: {result.recipient_email}")
        print(f"Badge image stored at: {result.image_url}")


if __name__ == '__main__':
    main()
