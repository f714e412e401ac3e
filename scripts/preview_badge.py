#!/usr/bin/env python3
"""
Preview a badge before it is issued.

A preview builds the assertion for display only and renders the submitted
image as a data URI. Nothing is signed, baked, stored or sent.
"""

import base64
import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from badge_assertion import BadgeSpec, Recipient, build_assertion
from bake_badge import sniff_format


@dataclass(frozen=True)
class PreviewResult:
    assertion_summary: dict
    image_data_uri: str
    message: str = ''


def image_mime_type(data: bytes) -> str | None:
    """
    Return the MIME type of image bytes, or None if they aren't an image.

    SVG is recognised by its root element, PNG by its signature, other
    raster formats by Pillow. Only the format is identified here; a damaged
    PNG is still an image and is reported by the baker.
    """
    sniffed = sniff_format(data)
    if sniffed == 'svg':
        return 'image/svg+xml'
    if sniffed == 'png':
        return 'image/png'
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    return Image.MIME.get(image_format)


def data_uri(data: bytes, mime_type: str = None) -> str:
    """Encode image bytes as an inline data URI."""
    if mime_type is None:
        mime_type = image_mime_type(data) or 'application/octet-stream'
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> bytes:
    """Return the bytes of a base64 data URI."""
    header, sep, encoded = uri.partition(',')
    if not sep or not header.startswith('data:') or not header.endswith(';base64'):
        raise ValueError("Not a base64 data URI")
    return base64.b64decode(encoded)


def summarize_assertion(payload: dict, recipient_email: str) -> dict:
    """Pick the fields shown on the preview page."""
    badge = payload.get('badge', {})
    return {
        "name": badge.get('name'),
        "description": badge.get('description'),
        "issuer": badge.get('issuer'),
        "recipient": recipient_email,
        "hashed": payload.get('recipient', {}).get('hashed', False),
        "issuedOn": payload.get('issuedOn'),
    }


def render_preview(
    badge: BadgeSpec,
    image: bytes,
    recipient: Recipient,
    verify_url: str,
    message: str = ''
) -> PreviewResult:
    """
    Build the preview of a badge award.

    Args:
        badge: Validated badge
        image: The badge image bytes, already read from badge.image_path
        recipient: Recipient email and hashing options
        verify_url: Verification key URL placed in the assertion
        message: Message from the issuer to the recipient

    Raises:
        InvalidInput: If the recipient is missing
    """
    assertion = build_assertion(badge, recipient, verify_url)
    return PreviewResult(
        assertion_summary=summarize_assertion(assertion.to_dict(), recipient.email.strip()),
        image_data_uri=data_uri(image),
        message=message,
    )
