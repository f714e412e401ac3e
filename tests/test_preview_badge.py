"""Tests for preview rendering and data URIs."""

from __future__ import annotations

from pathlib import Path

import pytest

from badge_assertion import BadgeSpec, InvalidInput, Recipient
from preview_badge import data_uri, decode_data_uri, image_mime_type, render_preview


def test_data_uri_round_trip(png_bytes: bytes) -> None:
    uri = data_uri(png_bytes)
    assert uri.startswith("data:image/png;base64,")
    assert decode_data_uri(uri) == png_bytes


def test_image_mime_type() -> None:
    assert image_mime_type(b'<svg xmlns="http://www.w3.org/2000/svg"></svg>') == "image/svg+xml"
    assert image_mime_type(b"just some text") is None


def test_image_mime_type_png(png_bytes: bytes) -> None:
    assert image_mime_type(png_bytes) == "image/png"


def test_decode_data_uri_rejects_plain_urls() -> None:
    with pytest.raises(ValueError):
        decode_data_uri("https://example.com/badge.png")


def test_render_preview(png_path: Path, png_bytes: bytes) -> None:
    badge = BadgeSpec(
        name="Bug Squasher",
        description="Fixed 10 bugs",
        image_path=png_path,
        issuer_url="https://issuer.example",
    )
    preview = render_preview(
        badge,
        png_bytes,
        Recipient("a@example.com", True, "xyz"),
        "https://issuer.example#key-1",
        message="Nice work",
    )
    assert decode_data_uri(preview.image_data_uri) == png_bytes
    assert preview.message == "Nice work"
    assert preview.assertion_summary["name"] == "Bug Squasher"
    assert preview.assertion_summary["recipient"] == "a@example.com"
    assert preview.assertion_summary["hashed"] is True


def test_render_preview_requires_recipient(png_path: Path, png_bytes: bytes) -> None:
    badge = BadgeSpec(
        name="n", description="d", image_path=png_path, issuer_url="https://issuer.example"
    )
    with pytest.raises(InvalidInput):
        render_preview(badge, png_bytes, Recipient(""), "https://issuer.example#key-1")


def test_image_mime_type_does_not_check_png_integrity(png_bytes: bytes) -> None:
    damaged = bytearray(png_bytes)
    damaged[16] ^= 0xFF  # first byte of the IHDR width
    assert image_mime_type(bytes(damaged)) == "image/png"


def test_image_mime_type_svg_after_long_comment() -> None:
    svg = b"<!--" + b"x" * 2000 + b"-->\n<svg xmlns=\"http://www.w3.org/2000/svg\"/>"
    assert image_mime_type(svg) == "image/svg+xml"
