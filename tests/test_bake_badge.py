"""Tests for baking signed assertions into PNG and SVG images."""

from __future__ import annotations

import io
import struct
from datetime import datetime, timezone
from pathlib import Path

import pytest
from PIL import Image

from badge_assertion import BadgeSpec, Recipient, build_assertion
from bake_badge import (
    CorruptImage,
    UnsupportedFormat,
    bake,
    bake_png,
    extract_png_text,
    read_chunks,
    sniff_format,
    unbake,
)
from sign_credential import sign_assertion

SVG = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
    '<circle cx="5" cy="5" r="4"/></svg>\n'
)


def _signed(png_path: Path, issuer_key, name: str = "Bug Squasher"):
    badge = BadgeSpec(
        name=name,
        description="Fixed 10 bugs",
        image_path=png_path,
        issuer_url="https://issuer.example",
    )
    assertion = build_assertion(
        badge,
        Recipient("a@example.com", True, "xyz"),
        issuer_key.verification_method,
        datetime(2026, 10, 16, tzinfo=timezone.utc),
    )
    return sign_assertion(assertion, issuer_key)


@pytest.fixture
def signed(png_path: Path, issuer_key):
    return _signed(png_path, issuer_key)


def _openbadges_chunks(data: bytes) -> list:
    chunks, _ = read_chunks(data)
    return [c for c in chunks if c.type in (b"iTXt", b"tEXt", b"zTXt") and c.data.startswith(b"openbadges\x00")]


def test_png_round_trip_is_exact(png_bytes: bytes, signed) -> None:
    baked = bake(png_bytes, signed)
    assert baked.format == "png"
    assert unbake(baked.data).serialize() == signed.serialize()


def test_png_pixels_unchanged(png_bytes: bytes, signed) -> None:
    baked = bake(png_bytes, signed)
    with Image.open(io.BytesIO(png_bytes)) as original, Image.open(io.BytesIO(baked.data)) as result:
        assert result.size == original.size
        assert result.convert("RGBA").tobytes() == original.convert("RGBA").tobytes()


def test_png_other_chunks_are_byte_identical(png_bytes: bytes, signed) -> None:
    baked = bake(png_bytes, signed)
    before, _ = read_chunks(png_bytes)
    after, _ = read_chunks(baked.data)
    kept = [c.raw for c in after if c not in _openbadges_chunks(baked.data)]
    assert kept == [c.raw for c in before]


def test_png_payload_readable_by_generic_reader(png_bytes: bytes, signed) -> None:
    baked = bake(png_bytes, signed)
    with Image.open(io.BytesIO(baked.data)) as img:
        img.load()
        assert img.text["openbadges"] == signed.serialize().decode("utf-8")


def test_rebaking_replaces_existing_assertion(png_bytes: bytes, png_path: Path, issuer_key) -> None:
    first = bake(png_bytes, _signed(png_path, issuer_key, "First"))
    second = bake(first.data, _signed(png_path, issuer_key, "Second"))
    assert len(_openbadges_chunks(second.data)) == 1
    assert unbake(second.data).payload["badge"]["name"] == "Second"


def test_existing_text_chunk_with_same_keyword_is_replaced(png_factory, signed) -> None:
    png = png_factory(text={"openbadges": "https://old.example/assertion", "Comment": "keep me"})
    baked = bake(png, signed)
    assert len(_openbadges_chunks(baked.data)) == 1
    assert extract_png_text(baked.data, b"Comment") == b"keep me"
    assert unbake(baked.data) == signed


def test_unbake_without_assertion_returns_none(png_bytes: bytes) -> None:
    assert unbake(png_bytes) is None


def test_bake_png_with_custom_keyword(png_bytes: bytes) -> None:
    baked = bake_png(png_bytes, b"hello", keyword=b"Comment")
    assert extract_png_text(baked, b"Comment") == b"hello"


@pytest.mark.parametrize(
    "data",
    [
        b"\xff\xd8\xff\xe0\x00\x10JFIF\x00",
        b"GIF89a\x01\x00\x01\x00",
        b"",
    ],
)
def test_unsupported_formats(data: bytes, signed) -> None:
    with pytest.raises(UnsupportedFormat):
        bake(data, signed)
    with pytest.raises(UnsupportedFormat):
        unbake(data)


def test_bad_crc_is_corrupt(png_bytes: bytes, signed) -> None:
    # Flip a byte inside the IHDR data (width field)
    corrupted = bytearray(png_bytes)
    corrupted[16 + 3] ^= 0xFF
    with pytest.raises(CorruptImage):
        bake(bytes(corrupted), signed)


def test_truncated_png_is_corrupt(png_bytes: bytes, signed) -> None:
    with pytest.raises(CorruptImage):
        bake(png_bytes[:-20], signed)


def test_png_must_start_with_ihdr(png_bytes: bytes, signed) -> None:
    chunks, _ = read_chunks(png_bytes)
    reordered = png_bytes[:8] + b"".join(c.raw for c in chunks[1:2] + chunks[0:1] + chunks[2:])
    with pytest.raises(CorruptImage):
        bake(reordered, signed)


def test_chunk_length_past_end_is_corrupt(signed) -> None:
    data = b"\x89PNG\r\n\x1a\n" + struct.pack(">I4s", 1000, b"IHDR") + b"\x00" * 10
    with pytest.raises(CorruptImage):
        bake(data, signed)


def test_svg_round_trip(signed) -> None:
    baked = bake(SVG.encode("utf-8"), signed)
    text = baked.data.decode("utf-8")
    assert baked.format == "svg"
    assert 'xmlns:openbadges="https://openbadges.org"' in text
    assert 'verify="https://issuer.example#key-1"' in text
    assert text.rstrip().endswith("</svg>")
    assert unbake(baked.data).serialize() == signed.serialize()


def test_svg_rebake_replaces_element(png_path: Path, issuer_key) -> None:
    first = bake(SVG.encode("utf-8"), _signed(png_path, issuer_key, "First"))
    second = bake(first.data, _signed(png_path, issuer_key, "Second"))
    text = second.data.decode("utf-8")
    assert text.count("<openbadges:assertion") == 1
    assert text.count("xmlns:openbadges") == 1
    assert unbake(second.data).payload["badge"]["name"] == "Second"


def test_svg_without_assertion_returns_none() -> None:
    assert unbake(SVG.encode("utf-8")) is None


def test_svg_invalid_utf8_is_corrupt(signed) -> None:
    with pytest.raises(CorruptImage):
        bake(b"<svg>\xff\xfe</svg>", signed)


def test_svg_with_long_prolog_is_recognised(signed) -> None:
    comment = "<!-- " + "generated by a drawing tool " * 50 + "-->\n"
    doctype = (
        '<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" '
        '"http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd" [\n'
        '  <!ENTITY ns "http://www.w3.org/2000/svg">\n]>\n'
    )
    svg = '<?xml version="1.0"?>\n' + comment + doctype + SVG.split("\n", 1)[1]
    assert len(comment) > 1100
    assert sniff_format(svg.encode("utf-8")) == "svg"

    baked = bake(svg.encode("utf-8"), signed)
    text = baked.data.decode("utf-8")
    assert text.startswith('<?xml version="1.0"?>\n' + comment + doctype)
    assert '<svg xmlns:openbadges="https://openbadges.org" xmlns=' in text
    assert unbake(baked.data).serialize() == signed.serialize()


def test_svg_comment_mentioning_svg_is_not_the_root(signed) -> None:
    svg = "<!-- <svg width='1'> -->\n" + SVG.split("\n", 1)[1]
    text = bake(svg.encode("utf-8"), signed).data.decode("utf-8")
    assert text.startswith("<!-- <svg width='1'> -->\n<svg xmlns:openbadges=")


def test_self_closing_svg_root_is_expanded(signed) -> None:
    svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10" />'
    baked = bake(svg, signed)
    text = baked.data.decode("utf-8")
    assert text.startswith('<svg xmlns:openbadges="https://openbadges.org" xmlns=')
    assert 'height="10"></svg>' not in text
    assert text.count("</svg>") == 1
    assert unbake(baked.data).serialize() == signed.serialize()


def test_unclosed_svg_root_is_corrupt(signed) -> None:
    with pytest.raises(CorruptImage):
        bake(b'<svg xmlns="http://www.w3.org/2000/svg"><circle r="1"/>', signed)


def test_text_mentioning_svg_is_not_svg() -> None:
    assert sniff_format(b"plain text that mentions <svg> later") is None
