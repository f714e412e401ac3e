#!/usr/bin/env python3
"""
Bake a signed Open Badges assertion into a PNG or SVG image.

Baking embeds the signed assertion into the image so the image itself is the
portable credential. Badge-aware software can extract and verify it; any
other viewer still renders the image unchanged.

PNG: the assertion is stored in an iTXt chunk with the keyword 'openbadges',
placed just before IEND. All other chunks are copied byte for byte, so pixel
data is untouched.

SVG: the assertion is base64-encoded inside an <openbadges:assertion>
element, with the openbadges namespace declared on the root element.

In both formats a previously baked assertion is replaced, never duplicated.
"""

import argparse
import base64
import json
import re
import struct
import sys
import zlib
from dataclasses import dataclass
from pathlib import Path

from sign_credential import SignedAssertion


PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
OPENBADGES_KEYWORD = b'openbadges'
TEXT_CHUNK_TYPES = (b'iTXt', b'tEXt', b'zTXt')

# OpenBadges namespace for SVG
OPENBADGES_NS = "https://openbadges.org"

# Optional BOM, then any XML declaration, comments, processing instructions
# and DOCTYPE (with an internal subset) before the root element.
_PROLOG = r'\s*(?:(?:<!--.*?-->|<\?.*?\?>|<!DOCTYPE[^\[>]*(?:\[.*?\])?\s*>)\s*)*'
_SVG_PROLOG = re.compile(
    rb'(?:\xef\xbb\xbf)?' + _PROLOG.encode('ascii') + rb'<svg[\s>/]',
    re.DOTALL
)
_SVG_ROOT = re.compile('\ufeff?' + _PROLOG + r'(<svg)[\s>/]', re.DOTALL)


class BakeError(Exception):
    """The image could not be baked or read."""


class UnsupportedFormat(BakeError):
    """The image is not a PNG or SVG."""


class CorruptImage(BakeError):
    """The image claims a supported format but can't be parsed."""


@dataclass(frozen=True)
class BakedArtifact:
    data: bytes
    format: str

    @property
    def extension(self) -> str:
        return f".{self.format}"

    @property
    def mime_type(self) -> str:
        return 'image/svg+xml' if self.format == 'svg' else 'image/png'


def sniff_format(data: bytes) -> str | None:
    """Return 'png' or 'svg' when the bytes look like one, else None."""
    if data.startswith(PNG_SIGNATURE):
        return 'png'
    if _SVG_PROLOG.match(data):
        return 'svg'
    return None


# --- PNG ---------------------------------------------------------------------

@dataclass(frozen=True)
class PngChunk:
    type: bytes
    data: bytes
    raw: bytes


def build_chunk(chunk_type: bytes, data: bytes) -> PngChunk:
    crc = zlib.crc32(chunk_type + data) & 0xffffffff
    raw = struct.pack('>I', len(data)) + chunk_type + data + struct.pack('>I', crc)
    return PngChunk(chunk_type, data, raw)


def read_chunks(data: bytes) -> tuple:
    """
    Split a PNG into its chunks.

    Returns:
        (chunks, trailer) where trailer is whatever follows IEND

    Raises:
        UnsupportedFormat: If the PNG signature is missing
        CorruptImage: If a chunk is truncated, fails its CRC, or IHDR/IEND is missing
    """
    if not data.startswith(PNG_SIGNATURE):
        raise UnsupportedFormat("Not a PNG image")

    chunks = []
    offset = len(PNG_SIGNATURE)
    while True:
        if offset + 8 > len(data):
            raise CorruptImage("PNG ends before IEND chunk")
        length, chunk_type = struct.unpack('>I4s', data[offset:offset + 8])
        end = offset + 12 + length
        if end > len(data):
            raise CorruptImage(f"Truncated {chunk_type!r} chunk")

        chunk_data = data[offset + 8:offset + 8 + length]
        (crc,) = struct.unpack('>I', data[end - 4:end])
        if zlib.crc32(chunk_type + chunk_data) & 0xffffffff != crc:
            raise CorruptImage(f"CRC mismatch in {chunk_type!r} chunk")

        chunks.append(PngChunk(chunk_type, chunk_data, data[offset:end]))
        offset = end
        if chunk_type == b'IEND':
            break

    if chunks[0].type != b'IHDR':
        raise CorruptImage("PNG does not start with IHDR")
    return chunks, data[offset:]


def _text_keyword(chunk: PngChunk) -> bytes | None:
    if chunk.type not in TEXT_CHUNK_TYPES:
        return None
    keyword, sep, _ = chunk.data.partition(b'\x00')
    return keyword if sep else None


def build_itxt(keyword: bytes, text: bytes) -> PngChunk:
    """Create an uncompressed iTXt chunk with no language tag."""
    # keyword, NUL, compression flag, compression method, language NUL, translated keyword NUL
    return build_chunk(b'iTXt', keyword + b'\x00\x00\x00\x00\x00' + text)


def parse_itxt(data: bytes) -> bytes:
    """Return the UTF-8 text of an iTXt chunk, inflating it if compressed."""
    _, _, rest = data.partition(b'\x00')
    if len(rest) < 2:
        raise CorruptImage("Malformed iTXt chunk")
    compressed, rest = rest[0], rest[2:]
    _, _, rest = rest.partition(b'\x00')  # language tag
    _, _, text = rest.partition(b'\x00')  # translated keyword
    if compressed:
        try:
            return zlib.decompress(text)
        except zlib.error as e:
            raise CorruptImage(f"Malformed compressed iTXt chunk: {e}") from e
    return text


def extract_png_text(data: bytes, keyword: bytes = OPENBADGES_KEYWORD) -> bytes | None:
    """Return the text stored under a keyword in a PNG, or None."""
    chunks, _ = read_chunks(data)
    for chunk in chunks:
        if _text_keyword(chunk) != keyword:
            continue
        if chunk.type == b'iTXt':
            return parse_itxt(chunk.data)
        text = chunk.data[len(keyword) + 1:]
        if chunk.type == b'zTXt':
            try:
                return zlib.decompress(text[1:])
            except zlib.error as e:
                raise CorruptImage(f"Malformed zTXt chunk: {e}") from e
        return text
    return None


def bake_png(data: bytes, payload: bytes, keyword: bytes = OPENBADGES_KEYWORD) -> bytes:
    """
    Embed a payload into a PNG under the given keyword.

    Any existing text chunk with the same keyword is dropped, and the new
    iTXt chunk is inserted just before IEND.
    """
    chunks, trailer = read_chunks(data)
    kept = [chunk for chunk in chunks if _text_keyword(chunk) != keyword]
    baked = kept[:-1] + [build_itxt(keyword, payload), kept[-1]]
    return PNG_SIGNATURE + b''.join(chunk.raw for chunk in baked) + trailer


# --- SVG ---------------------------------------------------------------------

_ASSERTION_ELEMENT = re.compile(
    r'<openbadges:assertion[^>]*>\s*([A-Za-z0-9+/=]*)\s*</openbadges:assertion>',
    re.DOTALL
)


def _decode_svg(data: bytes) -> str:
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise CorruptImage(f"SVG is not valid UTF-8: {e}") from e


def bake_svg(svg_content: str, payload: bytes, verify_url: str = '') -> str:
    """
    Embed a payload into an SVG image.

    The payload is added base64-encoded in an <openbadges:assertion> element
    within the SVG. A self-closing root element is expanded to hold it.
    """
    root = _SVG_ROOT.match(svg_content)
    tag_end = svg_content.find('>', root.end(1)) if root else -1
    if tag_end < 0:
        raise CorruptImage("SVG has no <svg> root element")

    if '</svg>' not in svg_content:
        if svg_content[tag_end - 1] != '/':
            raise CorruptImage("SVG root element is not closed")
        svg_content = (
            svg_content[:tag_end - 1].rstrip() + '></svg>' + svg_content[tag_end + 1:]
        )

    payload_b64 = base64.b64encode(payload).decode('ascii')

    # Check if SVG already has xmlns:openbadges
    if 'xmlns:openbadges' not in svg_content:
        name_end = root.end(1)
        svg_content = (
            f'{svg_content[:name_end]} xmlns:openbadges="{OPENBADGES_NS}"'
            f'{svg_content[name_end:]}'
        )

    verify_attr = verify_url.replace('&', '&amp;').replace('"', '&quot;')
    assertion_element = (
        f'<openbadges:assertion verify="{verify_attr}">'
        f'{payload_b64}'
        f'</openbadges:assertion>'
    )

    # Check if there's already a baked assertion and replace it
    if _ASSERTION_ELEMENT.search(svg_content):
        return _ASSERTION_ELEMENT.sub(lambda _: assertion_element, svg_content, count=1)

    # Insert before the last closing </svg> tag
    head, _, tail = svg_content.rpartition('</svg>')
    return f'{head}  {assertion_element}\n</svg>{tail}'


def extract_svg_payload(svg_content: str) -> bytes | None:
    """Return the payload baked into an SVG, or None if there isn't one."""
    match = _ASSERTION_ELEMENT.search(svg_content)
    if not match:
        return None
    try:
        return base64.b64decode(match.group(1), validate=True)
    except ValueError as e:
        raise CorruptImage(f"Malformed baked assertion: {e}") from e


# --- Format dispatch -----------------------------------------------------------

def bake(image: bytes, signed: SignedAssertion) -> BakedArtifact:
    """
    Bake a signed assertion into image bytes.

    Raises:
        UnsupportedFormat: If the image is neither PNG nor SVG
        CorruptImage: If the image can't be parsed
    """
    image_format = sniff_format(image)
    payload = signed.serialize()

    if image_format == 'png':
        return BakedArtifact(bake_png(image, payload), 'png')
    if image_format == 'svg':
        verify_url = signed.payload.get('verify', {}).get('url', '')
        baked = bake_svg(_decode_svg(image), payload, verify_url)
        return BakedArtifact(baked.encode('utf-8'), 'svg')
    raise UnsupportedFormat("Only PNG and SVG badges can be baked")


def unbake(image: bytes) -> SignedAssertion | None:
    """
    Extract the signed assertion baked into image bytes.

    Returns None when the image carries no assertion.

    Raises:
        UnsupportedFormat: If the image is neither PNG nor SVG
        CorruptImage: If the image or the baked assertion can't be parsed
    """
    image_format = sniff_format(image)
    if image_format == 'png':
        payload = extract_png_text(image)
    elif image_format == 'svg':
        payload = extract_svg_payload(_decode_svg(image))
    else:
        raise UnsupportedFormat("Only PNG and SVG badges can be unbaked")

    if payload is None:
        return None
    try:
        return SignedAssertion.from_bytes(payload)
    except ValueError as e:
        raise CorruptImage(f"Baked assertion is not a signed assertion: {e}") from e


def main():
    parser = argparse.ArgumentParser(
        description='Bake or extract signed Open Badges assertions in PNG and SVG images'
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    bake_parser = subparsers.add_parser('bake', help='Bake a signed assertion into an image')
    bake_parser.add_argument(
        'image',
        type=Path,
        help='Path to PNG or SVG image file'
    )
    bake_parser.add_argument(
        'assertion',
        type=Path,
        help='Path to signed assertion JSON file'
    )
    bake_parser.add_argument(
        '--output', '-o',
        type=Path,
        help='Output path for baked image (default: overwrites input)'
    )

    extract_parser = subparsers.add_parser('extract', help='Extract assertion from an image')
    extract_parser.add_argument(
        'image',
        type=Path,
        help='Path to baked image file'
    )
    extract_parser.add_argument(
        '--output', '-o',
        type=Path,
        help='Output path for extracted assertion JSON (default: stdout)'
    )
    extract_parser.add_argument(
        '--public-key',
        type=Path,
        help='Public key JSON file to check the assertion signature against'
    )

    args = parser.parse_args()

    if args.command == 'bake':
        image = args.image.read_bytes()
        with open(args.assertion, 'rb') as f:
            signed = SignedAssertion.from_bytes(f.read())

        try:
            baked = bake(image, signed)
        except BakeError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        output_path = args.output or args.image
        output_path.write_bytes(baked.data)
        print(f"Baked assertion into: {output_path}", file=sys.stderr)

    elif args.command == 'extract':
        try:
            signed = unbake(args.image.read_bytes())
        except BakeError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if signed is None:
            print("No assertion found in image", file=sys.stderr)
            sys.exit(1)

        if args.public_key:
            from sign_credential import load_public_key, verify_signed_assertion

            with open(args.public_key) as f:
                verify_key = load_public_key(json.load(f))
            if not verify_signed_assertion(signed, verify_key):
                print("Signature does NOT verify", file=sys.stderr)
                sys.exit(1)
            print("Signature verified", file=sys.stderr)

        output_json = json.dumps(signed.to_dict(), indent=2)
        if args.output:
            with open(args.output, 'w') as f:
                f.write(output_json)
            print(f"Extracted assertion to: {args.output}", file=sys.stderr)
        else:
            print(output_json)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == '__main__':
    main()
