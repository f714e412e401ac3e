from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest
from PIL import Image, PngImagePlugin

# The modules live in scripts/ and import each other by bare name.
SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"
if str(SCRIPTS) not in sys.path:
    sys.path.insert(0, str(SCRIPTS))

from issuer_config import load_settings  # noqa: E402
from delivery import MailError, StoreError  # noqa: E402
from generate_keys import create_key_documents  # noqa: E402
from sign_credential import parse_private_key  # noqa: E402

ISSUER_URL = "https://issuer.example"


def make_png(size: tuple[int, int] = (4, 3), text: dict[str, str] | None = None) -> bytes:
    img = Image.new("RGBA", size)
    for x in range(size[0]):
        for y in range(size[1]):
            img.putpixel((x, y), (x * 40, y * 60, 200, 255))
    info = PngImagePlugin.PngInfo()
    for key, value in (text or {}).items():
        info.add_text(key, value)
    buf = io.BytesIO()
    img.save(buf, "PNG", pnginfo=info)
    return buf.getvalue()


class FakeStore:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[bytes, str]] = []
        self.error = error

    async def put(self, data: bytes, suggested_name: str) -> str:
        self.calls.append((data, suggested_name))
        if self.error is not None:
            raise self.error
        return f"https://store.example/{suggested_name}"


class FakeMail:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list = []
        self.error = error

    async def send(self, message) -> None:
        self.calls.append(message)
        if self.error is not None:
            raise self.error


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_path(tmp_path: Path, png_bytes: bytes) -> Path:
    path = tmp_path / "badge.png"
    path.write_bytes(png_bytes)
    return path


@pytest.fixture
def key_documents() -> tuple[dict, dict]:
    return create_key_documents(ISSUER_URL)


@pytest.fixture
def issuer_key(key_documents):
    return parse_private_key(key_documents[1])


@pytest.fixture
def settings():
    return load_settings({"ISSUER_URL": ISSUER_URL, "ASSERTION_SALT": "xyz"})


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def mail() -> FakeMail:
    return FakeMail()


@pytest.fixture
def failing_store() -> FakeStore:
    return FakeStore(StoreError("bucket unavailable"))


@pytest.fixture
def failing_mail() -> FakeMail:
    return FakeMail(MailError("relay refused"))


@pytest.fixture
def png_factory():
    return make_png
