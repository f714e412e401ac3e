"""
Issuer settings, read from the environment once at startup.

    ISSUER_NAME        Display name of the issuer (default: "Badge Issuer")
    ISSUER_URL         Issuer URL; required
    PRIVATE_KEY        Private key JSON document, inline
    PRIVATE_KEY_FILE   Private key JSON file (default: keys/key-1-private.json)
    ASSERTION_SALT     Salt appended to recipient emails before hashing
    HASH_RECIPIENT     Hash recipient emails (default: true)
    EMAIL_SUBJECT      Subject of badge emails
    EMAIL_FROM_NAME    Sender display name
    EMAIL_FROM_EMAIL   Sender address
    SERVICE_URL        Public URL of this service (default: http://localhost:3001)
    STORE_DIR          Directory for stored badge images (default: uploads)
    STORE_BASE_URL     Public URL prefix of STORE_DIR (default: its file:// URL)
    OUTBOX_DIR         Directory badge emails are written to (default: outbox)
    LOG_LEVEL          debug|info|warning|error (default: info)

ASSERTION_SALT and HASH_RECIPIENT are independent: an unset salt never turns
hashing off, it means recipient emails are hashed with an empty salt.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off')
LOG_LEVELS = ('debug', 'info', 'warning', 'error')


@dataclass(frozen=True)
class Settings:
    issuer_name: str
    issuer_url: str
    private_key: str | None
    private_key_file: Path
    assertion_salt: str | None
    hash_recipient: bool
    email_subject: str
    email_from_name: str
    email_from_email: str
    service_url: str
    store_dir: Path
    store_base_url: str | None
    outbox_dir: Path
    log_level: str


def _getenv(environ: Mapping[str, str], name: str, default: str = '') -> str:
    return environ.get(name, default).strip()


def _getbool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _getenv(environ, name).lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be true or false (got {raw!r})")


def load_settings(environ: Mapping[str, str] = None) -> Settings:
    """Build Settings from environment variables (default: os.environ)."""
    if environ is None:
        environ = os.environ

    issuer_url = _getenv(environ, 'ISSUER_URL')
    if not issuer_url:
        raise ValueError("ISSUER_URL must be set")
    if not issuer_url.startswith(('http://', 'https://')):
        raise ValueError(f"ISSUER_URL must be an http(s) URL (got {issuer_url!r})")

    log_level = _getenv(environ, 'LOG_LEVEL', 'info').lower()
    if log_level not in LOG_LEVELS:
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level!r})"
        )

    return Settings(
        issuer_name=_getenv(environ, 'ISSUER_NAME', 'Badge Issuer'),
        issuer_url=issuer_url,
        private_key=_getenv(environ, 'PRIVATE_KEY') or None,
        private_key_file=Path(_getenv(environ, 'PRIVATE_KEY_FILE', 'keys/key-1-private.json')),
        # Salts are used verbatim, surrounding whitespace included
        assertion_salt=environ.get('ASSERTION_SALT') or None,
        hash_recipient=_getbool(environ, 'HASH_RECIPIENT', True),
        email_subject=_getenv(environ, 'EMAIL_SUBJECT', "You've been awarded a badge!"),
        email_from_name=_getenv(environ, 'EMAIL_FROM_NAME'),
        email_from_email=_getenv(environ, 'EMAIL_FROM_EMAIL'),
        service_url=_getenv(environ, 'SERVICE_URL', 'http://localhost:3001'),
        store_dir=Path(_getenv(environ, 'STORE_DIR', 'uploads')),
        store_base_url=_getenv(environ, 'STORE_BASE_URL') or None,
        outbox_dir=Path(_getenv(environ, 'OUTBOX_DIR', 'outbox')),
        log_level=log_level,
    )


def issuer_profile(settings: Settings) -> dict:
    """The issuer document published at /issuer.json."""
    return {
        "name": settings.issuer_name,
        "url": settings.issuer_url,
    }
