#!/usr/bin/env python3
"""
Sign an Open Badges assertion using Ed25519 and a Data Integrity proof.

Uses the eddsa-jcs-2022 cryptosuite: both the proof configuration and the
assertion are canonicalized with JCS (RFC 8785), hashed with SHA-256, and the
concatenated hashes are signed. Ed25519 signatures are deterministic, and the
proof's "created" time is taken from the assertion, so signing the same
assertion with the same key always produces the same bytes.
"""

import argparse
import hashlib
import json
import sys
from dataclasses import dataclass
from pathlib import Path

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from badge_assertion import Assertion


# Multicodec prefixes
ED25519_PRIV_HEADER = bytes([0x80, 0x26])
ED25519_PUB_HEADER = bytes([0xed, 0x01])

CRYPTOSUITE = "eddsa-jcs-2022"


class SigningError(Exception):
    """The issuer key or the assertion could not be used for signing."""


@dataclass(frozen=True)
class IssuerKey:
    signing_key: SigningKey
    verification_method: str

    @property
    def verify_key(self) -> VerifyKey:
        return self.signing_key.verify_key


def decode_multibase(value: str) -> bytes:
    """Decode a multibase-encoded value."""
    if value.startswith('z'):
        return base58.b58decode(value[1:])
    raise ValueError(f"Unsupported multibase prefix: {value[:1]!r}")


def encode_multibase(data: bytes) -> str:
    return 'z' + base58.b58encode(data).decode('ascii')


def parse_private_key(key_doc: dict) -> IssuerKey:
    """Build an issuer key from a Multikey private key document."""
    try:
        decoded = decode_multibase(key_doc['secretKeyMultibase'])
        verification_method = key_doc['id']
    except (KeyError, TypeError, ValueError) as e:
        raise SigningError(f"Invalid private key document: {e}") from e

    # Remove multicodec header
    if decoded[:2] != ED25519_PRIV_HEADER or len(decoded) != 34:
        raise SigningError("Invalid Ed25519 private key format")

    return IssuerKey(SigningKey(decoded[2:]), verification_method)


def load_private_key(key_path: Path = None, key_json: str = None) -> IssuerKey:
    """
    Load the issuer's private key.

    Args:
        key_path: Path to a private key JSON file
        key_json: The private key JSON document itself (takes precedence)

    Raises:
        SigningError: If the key cannot be read or is not an Ed25519 Multikey
    """
    try:
        if key_json:
            key_doc = json.loads(key_json)
        else:
            with open(key_path) as f:
                key_doc = json.load(f)
    except (OSError, TypeError, ValueError) as e:
        raise SigningError(f"Could not load private key: {e}") from e

    return parse_private_key(key_doc)


def load_public_key(key_doc: dict) -> VerifyKey:
    """Load a verify key from a Multikey public key document."""
    decoded = decode_multibase(key_doc['publicKeyMultibase'])
    if decoded[:2] != ED25519_PUB_HEADER:
        raise ValueError("Invalid Ed25519 public key format")
    return VerifyKey(decoded[2:])


def jcs_canonicalize(obj) -> bytes:
    """
    Canonicalize JSON object using JCS (RFC 8785).

    JCS rules:
    - Object keys sorted lexicographically by Unicode code points
    - No whitespace
    - Strings use minimal escaping
    """
    return json.dumps(
        obj,
        separators=(',', ':'),
        sort_keys=True,
        ensure_ascii=False
    ).encode('utf-8')


def create_proof_config(verification_method: str, created: str) -> dict:
    """Create the proof configuration object."""
    return {
        "type": "DataIntegrityProof",
        "cryptosuite": CRYPTOSUITE,
        "verificationMethod": verification_method,
        "created": created,
        "proofPurpose": "assertionMethod"
    }


def _signing_input(payload: dict, proof_config: dict) -> bytes:
    proof_hash = hashlib.sha256(jcs_canonicalize(proof_config)).digest()
    payload_hash = hashlib.sha256(jcs_canonicalize(payload)).digest()
    return proof_hash + payload_hash


@dataclass(frozen=True)
class SignedAssertion:
    """An assertion payload together with its Data Integrity proof."""

    payload: dict
    proof: dict

    @property
    def signature(self) -> bytes:
        return decode_multibase(self.proof['proofValue'])

    def to_dict(self) -> dict:
        signed = dict(self.payload)
        signed['proof'] = dict(self.proof)
        return signed

    def serialize(self) -> bytes:
        """Canonical bytes of the signed assertion, as baked into images."""
        return jcs_canonicalize(self.to_dict())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'SignedAssertion':
        """Parse bytes produced by serialize()."""
        document = json.loads(data.decode('utf-8'))
        if not isinstance(document, dict) or not isinstance(document.get('proof'), dict):
            raise ValueError("Signed assertion has no proof")
        proof = document.pop('proof')
        return cls(payload=document, proof=proof)


def sign_assertion(assertion: Assertion, issuer_key: IssuerKey) -> SignedAssertion:
    """Sign an assertion built by badge_assertion.build_assertion()."""
    return sign_payload(assertion.to_dict(), issuer_key)


def sign_payload(payload: dict, issuer_key: IssuerKey) -> SignedAssertion:
    """
    Sign an assertion payload using the eddsa-jcs-2022 cryptosuite.

    Process:
    1. Create proof configuration dated at the assertion's issue time
    2. Canonicalize proof config and assertion using JCS
    3. Hash both canonicalized forms
    4. Concatenate hashes and sign
    5. Attach the proof with the multibase-encoded signature

    Raises:
        SigningError: If the key is unusable or the payload can't be serialized
    """
    if not isinstance(getattr(issuer_key, 'signing_key', None), SigningKey):
        raise SigningError("Issuer key is not an Ed25519 signing key")
    if not issuer_key.verification_method:
        raise SigningError("Issuer key has no verification method")

    # Remove any existing proof
    payload = {k: v for k, v in payload.items() if k != 'proof'}

    try:
        proof_config = create_proof_config(
            issuer_key.verification_method, payload['issuedOn']
        )
        signature = issuer_key.signing_key.sign(
            _signing_input(payload, proof_config)
        ).signature
    except (TypeError, ValueError, KeyError) as e:
        raise SigningError(f"Could not sign assertion: {e}") from e

    proof = {
        **proof_config,
        "proofValue": encode_multibase(signature)
    }
    return SignedAssertion(payload=payload, proof=proof)


def verify_signed_assertion(signed: SignedAssertion, verify_key: VerifyKey) -> bool:
    """Check the proof of a signed assertion against the issuer's public key."""
    proof_config = {k: v for k, v in signed.proof.items() if k != 'proofValue'}
    if proof_config.get('cryptosuite') != CRYPTOSUITE:
        return False
    try:
        verify_key.verify(_signing_input(signed.payload, proof_config), signed.signature)
    except (BadSignatureError, KeyError, ValueError):
        return False
    return True


def main():
    parser = argparse.ArgumentParser(
        description='Sign an Open Badges assertion'
    )
    parser.add_argument(
        'assertion',
        type=Path,
        help='Path to unsigned assertion JSON file'
    )
    parser.add_argument(
        '--key', '-k',
        type=Path,
        required=True,
        help='Path to private key JSON file'
    )
    parser.add_argument(
        '--output', '-o',
        type=Path,
        help='Output path for signed assertion (default: stdout)'
    )
    args = parser.parse_args()

    with open(args.assertion) as f:
        payload = json.load(f)

    try:
        issuer_key = load_private_key(args.key)
        signed = sign_payload(payload, issuer_key)
    except SigningError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output_json = json.dumps(signed.to_dict(), indent=2)

    if args.output:
        with open(args.output, 'w') as f:
            f.write(output_json)
        print(f"Signed assertion saved to: {args.output}", file=sys.stderr)
    else:
        print(output_json)


if __name__ == '__main__':
    main()
