#!/usr/bin/env python3
"""
Generate an Ed25519 keypair for signing badge assertions.

Outputs keys in Multikey format. The private key document is what the issuer
loads through PRIVATE_KEY or PRIVATE_KEY_FILE; the public key document is
published at the verification method URL so assertions can be checked.
"""

import argparse
import json
import os
from pathlib import Path

from nacl.signing import SigningKey

from sign_credential import ED25519_PRIV_HEADER, ED25519_PUB_HEADER, encode_multibase


def create_key_documents(issuer_id: str, key_id: str = 'key-1',
                         signing_key: SigningKey = None) -> tuple:
    """
    Create the public and private Multikey documents for an issuer.

    Args:
        issuer_id: Issuer URL, used as the key controller
        key_id: Fragment identifying the key under the issuer
        signing_key: Existing key to describe (default: a new random key)

    Returns:
        (public_key_doc, private_key_doc)
    """
    if signing_key is None:
        signing_key = SigningKey.generate()

    public_multikey = encode_multibase(ED25519_PUB_HEADER + bytes(signing_key.verify_key))
    private_multikey = encode_multibase(ED25519_PRIV_HEADER + bytes(signing_key))

    verification_method_id = f"{issuer_id.rstrip('/')}#{key_id}"

    public_key_doc = {
        "id": verification_method_id,
        "type": "Multikey",
        "controller": issuer_id,
        "publicKeyMultibase": public_multikey
    }
    private_key_doc = {
        **public_key_doc,
        "secretKeyMultibase": private_multikey
    }
    return public_key_doc, private_key_doc


def main():
    parser = argparse.ArgumentParser(
        description='Generate Ed25519 keypair for badge assertion signing'
    )
    parser.add_argument(
        '--output-dir', '-o',
        type=Path,
        default=Path('keys'),
        help='Output directory for key files (default: keys)'
    )
    parser.add_argument(
        '--key-id',
        type=str,
        default='key-1',
        help='Key identifier (default: key-1)'
    )
    parser.add_argument(
        '--issuer-id',
        type=str,
        default=os.environ.get('ISSUER_URL', 'http://localhost:3001'),
        help='Issuer URL (default: $ISSUER_URL)'
    )
    args = parser.parse_args()

    args.output_dir.mkdir(parents=True, exist_ok=True)

    public_key_doc, private_key_doc = create_key_documents(args.issuer_id, args.key_id)

    public_key_path = args.output_dir / f"{args.key_id}-public.json"
    with open(public_key_path, 'w') as f:
        json.dump(public_key_doc, f, indent=2)
    print(f"Public key saved to: {public_key_path}")

    # Save private key with restrictive permissions
    private_key_path = args.output_dir / f"{args.key_id}-private.json"
    with open(private_key_path, 'w') as f:
        json.dump(private_key_doc, f, indent=2)
    os.chmod(private_key_path, 0o600)
    print(f"Private key saved to: {private_key_path}")

    print(f"\nVerification Method ID: {public_key_doc['id']}")
    print("Publish the public key document at that URL so badges can be verified.")


if __name__ == '__main__':
    main()
