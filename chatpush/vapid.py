"""
Generate VAPID keys for web push notifications.

Run ``chatpush-generate-vapid`` (or ``python -m chatpush.vapid``) and add the
output to your environment variables.
"""

import argparse
import base64

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec


def base64url_encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def public_key_for(private_key: ec.EllipticCurvePrivateKey) -> str:
    """Application server key in the uncompressed point form browsers expect."""
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return base64url_encode(public_bytes)


def generate_vapid_keys() -> tuple[str, str]:
    """Generate a new P-256 key pair; returns (public_key, private_key) base64url encoded."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    # Raw 32-byte scalar, the format pywebpush accepts
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")
    return public_key_for(private_key), base64url_encode(private_bytes)


def derive_public_key(private_key: str) -> str:
    """Recover the public key for an existing base64url private key."""
    value = int.from_bytes(base64url_decode(private_key), "big")
    return public_key_for(ec.derive_private_key(value, ec.SECP256R1()))


def format_env(public_key: str, private_key: str, subject: str) -> str:
    return "\n".join([
        f"VAPID_PUBLIC_KEY={public_key}",
        f"VAPID_PRIVATE_KEY={private_key}",
        f"VAPID_SUBJECT={subject}",
    ])


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--subject", default="mailto:admin@example.com", help="mailto: or https:// contact URI")
    parser.add_argument("--from-private-key", help="print the public key for an existing private key")
    args = parser.parse_args(argv)

    if args.from_private_key:
        public_key, private_key = derive_public_key(args.from_private_key), args.from_private_key
    else:
        public_key, private_key = generate_vapid_keys()

    print("\n=== VAPID Keys Generated ===\n")
    print("Add these to your environment variables:\n")
    print(format_env(public_key, private_key, args.subject))
    print("\n============================\n")


if __name__ == "__main__":
    main()
