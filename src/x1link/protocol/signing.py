"""Firmware image signing and verification (ECDSA P-256 / SHA-256)."""

from __future__ import annotations

import re

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from ..exceptions import FirmwareError

SIGNING_KEY_FORMAT = 1
FIRMWARE_IMAGE_MAGIC = 0xE9
P256_SCALAR_SIZE = 32

_PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def validate_image(image: bytes) -> None:
    """Check that image looks like an unsigned firmware image.

    Raises:
        FirmwareError: If the first byte is not the image magic (0xE9)
    """
    if not image or image[0] != FIRMWARE_IMAGE_MAGIC:
        raise FirmwareError("Not a firmware file (missing 0xE9 header byte)")


def parse_signing_key(value: bytes) -> ec.EllipticCurvePublicKey:
    """Parse the signing-key characteristic value.

    Format: [format:1 = 0x01][raw uncompressed P-256 point]

    Raises:
        FirmwareError: If the format is unsupported or the key is invalid
    """
    if not value or value[0] != SIGNING_KEY_FORMAT:
        raise FirmwareError("Unsupported OTA protocol")

    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), bytes(value[1:]))
    except ValueError as e:
        raise FirmwareError(f"Invalid firmware signing key: {e}") from e


def p1363_to_der(signature: bytes) -> bytes:
    """Re-encode a fixed-length r||s signature as ASN.1 DER.

    Args:
        signature: IEEE P1363 signature (two equal-length big-endian integers)

    Returns:
        DER SEQUENCE { INTEGER r, INTEGER s }
    """
    if not signature or len(signature) % 2:
        raise ValueError(f"P1363 signature must have even length, got {len(signature)}")

    half = len(signature) // 2
    r = int.from_bytes(signature[:half], "big")
    s = int.from_bytes(signature[half:], "big")
    return encode_dss_signature(r, s)


def der_to_p1363(signature: bytes, size: int = P256_SCALAR_SIZE) -> bytes:
    """Convert a DER signature back to fixed-length r||s form."""
    r, s = decode_dss_signature(signature)
    return r.to_bytes(size, "big") + s.to_bytes(size, "big")


def normalize_signature(signature: bytes) -> bytes:
    """Return a DER signature, converting from P1363 form if needed.

    Valid DER is kept as-is even at 64 bytes, which short r and s values
    can produce. Anything else that is not 64 bytes passes through and is
    rejected by verify_image().
    """
    signature = bytes(signature)
    try:
        decode_dss_signature(signature)
    except ValueError:
        if len(signature) == 2 * P256_SCALAR_SIZE:
            return p1363_to_der(signature)
    return signature


def load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    """Load a P-256 private key given as 64 hex characters.

    Raises:
        FirmwareError: If the string is malformed or not a valid scalar
    """
    if not _PRIVATE_KEY_RE.match(private_key_hex):
        raise FirmwareError("Private key should be 64 hexadecimal characters")

    try:
        return ec.derive_private_key(int(private_key_hex, 16), ec.SECP256R1())
    except ValueError as e:
        raise FirmwareError(f"Invalid private key: {e}") from e


def private_key_matches(
        private_key: ec.EllipticCurvePrivateKey,
        public_key: ec.EllipticCurvePublicKey,
) -> bool:
    """Check that private_key is the counterpart of public_key."""
    return private_key.public_key().public_numbers() == public_key.public_numbers()


def sign_image(image: bytes, private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Sign an image with ECDSA-SHA256, returning a DER signature."""
    return private_key.sign(image, ec.ECDSA(hashes.SHA256()))


def verify_image(
        image: bytes,
        signature: bytes,
        public_key: ec.EllipticCurvePublicKey,
) -> None:
    """Verify a DER signature over image.

    Raises:
        FirmwareError: If the signature does not verify
    """
    try:
        public_key.verify(signature, image, ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError) as e:
        raise FirmwareError("Firmware signature does not match the bridge signing key") from e
