"""Test firmware signing helpers."""

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from x1link.exceptions import FirmwareError
from x1link.protocol.signing import (
    der_to_p1363,
    load_private_key,
    normalize_signature,
    p1363_to_der,
    parse_signing_key,
    private_key_matches,
    sign_image,
    validate_image,
    verify_image,
)

PRIVATE_KEY_HEX = "c9afa9d845ba75166b5c215767b1d6934e50c3db36e89b127b8a622b120f6721"
IMAGE = b"\xe9" + bytes(range(200))


def _key_value(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Signing-key characteristic value for a key."""
    point = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return b"\x01" + point


class TestImage:
    def test_valid_image(self):
        validate_image(IMAGE)

    @pytest.mark.parametrize("image", [b"", b"\x00\xe9", b"PK\x03\x04"])
    def test_missing_magic(self, image):
        with pytest.raises(FirmwareError, match="0xE9"):
            validate_image(image)


class TestSigningKey:
    """Test parsing of the bridge signing key."""

    def test_parse_uncompressed_point(self):
        private_key = load_private_key(PRIVATE_KEY_HEX)
        public_key = parse_signing_key(_key_value(private_key))
        assert private_key_matches(private_key, public_key)

    def test_unsupported_format(self):
        value = b"\x02" + _key_value(load_private_key(PRIVATE_KEY_HEX))[1:]
        with pytest.raises(FirmwareError, match="Unsupported OTA protocol"):
            parse_signing_key(value)

    def test_invalid_point(self):
        with pytest.raises(FirmwareError, match="Invalid firmware signing key"):
            parse_signing_key(b"\x01\x04" + b"\x00" * 64)

    @pytest.mark.parametrize("private_key_hex", ["", "abc", "zz" * 32, PRIVATE_KEY_HEX + "00"])
    def test_private_key_format(self, private_key_hex):
        with pytest.raises(FirmwareError, match="64 hexadecimal"):
            load_private_key(private_key_hex)

    def test_other_key_does_not_match(self):
        private_key = load_private_key(PRIVATE_KEY_HEX)
        other = ec.generate_private_key(ec.SECP256R1())
        assert not private_key_matches(other, private_key.public_key())


class TestSignatures:
    """Test signature encoding and verification."""

    def test_sign_and_verify(self):
        private_key = load_private_key(PRIVATE_KEY_HEX)
        signature = sign_image(IMAGE, private_key)

        assert signature[0] == 0x30  # DER SEQUENCE
        verify_image(IMAGE, signature, private_key.public_key())

    def test_verify_rejects_modified_image(self):
        private_key = load_private_key(PRIVATE_KEY_HEX)
        signature = sign_image(IMAGE, private_key)

        with pytest.raises(FirmwareError, match="does not match"):
            verify_image(IMAGE + b"\x00", signature, private_key.public_key())

    def test_p1363_conversion(self):
        """r||s signatures convert to DER and back unchanged."""
        private_key = load_private_key(PRIVATE_KEY_HEX)
        p1363 = der_to_p1363(sign_image(IMAGE, private_key))
        assert len(p1363) == 64

        der = p1363_to_der(p1363)
        verify_image(IMAGE, der, private_key.public_key())
        assert normalize_signature(p1363) == der

    def test_small_integers_are_minimally_encoded(self):
        """Leading zeros are dropped and a 0x00 pad added for high bits."""
        p1363 = b"\x00" * 31 + b"\x05" + b"\x80" + b"\x00" * 31
        der = p1363_to_der(p1363)
        assert der[:5] == b"\x30\x26\x02\x01\x05"
        assert der[5:8] == b"\x02\x21\x00"

    def test_der_passes_through(self):
        der = b"\x30\x06\x02\x01\x01\x02\x01\x01"
        assert normalize_signature(der) == der

    def test_64_byte_der_is_not_treated_as_p1363(self):
        """Short r and s can make a DER signature exactly 64 bytes long."""
        der = b"\x30\x3e" + b"\x02\x1d" + b"\x11" * 29 + b"\x02\x1d" + b"\x22" * 29
        assert len(der) == 64
        assert normalize_signature(der) == der

    def test_odd_length_p1363(self):
        with pytest.raises(ValueError):
            p1363_to_der(b"\x01\x02\x03")
