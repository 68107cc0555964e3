"""Tests for webhook signature verification."""

import hashlib
import hmac

from src.webhooks.signature import compute_signature, verify

SECRET = "s3cret-signing-key"
BODY = b'{"ref":"refs/heads/main","commits":[]}'


def _flip_bit(data: bytes, bit: int) -> bytes:
    mutated = bytearray(data)
    mutated[bit // 8] ^= 1 << (bit % 8)
    return bytes(mutated)


class TestComputeSignature:
    def test_matches_hmac_sha256_hex(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert compute_signature(BODY, SECRET) == expected

    def test_accepts_bytes_secret(self):
        assert compute_signature(BODY, SECRET.encode()) == compute_signature(BODY, SECRET)


class TestVerify:
    def test_valid_signature(self):
        assert verify(BODY, compute_signature(BODY, SECRET), SECRET) is True

    def test_valid_signature_with_prefix(self):
        assert verify(BODY, "sha256=" + compute_signature(BODY, SECRET), SECRET) is True

    def test_empty_body(self):
        assert verify(b"", compute_signature(b"", SECRET), SECRET) is True

    def test_wrong_secret(self):
        assert verify(BODY, compute_signature(BODY, "other"), SECRET) is False

    def test_missing_signature(self):
        assert verify(BODY, None, SECRET) is False
        assert verify(BODY, "", SECRET) is False

    def test_empty_secret_never_verifies(self):
        assert verify(BODY, compute_signature(BODY, ""), "") is False

    def test_malformed_signatures(self):
        good = compute_signature(BODY, SECRET)
        assert verify(BODY, "not-hex", SECRET) is False
        assert verify(BODY, good[:-2], SECRET) is False
        assert verify(BODY, good + "00", SECRET) is False
        assert verify(BODY, "z" * len(good), SECRET) is False
        assert verify(BODY, "é" * len(good), SECRET) is False

    def test_uppercase_hex_rejected(self):
        good = compute_signature(BODY, SECRET)
        assert verify(BODY, good.upper(), SECRET) is False

    def test_every_body_bit_flip_rejected(self):
        signature = compute_signature(BODY, SECRET)
        for bit in range(len(BODY) * 8):
            assert verify(_flip_bit(BODY, bit), signature, SECRET) is False

    def test_every_signature_bit_flip_rejected(self):
        raw = compute_signature(BODY, SECRET).encode("latin-1")
        for bit in range(len(raw) * 8):
            mutated = _flip_bit(raw, bit).decode("latin-1")
            assert verify(BODY, mutated, SECRET) is False
