"""HMAC-SHA256 signatures for inbound webhook bodies."""

import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="
_HEX_LENGTH = hashlib.sha256().digest_size * 2


def _key(secret: Union[str, bytes]) -> bytes:
    return secret.encode() if isinstance(secret, str) else secret


def compute_signature(raw_body: bytes, secret: Union[str, bytes]) -> str:
    """Hex-encoded HMAC-SHA256 of ``raw_body``."""
    return hmac.new(_key(secret), raw_body, hashlib.sha256).hexdigest()


def verify(raw_body: bytes, provided_signature: Optional[str], secret: Union[str, bytes]) -> bool:
    """Check ``provided_signature`` against the body in constant time.

    Accepts a bare hex digest or one prefixed with ``sha256=``. Returns False
    for a missing, malformed or mismatched signature and for an empty secret;
    never raises.
    """
    if not provided_signature or not secret:
        return False

    signature = provided_signature
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    if len(signature) != _HEX_LENGTH:
        return False
    try:
        bytes.fromhex(signature)
    except ValueError:
        return False

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature)
