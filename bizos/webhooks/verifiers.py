"""
Webhook signature verifiers

All comparisons are constant time. Verifiers return False rather than
raising on malformed headers.
"""
import base64
import hashlib
import hmac
import time
from typing import List, Optional, Tuple


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def _matches(expected: str, candidate: str) -> bool:
    # compare_digest rejects non-ASCII str, so compare the encoded bytes
    return hmac.compare_digest(expected.encode("ascii"), candidate.encode("utf-8", "replace"))


def parse_timestamped_header(header: Optional[str]) -> Tuple[Optional[int], List[str]]:
    """Split 't=<ts>,v1=<sig>[,v1=<sig>...]' into (timestamp, signatures)."""
    timestamp = None
    signatures: List[str] = []
    if not header:
        return None, signatures
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def sign_timestamped(raw_body: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Header value for a body, as a sender would compute it."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + raw_body
    return f"t={timestamp},v1={_hmac_sha256(secret, signed).hex()}"


def verify_timestamped(raw_body: bytes, header: Optional[str], secret: str, tolerance_seconds: int,
                       now: Optional[float] = None) -> bool:
    """
    Stripe-style signature: HMAC-SHA256 of '<t>.<body>' in hex, with the
    timestamp required to be within tolerance of now.
    """
    if not secret:
        return False
    timestamp, signatures = parse_timestamped_header(header)
    if timestamp is None or not signatures:
        return False
    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        return False
    expected = _hmac_sha256(secret, f"{timestamp}.".encode("utf-8") + raw_body).hex()
    return any(_matches(expected, candidate) for candidate in signatures)


def sign_shopify(raw_body: bytes, secret: str) -> str:
    return base64.b64encode(_hmac_sha256(secret, raw_body)).decode("ascii")


def verify_shopify(raw_body: bytes, header: Optional[str], secret: str) -> bool:
    """X-Shopify-Hmac-SHA256: base64 HMAC-SHA256 of the raw body."""
    if not secret or not header:
        return False
    return _matches(sign_shopify(raw_body, secret), header.strip())


def sign_hex(raw_body: bytes, secret: str) -> str:
    return _hmac_sha256(secret, raw_body).hex()


def verify_hex(raw_body: bytes, header: Optional[str], secret: str) -> bool:
    """Tiendanube x-linkedstore-hmac-sha256: hex HMAC-SHA256 of the raw body."""
    if not secret or not header:
        return False
    return _matches(sign_hex(raw_body, secret), header.strip().lower())
