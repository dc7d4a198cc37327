"""
Gateway signature checks (HMAC-SHA256, hex digest, constant-time compare).

Two message constructions:
- checkout callback: "{order_id}|{payment_id}" keyed by the API key secret;
- webhook: the raw request body, byte for byte, keyed by the webhook secret.
  Never hash a re-serialized JSON body: it is not byte-identical.
"""
import hashlib
import hmac

from checkout.core.errors import InvalidSignature


def sign(message: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(message: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = sign(message, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def payment_message(order_id: str, payment_id: str) -> bytes:
    return f"{order_id}|{payment_id}".encode("utf-8")


def verify_payment_signature(order_id: str, payment_id: str, signature: str | None, secret: str) -> bool:
    return verify(payment_message(order_id, payment_id), signature, secret)


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    return verify(raw_body, signature, secret)


def require_valid(ok: bool, source: str, **context) -> None:
    """Hard rejection; there is no warning-only path."""
    if not ok:
        raise InvalidSignature(f"Invalid {source} signature", source=source, **context)
