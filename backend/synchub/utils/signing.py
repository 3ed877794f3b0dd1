from __future__ import annotations
import hmac, hashlib


def compute_hmac_hex(secret: str, raw_body: bytes) -> str:
    return hmac.new((secret or "").encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_hmac_hex(secret: str, raw_body: bytes, provided: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(compute_hmac_hex(secret, raw_body), provided)
