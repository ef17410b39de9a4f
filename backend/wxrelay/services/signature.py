"""
WeChat server signature verification.

WeChat signs every request with sha1 over the lexicographically sorted
[token, timestamp, nonce] joined without separators.
See https://developers.weixin.qq.com/doc/offiaccount/Basic_Information/Access_Overview.html
"""

import hashlib
import hmac


def generate_signature(token: str, timestamp: str, nonce: str) -> str:
    """Return the hex sha1 signature WeChat would send for these values."""
    check_str = "".join(sorted([token, timestamp, nonce]))
    return hashlib.sha1(check_str.encode("utf-8")).hexdigest()


def validate_signature(token: str, signature: str, timestamp: str, nonce: str) -> bool:
    """True iff ``signature`` matches the values. Constant-time comparison."""
    expected = generate_signature(token, timestamp, nonce)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
