"""GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body using
the webhook secret and sends the result as ``X-Hub-Signature-256:
sha256=<hex>``. Verification must run on the exact bytes received, before the
body is parsed as JSON.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub would send for a body.

    Args:
        raw_body: The unparsed request body.
        secret: The shared webhook secret.

    Returns:
        The signature header value.
    """
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    raw_body: bytes,
    secret: str,
    header_value: Optional[str],
) -> bool:
    """Verify an ``X-Hub-Signature-256`` header against the raw body.

    Fails closed: a missing header, an empty secret, a scheme other than
    ``sha256`` or an empty digest all return False. The comparison runs in
    constant time over the full value.

    Args:
        raw_body: The unparsed request body, byte-identical to what is
            later parsed as JSON.
        secret: The shared webhook secret.
        header_value: The ``X-Hub-Signature-256`` header, if present.

    Returns:
        True only if the header matches the expected signature.
    """
    if not header_value or not secret:
        return False

    if not header_value.startswith(SIGNATURE_PREFIX):
        return False
    if len(header_value) == len(SIGNATURE_PREFIX):
        return False

    expected = compute_signature(raw_body, secret)
    if len(expected) != len(header_value):
        return False

    return hmac.compare_digest(
        expected.encode("ascii"), header_value.encode("utf-8", errors="replace")
    )
