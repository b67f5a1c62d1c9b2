"""Webhook verification utilities for Attest verification alerts."""

import hashlib
import hmac
import time
from typing import Dict


def verify_webhook(
    headers: Dict[str, str],
    raw_body: bytes,
    secret: str,
    tolerance_seconds: int = 300,
) -> bool:
    """
    Verify an Attest webhook signature and timestamp.

    Args:
        headers: Request headers dictionary
        raw_body: Raw request body bytes
        secret: Webhook secret shared with the Attest deployment
        tolerance_seconds: Maximum age of timestamp in seconds (default: 300 = 5 minutes)

    Returns:
        True if webhook is valid, False otherwise
    """
    signature_header = headers.get("X-Attest-Signature", "")
    timestamp_str = headers.get("X-Attest-Timestamp", "")

    if not signature_header or not timestamp_str:
        return False

    # Format: "sha256=<hex>"
    if not signature_header.startswith("sha256="):
        return False

    expected_signature = signature_header[7:]

    try:
        timestamp = int(timestamp_str)
        age = abs(int(time.time()) - timestamp)
        if age > tolerance_seconds:
            return False
    except (ValueError, TypeError):
        return False

    # Signed message: timestamp + "." + raw body bytes as received
    if not isinstance(raw_body, bytes):
        raw_body = raw_body.encode("utf-8")

    message = timestamp_str.encode("utf-8") + b"." + raw_body

    computed_signature = hmac.new(
        secret.encode("utf-8"),
        message,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected_signature, computed_signature)
