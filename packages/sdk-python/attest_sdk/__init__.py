"""Attest Python SDK."""

__version__ = "0.1.0"

from attest_sdk.client import AttestClient
from attest_sdk.webhook import verify_webhook

__all__ = ["AttestClient", "verify_webhook"]
