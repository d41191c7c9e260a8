"""
HMAC signatures binding a Todoist task id to its printed QR code.

The QR code on every pallet label encodes ``/scan/<task_id>?sig=<hex>``.
Only the server knows the secret, so a valid signature proves the URL came
from a label this server printed. Signatures are deterministic: the same
label can be scanned again later to see the "bereits ausgebucht" status.
"""

import hashlib
import hmac
from typing import Any

from exceptions import ConfigurationError


class SignatureVerifier:
    """Signs and verifies task ids with HMAC-SHA256."""

    def __init__(self, secret: str):
        if not secret:
            raise ConfigurationError("SIGNING_SECRET must not be empty", missing=["SIGNING_SECRET"])
        self._key = secret.encode('utf-8')

    def sign(self, task_id: Any) -> str:
        """Return the lowercase hex digest for ``str(task_id)``."""
        return hmac.new(self._key, str(task_id).encode('utf-8'), hashlib.sha256).hexdigest()

    def verify(self, task_id: Any, supplied: Any) -> bool:
        """
        Check a supplied signature; never raises.

        Missing, empty or non-string signatures are rejected.
        """
        if not supplied or not isinstance(supplied, str):
            return False
        # compare_digest rejects non-ASCII str, so compare bytes
        return hmac.compare_digest(self.sign(task_id).encode('ascii'), supplied.encode('utf-8'))

    def signed_path(self, task_id: Any, route: str = "scan") -> str:
        """Relative URL of the public completion endpoint for a task."""
        return f"/{route}/{task_id}?sig={self.sign(task_id)}"
