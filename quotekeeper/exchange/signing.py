"""
Request signing for StandX write endpoints.

Write calls carry an Ed25519 signature over
"{version},{request_id},{timestamp_ms},{body}", base64 encoded.
"""

from __future__ import annotations

import base64
import time
import uuid
from typing import Callable, Dict, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

SIGN_VERSION = "v1"


def load_signing_key(encoded: str) -> Ed25519PrivateKey:
    """Decode a base64 32-byte Ed25519 seed (64-byte secret keys are truncated to the seed)."""
    raw = base64.b64decode(encoded)
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError(f"signing key must decode to 32 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw)


class RequestSigner:
    def __init__(
        self,
        token: str,
        signing_key: Ed25519PrivateKey,
        session_id: Optional[str] = None,
        now_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._token = token
        self._key = signing_key
        self.session_id = session_id or str(uuid.uuid4())
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def sign(self, request_id: str, timestamp_ms: int, body: str) -> str:
        message = f"{SIGN_VERSION},{request_id},{timestamp_ms},{body}"
        return base64.b64encode(self._key.sign(message.encode("utf-8"))).decode("ascii")

    def signed_headers(self, body: str) -> Dict[str, str]:
        request_id = str(uuid.uuid4())
        timestamp_ms = self._now_ms()
        return {
            **self.auth_headers(),
            "x-request-sign-version": SIGN_VERSION,
            "x-request-id": request_id,
            "x-request-timestamp": str(timestamp_ms),
            "x-request-signature": self.sign(request_id, timestamp_ms, body),
            "x-session-id": self.session_id,
        }
