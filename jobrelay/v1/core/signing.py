"""
Delivery signature verification.

The delivery provider signs every push with an HS256 JWT carried in the
Upstash-Signature header. The token binds the destination URL (``sub``) and
a SHA-256 hash of the raw body (``body``). Two signing keys are valid at any
time so keys can be rotated without dropping deliveries.
"""

import base64
import hashlib
import time
import uuid
from typing import Any

import jwt
from fastapi import Depends

from jobrelay.config.settings import Settings, get_settings
from jobrelay.v1.core.exceptions import AuthenticityError, ConfigurationError

SIGNATURE_HEADER = "Upstash-Signature"
SIGNATURE_ISSUER = "Upstash"
SIGNATURE_ALGORITHM = "HS256"


def compute_body_hash(body: bytes) -> str:
    """URL-safe base64 SHA-256 of the body, without padding."""
    digest = hashlib.sha256(body).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sign_delivery(
    signing_key: str,
    body: bytes,
    url: str,
    ttl_seconds: int = 300,
    issued_at: int | None = None,
) -> str:
    """Produce a delivery signature the way the provider does."""
    now = int(time.time()) if issued_at is None else issued_at
    claims = {
        "iss": SIGNATURE_ISSUER,
        "sub": url,
        "iat": now,
        "nbf": now,
        "exp": now + ttl_seconds,
        "jti": uuid.uuid4().hex,
        "body": compute_body_hash(body),
    }
    return jwt.encode(claims, signing_key, algorithm=SIGNATURE_ALGORITHM)


class SignatureVerifier:
    """Verifies delivery signatures against the current and next signing keys."""

    def __init__(
        self,
        current_signing_key: str,
        next_signing_key: str,
        clock_tolerance_s: int = 0,
    ):
        if not current_signing_key or not next_signing_key:
            raise ConfigurationError(
                "Both current and next signing keys are required"
            )
        self._keys = (current_signing_key, next_signing_key)
        self._clock_tolerance_s = clock_tolerance_s

    def verify(
        self, signature: str | None, body: bytes, url: str | None = None
    ) -> dict[str, Any]:
        """
        Verify a delivery signature.

        Args:
            signature: Value of the signature header
            body: Raw request body exactly as received
            url: Expected destination URL; skipped when None

        Returns:
            The decoded token claims

        Raises:
            AuthenticityError: If the signature is missing or valid under neither key
        """
        if not signature:
            raise AuthenticityError("Missing signature")

        reason = "Signature verification failed"
        for key in self._keys:
            try:
                return self._verify_with_key(key, signature, body, url)
            except jwt.InvalidSignatureError:
                # Signed with the other key, or with neither
                continue
            except jwt.PyJWTError as e:
                reason = str(e)
            except AuthenticityError as e:
                reason = e.message

        raise AuthenticityError("Invalid signature", details={"reason": reason})

    def _verify_with_key(
        self, key: str, signature: str, body: bytes, url: str | None
    ) -> dict[str, Any]:
        claims = jwt.decode(
            signature,
            key,
            algorithms=[SIGNATURE_ALGORITHM],
            issuer=SIGNATURE_ISSUER,
            leeway=self._clock_tolerance_s,
            options={"require": ["iss", "sub", "exp", "nbf", "body"]},
        )

        if url is not None and claims["sub"] != url:
            raise AuthenticityError("Signature destination does not match")

        if str(claims["body"]).rstrip("=") != compute_body_hash(body):
            raise AuthenticityError("Signature body hash does not match")

        return claims


def get_signature_verifier(
    settings: Settings = Depends(get_settings),
) -> SignatureVerifier:
    """Dependency injection function for the delivery signature verifier."""
    if not settings.qstash_current_signing_key or not settings.qstash_next_signing_key:
        raise ConfigurationError(
            "QStash signing keys are not configured. Set "
            "QSTASH_CURRENT_SIGNING_KEY and QSTASH_NEXT_SIGNING_KEY."
        )

    return SignatureVerifier(
        settings.qstash_current_signing_key,
        settings.qstash_next_signing_key,
        clock_tolerance_s=settings.signature_clock_tolerance_s,
    )
