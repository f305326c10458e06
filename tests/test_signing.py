import time

import jwt
import pytest

from jobrelay.v1.core.exceptions import AuthenticityError, ConfigurationError
from jobrelay.v1.core.signing import (
    SignatureVerifier,
    compute_body_hash,
    get_signature_verifier,
)

URL = "http://localhost:8000/v1/jobs/email"
BODY = b'{"jobId":"abc"}'


def test_current_key_accepted(verifier, sign):
    claims = verifier.verify(sign(BODY, URL), BODY, URL)

    assert claims["iss"] == "Upstash"
    assert claims["sub"] == URL
    assert claims["body"] == compute_body_hash(BODY)


def test_next_key_accepted(verifier, sign, next_signing_key):
    assert verifier.verify(sign(BODY, URL, key=next_signing_key), BODY, URL)


def test_unknown_key_rejected(verifier, sign):
    signature = sign(BODY, URL, key="sig_other_0123456789abcdef0123456789abcdef")

    with pytest.raises(AuthenticityError, match="Invalid signature"):
        verifier.verify(signature, BODY, URL)


def test_missing_signature_rejected(verifier):
    with pytest.raises(AuthenticityError, match="Missing signature") as exc_info:
        verifier.verify(None, BODY, URL)

    assert exc_info.value.status_code == 401


def test_tampered_body_rejected(verifier, sign):
    with pytest.raises(AuthenticityError) as exc_info:
        verifier.verify(sign(BODY, URL), b'{"jobId":"xyz"}', URL)

    assert "body hash" in exc_info.value.details["reason"]


def test_other_destination_rejected(verifier, sign):
    signature = sign(BODY, "http://localhost:8000/v1/jobs/report")

    with pytest.raises(AuthenticityError):
        verifier.verify(signature, BODY, URL)


def test_expired_signature_rejected(verifier, sign):
    issued = int(time.time()) - 600

    with pytest.raises(AuthenticityError):
        verifier.verify(sign(BODY, URL, issued_at=issued, ttl_seconds=60), BODY, URL)


def test_clock_tolerance(current_signing_key, next_signing_key, sign):
    lenient = SignatureVerifier(current_signing_key, next_signing_key, clock_tolerance_s=120)
    issued = int(time.time()) - 90

    assert lenient.verify(sign(BODY, URL, issued_at=issued, ttl_seconds=60), BODY, URL)


def test_wrong_issuer_rejected(verifier, current_signing_key):
    now = int(time.time())
    signature = jwt.encode(
        {
            "iss": "someone-else",
            "sub": URL,
            "iat": now,
            "nbf": now,
            "exp": now + 60,
            "body": compute_body_hash(BODY),
        },
        current_signing_key,
        algorithm="HS256",
    )

    with pytest.raises(AuthenticityError):
        verifier.verify(signature, BODY, URL)


def test_body_hash_is_unpadded_base64url():
    digest = compute_body_hash(b"")
    assert "=" not in digest
    assert "+" not in digest and "/" not in digest


def test_both_keys_required():
    with pytest.raises(ConfigurationError):
        SignatureVerifier("only-current", "")


def test_dependency_requires_configured_keys():
    from jobrelay.config.settings import Settings

    settings = Settings(
        _env_file=None, qstash_current_signing_key=None, qstash_next_signing_key=None
    )

    with pytest.raises(ConfigurationError, match="QSTASH_CURRENT_SIGNING_KEY"):
        get_signature_verifier(settings)
