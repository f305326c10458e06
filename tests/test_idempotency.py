from datetime import UTC, date, datetime

import pytest

from jobrelay.v1.core.idempotency import derive_idempotency_key


def test_same_event_same_key():
    first = derive_idempotency_key("process-stripe-webhook", "evt_123")
    second = derive_idempotency_key("process-stripe-webhook", "evt_123")

    assert first == second
    assert first.startswith("process-stripe-webhook:")
    assert len(first.split(":", 1)[1]) == 32


def test_different_events_different_keys():
    assert derive_idempotency_key("send-email", "welcome", "u1") != derive_idempotency_key(
        "send-email", "welcome", "u2"
    )


def test_namespace_separates_keys():
    assert derive_idempotency_key("send-email", "evt_1") != derive_idempotency_key(
        "create-notification", "evt_1"
    )


def test_identifier_boundaries_matter():
    assert derive_idempotency_key("ns", "ab", "c") != derive_idempotency_key(
        "ns", "a", "bc"
    )


@pytest.mark.parametrize("stamp", [datetime.now(UTC), date.today()])
def test_timestamps_rejected(stamp):
    with pytest.raises(ValueError, match="timestamps"):
        derive_idempotency_key("send-email", "u1", stamp)


def test_identifiers_required():
    with pytest.raises(ValueError):
        derive_idempotency_key("send-email")

    with pytest.raises(ValueError):
        derive_idempotency_key("send-email", "")

    with pytest.raises(ValueError):
        derive_idempotency_key("", "evt_1")
