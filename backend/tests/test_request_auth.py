"""
Test signed request authentication
"""
from datetime import datetime, timedelta, timezone

import pytest

from paysync.exceptions import AuthenticationError, KeysNotConfiguredError, ReplayError
from paysync.services.request_auth import RequestAuthenticator, parse_api_keys, parse_timestamp
from paysync.services.signature_service import build_canonical_payload, compute_signature

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
PATH = "/api/create-provisional-order"
BODY = b'{"paymentReference":"pay_1","productId":7,"quantity":1}'


def make_auth(raw_keys="shop:abc123:s3cr3t", **kwargs):
    return RequestAuthenticator(
        parse_api_keys(raw_keys),
        window=timedelta(seconds=300),
        clock=lambda: NOW,
        **kwargs
    )


def headers_for(timestamp, nonce="n-1", api_key="abc123", secret="s3cr3t", body=BODY, path=PATH):
    payload = build_canonical_payload("POST", path, timestamp, nonce, body)
    return {
        "x-api-key": api_key,
        "x-timestamp": timestamp,
        "x-nonce": nonce,
        "x-signature": compute_signature(secret, payload),
    }


class TestParseApiKeys:
    def test_label_key_secret(self):
        (record,) = parse_api_keys("shop:abc123:s3cr3t")
        assert (record.label, record.key, record.secret) == ("shop", "abc123", "s3cr3t")

    def test_key_signs_when_no_secret(self):
        (record,) = parse_api_keys("shop:abc123")
        assert record.secret == "abc123"

    def test_bare_key_gets_default_label(self):
        (record,) = parse_api_keys("abc123")
        assert record.label == "default"

    def test_multiple_entries(self):
        records = parse_api_keys("shop:k1, pos:k2:s2 ,")
        assert [r.label for r in records] == ["shop", "pos"]

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            parse_api_keys("shop:")


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2024-05-01T12:00:00") == NOW
    assert parse_timestamp("yesterday") is None


class TestRequestAuthenticator:
    def test_valid_request(self):
        record = make_auth().authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY)
        assert record.label == "shop"

    def test_no_keys_configured(self):
        with pytest.raises(KeysNotConfiguredError):
            make_auth("").authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY)

    def test_insecure_mode_bypasses(self):
        assert make_auth("", allow_insecure=True).authenticate("POST", PATH, {}, BODY) is None

    @pytest.mark.parametrize("missing", ["x-api-key", "x-timestamp", "x-nonce", "x-signature"])
    def test_missing_header(self, missing):
        headers = headers_for(NOW.isoformat())
        del headers[missing]
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers, BODY)
        assert exc.value.reason == "missing_credentials"

    def test_timestamp_at_window_edge_accepted(self):
        """A timestamp exactly one window old is still fresh"""
        ts = (NOW - timedelta(seconds=300)).isoformat()
        assert make_auth().authenticate("POST", PATH, headers_for(ts), BODY) is not None

    def test_timestamp_just_past_window_rejected(self):
        ts = (NOW - timedelta(seconds=300, microseconds=1)).isoformat()
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers_for(ts), BODY)
        assert exc.value.reason == "stale_or_future_timestamp"

    def test_future_timestamp_rejected(self):
        ts = (NOW + timedelta(seconds=301)).isoformat()
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers_for(ts), BODY)
        assert exc.value.reason == "stale_or_future_timestamp"

    def test_unparseable_timestamp(self):
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers_for("not-a-time"), BODY)
        assert exc.value.reason == "stale_or_future_timestamp"

    def test_unknown_key(self):
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers_for(NOW.isoformat(), api_key="nope"), BODY)
        assert exc.value.reason == "unknown_key"

    def test_signature_mismatch(self):
        headers = headers_for(NOW.isoformat(), secret="wrong")
        with pytest.raises(AuthenticationError) as exc:
            make_auth().authenticate("POST", PATH, headers, BODY)
        assert exc.value.reason == "signature_mismatch"

    def test_tampered_body(self):
        with pytest.raises(AuthenticationError):
            make_auth().authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY + b" ")

    def test_replay_rejected(self):
        auth = make_auth()
        headers = headers_for(NOW.isoformat())
        auth.authenticate("POST", PATH, headers, BODY)
        with pytest.raises(ReplayError):
            auth.authenticate("POST", PATH, headers, BODY)

    def test_replay_rejected_even_with_bad_signature(self):
        """Replay check runs before signature verification"""
        auth = make_auth()
        auth.authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY)
        forged = headers_for(NOW.isoformat(), secret="wrong")
        with pytest.raises(ReplayError):
            auth.authenticate("POST", PATH, forged, BODY)

    def test_failed_signature_does_not_burn_nonce(self):
        auth = make_auth()
        with pytest.raises(AuthenticationError):
            auth.authenticate("POST", PATH, headers_for(NOW.isoformat(), secret="wrong"), BODY)
        assert auth.authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY) is not None

    def test_same_nonce_different_keys(self):
        auth = make_auth("shop:abc123:s3cr3t,pos:def456:p0s")
        auth.authenticate("POST", PATH, headers_for(NOW.isoformat()), BODY)
        other = headers_for(NOW.isoformat(), api_key="def456", secret="p0s")
        assert auth.authenticate("POST", PATH, other, BODY).label == "pos"
