"""
Webhook verification tests: signature round trip, byte flips, replay window,
missing headers and timestamp parsing.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.webhooks.verification import (
    SIGNATURE_PREFIX,
    VerificationResult,
    is_timestamp_fresh,
    parse_timestamp,
    sign_message,
    verify_message,
    verify_signature,
)

SECRET = "s3cr3t-value"
NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
BODY = b'{"subscription":{"id":"sub-1"},"event":{"id":"red-1"}}'


def _ts(offset: timedelta) -> str:
    return (NOW + offset).strftime("%Y-%m-%dT%H:%M:%S.%f") + "000Z"


class TestSignature:
    @pytest.mark.parametrize(
        "message_id,body",
        [
            ("msg-1", BODY),
            ("e76c6bd4-55c9-4987-8304-da1588d8988b", b""),
            ("msg-unicode", "{\"user_name\": \"Zoë\"}".encode()),
        ],
    )
    def test_round_trip(self, message_id, body):
        ts = _ts(timedelta())
        signature = sign_message(message_id, ts, body, SECRET)
        assert signature.startswith(SIGNATURE_PREFIX)
        assert verify_signature(message_id, ts, body, signature, SECRET)

    def test_str_and_bytes_body_sign_identically(self):
        ts = _ts(timedelta())
        assert sign_message("m", ts, BODY, SECRET) == sign_message("m", ts, BODY.decode(), SECRET)

    def test_every_single_char_flip_fails(self):
        ts = _ts(timedelta())
        signature = sign_message("msg-1", ts, BODY, SECRET)
        for i in range(len(signature)):
            flipped = chr(ord(signature[i]) ^ 0x01)
            tampered = signature[:i] + flipped + signature[i + 1:]
            assert not verify_signature("msg-1", ts, BODY, tampered, SECRET), i

    def test_body_tamper_fails(self):
        ts = _ts(timedelta())
        signature = sign_message("msg-1", ts, BODY, SECRET)
        assert not verify_signature("msg-1", ts, BODY + b" ", signature, SECRET)

    def test_wrong_secret_fails(self):
        ts = _ts(timedelta())
        signature = sign_message("msg-1", ts, BODY, SECRET)
        assert not verify_signature("msg-1", ts, BODY, signature, "other")

    def test_empty_secret_fails_closed(self):
        ts = _ts(timedelta())
        signature = sign_message("msg-1", ts, BODY, "")
        assert not verify_signature("msg-1", ts, BODY, signature, "")


class TestTimestampWindow:
    @pytest.mark.parametrize(
        "offset",
        [
            timedelta(minutes=-9, seconds=-59),
            timedelta(minutes=9, seconds=59),
            timedelta(minutes=-10),
            timedelta(minutes=10),
            timedelta(),
        ],
    )
    def test_within_window_passes(self, offset):
        assert is_timestamp_fresh(_ts(offset), 600, now=NOW)

    @pytest.mark.parametrize(
        "offset",
        [timedelta(minutes=-10, seconds=-1), timedelta(minutes=10, seconds=1), timedelta(hours=-2)],
    )
    def test_outside_window_fails(self, offset):
        assert not is_timestamp_fresh(_ts(offset), 600, now=NOW)

    def test_unparseable_timestamp_is_stale(self):
        assert not is_timestamp_fresh("yesterday", 600, now=NOW)


class TestParseTimestamp:
    def test_nanosecond_precision_truncated(self):
        parsed = parse_timestamp("2024-05-01T12:00:00.123456789Z")
        assert parsed == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_no_fraction(self):
        assert parse_timestamp("2024-05-01T12:00:00Z") == NOW

    def test_offset(self):
        parsed = parse_timestamp("2024-05-01T14:00:00.5+02:00")
        assert parsed == NOW + timedelta(milliseconds=500)

    @pytest.mark.parametrize("value", ["", "2024-05-01", "2024-05-01 12:00:00Z", "not a time"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


class TestVerifyMessage:
    def _verify(self, **overrides):
        ts = _ts(timedelta())
        args = {
            "message_id": "msg-1",
            "timestamp": ts,
            "message_type": "notification",
            "body": BODY,
            "signature": sign_message("msg-1", ts, BODY, SECRET),
            "secret": SECRET,
        }
        args.update(overrides)
        return verify_message(**args, now=NOW)

    def test_ok(self):
        result = self._verify()
        assert result is VerificationResult.OK
        assert result.ok

    @pytest.mark.parametrize("missing", ["message_id", "timestamp", "message_type", "signature"])
    def test_missing_header(self, missing):
        assert self._verify(**{missing: None}) is VerificationResult.MISSING_HEADERS

    def test_bad_signature(self):
        assert self._verify(signature="sha256=deadbeef") is VerificationResult.BAD_SIGNATURE

    def test_stale_timestamp_with_valid_signature(self):
        ts = _ts(timedelta(minutes=-11))
        signature = sign_message("msg-1", ts, BODY, SECRET)
        result = self._verify(timestamp=ts, signature=signature)
        assert result is VerificationResult.STALE_TIMESTAMP
        assert not result.ok
