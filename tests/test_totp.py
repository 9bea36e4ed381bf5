"""Unit tests for TOTP helpers (RFC 6238, 30 second steps)."""

import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, unquote, urlparse

import pyotp

from src.UAA import totp

FIXED = datetime(2024, 5, 1, 12, 0, 15, tzinfo=timezone.utc)


class TestSecretGeneration:
    def test_secret_has_at_least_160_bits(self):
        generated = totp.generate_secret("alice@neurocore.io", "NeuroCore AI")
        raw = base64.b32decode(generated.base32_secret)
        assert len(raw) * 8 >= 160

    def test_secrets_are_random(self):
        a = totp.generate_secret("a@x.com", "NeuroCore AI").base32_secret
        b = totp.generate_secret("a@x.com", "NeuroCore AI").base32_secret
        assert a != b

    def test_provisioning_uri_carries_issuer_account_and_secret(self):
        generated = totp.generate_secret("alice@neurocore.io", "NeuroCore AI")
        uri = urlparse(generated.provisioning_uri)
        params = parse_qs(uri.query)
        assert uri.scheme == "otpauth"
        assert uri.netloc == "totp"
        assert "alice@neurocore.io" in unquote(uri.path)
        assert params["secret"] == [generated.base32_secret]
        assert params["issuer"] == ["NeuroCore AI"]


class TestVerifyCode:
    def test_current_code_matches_reference(self):
        secret = pyotp.random_base32()
        expected = pyotp.TOTP(secret).at(int(FIXED.timestamp()))
        assert totp.current_code(secret, FIXED) == expected

    def test_accepts_current_step(self):
        secret = pyotp.random_base32()
        code = totp.current_code(secret, FIXED)
        assert totp.verify_code(secret, code, window_steps=0, when=FIXED)

    def test_accepts_drift_within_window(self):
        secret = pyotp.random_base32()
        for steps in (-2, -1, 1, 2):
            code = totp.current_code(secret, FIXED + timedelta(seconds=30 * steps))
            assert totp.verify_code(secret, code, window_steps=2, when=FIXED), steps

    def test_rejects_drift_outside_window(self):
        secret = pyotp.random_base32()
        code = totp.current_code(secret, FIXED + timedelta(seconds=30 * 3))
        assert not totp.verify_code(secret, code, window_steps=2, when=FIXED)

    def test_rejects_wrong_code(self):
        secret = pyotp.random_base32()
        wrong = f"{(int(totp.current_code(secret, FIXED)) + 1) % 10**6:06d}"
        assert not totp.verify_code(secret, wrong, window_steps=0, when=FIXED)

    def test_rejects_malformed_codes(self):
        secret = pyotp.random_base32()
        for bad in ("", "12345", "1234567", "abcdef", None):
            assert not totp.verify_code(secret, bad, window_steps=2, when=FIXED)

    def test_tolerates_spaces(self):
        secret = pyotp.random_base32()
        code = totp.current_code(secret, FIXED)
        assert totp.verify_code(secret, f"{code[:3]} {code[3:]}", window_steps=0, when=FIXED)


class TestBackupCodes:
    def test_generates_requested_count(self):
        assert len(totp.generate_backup_codes(8)) == 8

    def test_codes_are_distinct_hex(self):
        codes = totp.generate_backup_codes(20)
        assert len(set(codes)) == 20
        for code in codes:
            assert len(code) == 8
            int(code, 16)
