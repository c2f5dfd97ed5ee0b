"""Tests for Telegram WebApp init data verification."""

import hashlib
import hmac
import json
import random
import time
from urllib.parse import quote

import pytest

from tapboard.auth.init_data import (
    InitDataVerifier,
    build_data_check_string,
    compute_hash,
    derive_secret_key,
    parse_init_data,
    verify_init_data,
)
from tapboard.config import Settings
from tapboard.errors import AuthError, ConfigError
from tests.conftest import BOT_TOKEN, make_init_data, sign_fields


def _flip_hex(digest: str, index: int = 0) -> str:
    replacement = "0" if digest[index] != "0" else "1"
    return digest[:index] + replacement + digest[index + 1 :]


def _hash_of(init_data: str) -> str:
    return dict(part.split("=", 1) for part in init_data.split("&"))["hash"]


class TestValidTokens:
    def test_strict_accepts_fresh_signed_token(self):
        identity = verify_init_data(make_init_data(42), BOT_TOKEN)
        assert identity.numeric_id == 42
        assert identity.user.username == "tester"
        assert json.loads(identity.raw_claims["user"])["id"] == 42
        assert "hash" not in identity.raw_claims

    def test_age_exactly_at_limit_accepted(self):
        now = 1_700_000_000
        token = make_init_data(7, auth_date=now - 86_400)
        assert verify_init_data(token, BOT_TOKEN, now=now).numeric_id == 7

    def test_values_are_percent_decoded(self):
        user = {"id": 99, "first_name": "Ёжик Иванов", "last_name": "O'Neil & Co"}
        identity = verify_init_data(make_init_data(user=user), BOT_TOKEN)
        assert identity.numeric_id == 99
        assert identity.user.first_name == "Ёжик Иванов"
        assert identity.user.last_name == "O'Neil & Co"

    def test_signature_field_not_signed(self):
        token = make_init_data(42, signature="c2lnbmF0dXJl")
        identity = verify_init_data(token, BOT_TOKEN)
        assert identity.numeric_id == 42
        assert "signature" not in identity.raw_claims

    def test_unknown_user_keys_ignored(self):
        user = {"id": 5, "allows_write_to_pm": True, "photo_url": "https://t.me/i/u.svg"}
        assert verify_init_data(make_init_data(user=user), BOT_TOKEN).numeric_id == 5


class TestSignature:
    def test_one_hex_char_altered_rejected(self):
        token = make_init_data(42)
        digest = _hash_of(token)
        for index in (0, 31, 63):
            tampered = token.replace(f"hash={digest}", f"hash={_flip_hex(digest, index)}")
            with pytest.raises(AuthError) as exc_info:
                verify_init_data(tampered, BOT_TOKEN)
            assert exc_info.value.reason == AuthError.SIGNATURE_MISMATCH

    def test_wrong_bot_token_rejected(self):
        token = make_init_data(42, bot_token="999:other-bot")
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.SIGNATURE_MISMATCH

    def test_missing_hash_is_mismatch(self):
        token = "&".join(p for p in make_init_data(42).split("&") if not p.startswith("hash="))
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.SIGNATURE_MISMATCH

    def test_tampered_field_rejected(self):
        token = make_init_data(42).replace("query_id=AAH", "query_id=BBH")
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.SIGNATURE_MISMATCH

    def test_permissive_mode_accepts_bad_signature(self):
        token = make_init_data(42, hash_override="0" * 64)
        identity = verify_init_data(token, BOT_TOKEN, strict=False)
        assert identity.numeric_id == 42

    def test_permissive_mode_still_enforces_freshness(self):
        token = make_init_data(42, auth_date=int(time.time()) - 86_401, hash_override="0" * 64)
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN, strict=False)
        assert exc_info.value.reason == AuthError.STALE_TOKEN


class TestFreshness:
    def test_expired_by_one_second(self):
        now = 1_700_000_000
        token = make_init_data(42, auth_date=now - 86_401)
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN, now=now)
        assert exc_info.value.reason == AuthError.STALE_TOKEN

    def test_expired_checked_before_signature(self):
        now = 1_700_000_000
        token = make_init_data(42, auth_date=now - 86_401, hash_override="f" * 64)
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN, now=now)
        assert exc_info.value.reason == AuthError.STALE_TOKEN

    def test_future_auth_date_rejected(self):
        now = 1_700_000_000
        token = make_init_data(42, auth_date=now + 5)
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN, now=now)
        assert exc_info.value.reason == AuthError.STALE_TOKEN

    def test_missing_auth_date_is_stale(self):
        fields = [("user", json.dumps({"id": 42}))]
        token = f"user={quote(fields[0][1], safe='')}&hash={sign_fields(fields)}"
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.STALE_TOKEN

    def test_custom_max_age(self):
        now = 1_700_000_000
        token = make_init_data(42, auth_date=now - 301)
        with pytest.raises(AuthError):
            verify_init_data(token, BOT_TOKEN, now=now, max_age_seconds=300)


class TestIdentity:
    def test_missing_user(self):
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(make_init_data(None), BOT_TOKEN)
        assert exc_info.value.reason == AuthError.NO_IDENTITY

    def test_missing_user_reported_even_when_signature_bad(self):
        token = make_init_data(None, hash_override="0" * 64)
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.NO_IDENTITY

    @pytest.mark.parametrize(
        "user_json",
        ["not json", "[1, 2]", '{"first_name": "x"}', '{"id": "42"}', '{"id": 0}', '{"id": true}'],
    )
    def test_malformed_user(self, user_json):
        fields = [("auth_date", str(int(time.time()))), ("user", user_json)]
        token = "&".join(f"{k}={quote(v, safe='')}" for k, v in fields) + f"&hash={sign_fields(fields)}"
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.NO_IDENTITY


class TestMalformed:
    @pytest.mark.parametrize("token", ["", "   ", "novalue", "=abc&hash=00"])
    def test_unparsable(self, token):
        with pytest.raises(AuthError) as exc_info:
            verify_init_data(token, BOT_TOKEN)
        assert exc_info.value.reason == AuthError.MALFORMED_TOKEN

    def test_non_integer_auth_date(self):
        with pytest.raises(AuthError) as exc_info:
            verify_init_data("auth_date=yesterday&user=%7B%22id%22%3A1%7D&hash=00", BOT_TOKEN)
        assert exc_info.value.reason == AuthError.MALFORMED_TOKEN

    def test_invalid_utf8_value(self):
        with pytest.raises(AuthError) as exc_info:
            verify_init_data("auth_date=1&user=%FF%FE&hash=00", BOT_TOKEN)
        assert exc_info.value.reason == AuthError.MALFORMED_TOKEN


class TestCanonicalization:
    def test_field_order_does_not_change_hash(self):
        token = make_init_data(42, extra={"chat_type": "private", "chat_instance": "-123", "start_param": "x"})
        parts = token.split("&")
        rng = random.Random(1234)
        expected = compute_hash(build_data_check_string(parse_init_data(token).fields), BOT_TOKEN)
        for _ in range(10):
            rng.shuffle(parts)
            shuffled = "&".join(parts)
            parsed = parse_init_data(shuffled)
            assert compute_hash(build_data_check_string(parsed.fields), BOT_TOKEN) == expected
            assert verify_init_data(shuffled, BOT_TOKEN).numeric_id == 42

    def test_data_check_string_format(self):
        fields = [("user", '{"id":1}'), ("auth_date", "100"), ("query_id", "q")]
        assert build_data_check_string(fields) == 'auth_date=100\nquery_id=q\nuser={"id":1}'

    def test_hash_and_signature_excluded(self):
        parsed = parse_init_data("a=1&hash=abc&signature=sig&b=2")
        assert parsed.fields == [("a", "1"), ("b", "2")]
        assert parsed.claimed_hash == "abc"
        assert parsed.signature == "sig"

    def test_hash_value_not_decoded(self):
        parsed = parse_init_data("a=1&hash=ab%20cd")
        assert parsed.claimed_hash == "ab%20cd"

    def test_secret_key_uses_token_as_key(self):
        expected = hmac.new(BOT_TOKEN.encode(), b"WebAppData", hashlib.sha256).digest()
        assert derive_secret_key(BOT_TOKEN) == expected
        inverted = hmac.new(b"WebAppData", BOT_TOKEN.encode(), hashlib.sha256).digest()
        assert derive_secret_key(BOT_TOKEN) != inverted


class TestVerifierFromSettings:
    def test_binds_settings(self):
        settings = Settings(telegram_bot_token="1:abc", init_data_max_age_seconds=60, init_data_strict=False)
        verifier = InitDataVerifier.from_settings(settings)
        assert verifier.max_age_seconds == 60
        assert verifier.strict is False
        assert "1:abc" not in repr(verifier)

    def test_missing_token_is_config_error(self):
        with pytest.raises(ConfigError, match="TAPBOARD_TELEGRAM_BOT_TOKEN"):
            InitDataVerifier.from_settings(Settings(telegram_bot_token=""))

    def test_verify_uses_bound_token(self):
        verifier = InitDataVerifier(bot_token=BOT_TOKEN)
        assert verifier.verify(make_init_data(77)).numeric_id == 77
