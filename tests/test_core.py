"""
PowerLink — Core Utilities Test Suite
Covers powerlink/core/: security, exceptions, pagination, and the rate limiter
and connection manager they lean on.
"""

from __future__ import annotations

import secrets
import string
import threading

import pytest

from powerlink.cache.rate_limit import FixedWindowRateLimiter, InMemoryRedis
from powerlink.core.exceptions import (
    DatabaseUnavailableError,
    EmailInUseError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    PowerLinkError,
    RateLimitedError,
    ValidationError,
)
from powerlink.core.pagination import MAX_PAGE_SIZE, ListParams
from powerlink.core.security import (
    CurrentUser,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from powerlink.database import ConnectionState, DatabaseManager
from powerlink.services.rbac import CAPABILITIES, rbac

# ═══════════════════════════════════════════════════════════════════════════════
# security.py: passwords
# ═══════════════════════════════════════════════════════════════════════════════


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("Secr3t!")
        assert hashed != "Secr3t!"
        assert verify_password("Secr3t!", hashed)

    def test_wrong_password_returns_false(self):
        assert not verify_password("wrong", hash_password("Secr3t!"))

    def test_same_input_different_salt(self):
        assert hash_password("Secr3t!") != hash_password("Secr3t!")

    def test_random_passwords_round_trip(self):
        alphabet = string.ascii_letters + string.digits + string.punctuation + " éü"
        for _ in range(100):
            raw = "".join(secrets.choice(alphabet) for _ in range(secrets.randbelow(40) + 1))
            hashed = hash_password(raw)
            assert verify_password(raw, hashed)
            assert not verify_password(raw + "x", hashed)

    def test_long_password_not_truncated(self):
        long_pw = "a" * 200
        hashed = hash_password(long_pw)
        assert verify_password(long_pw, hashed)
        assert not verify_password("a" * 199, hashed)

    def test_corrupt_hash_returns_false(self):
        assert verify_password("Secr3t!", "not-a-hash") is False

    def test_empty_inputs_return_false(self):
        assert verify_password("", hash_password("Secr3t!")) is False
        assert verify_password("Secr3t!", "") is False


# ═══════════════════════════════════════════════════════════════════════════════
# security.py: tokens
# ═══════════════════════════════════════════════════════════════════════════════


class TestTokens:
    def test_access_token_claims(self):
        token = create_access_token(
            "user-1", "manager", 3, permissions={"can_write": True}, account_status="approved"
        )
        payload = decode_access_token(token)
        assert payload["sub"] == "user-1"
        assert payload["role"] == "manager"
        assert payload["tv"] == 3
        assert payload["perms"] == {"can_write": True}
        assert payload["status"] == "approved"
        assert payload["typ"] == "access"

    def test_refresh_token_claims(self):
        payload = decode_refresh_token(create_refresh_token("user-1", 7))
        assert payload["sub"] == "user-1"
        assert payload["tv"] == 7
        assert "role" not in payload

    def test_tokens_are_unique(self):
        assert create_refresh_token("user-1", 0) != create_refresh_token("user-1", 0)

    def test_expired_access_token_rejected(self):
        token = create_access_token("user-1", "viewer", 0, expires_minutes=-1)
        with pytest.raises(InvalidTokenError):
            decode_access_token(token)

    def test_expired_refresh_token_rejected(self):
        token = create_refresh_token("user-1", 0, expires_days=-1)
        with pytest.raises(InvalidTokenError):
            decode_refresh_token(token)

    def test_refresh_token_is_not_an_access_token(self):
        with pytest.raises(InvalidTokenError):
            decode_access_token(create_refresh_token("user-1", 0))

    def test_access_token_is_not_a_refresh_token(self):
        with pytest.raises(InvalidTokenError):
            decode_refresh_token(create_access_token("user-1", "viewer", 0))

    def test_tampered_token_rejected(self):
        token = create_access_token("user-1", "viewer", 0)
        head, body, sig = token.split(".")
        tampered = ".".join([head, body, sig[:-2] + ("AA" if sig[-2:] != "AA" else "BB")])
        with pytest.raises(InvalidTokenError):
            decode_access_token(tampered)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidTokenError):
            decode_access_token("not.a.token")

    def test_current_user_from_claims(self):
        payload = decode_access_token(
            create_access_token("user-9", "admin", 2, permissions={"can_read": True})
        )
        user = CurrentUser.from_claims(payload)
        assert user.user_id == "user-9"
        assert user.is_admin
        assert user.token_version == 2
        assert user.permissions == {"can_read": True}


# ═══════════════════════════════════════════════════════════════════════════════
# exceptions.py
# ═══════════════════════════════════════════════════════════════════════════════


class TestExceptions:
    def test_envelope_shape(self):
        exc = NotFoundError("Worker not found", details={"id": "w1"})
        assert exc.http_status_code == 404
        assert exc.to_dict() == {
            "error": {"message": "Worker not found", "code": "NOT_FOUND", "details": {"id": "w1"}}
        }

    def test_details_omitted_when_empty(self):
        assert "details" not in ValidationError("bad").to_dict()["error"]

    def test_all_are_powerlink_errors(self):
        for exc in (
            EmailInUseError("a@b.c"),
            InvalidCredentialsError(),
            InvalidTokenError(),
            PermissionDeniedError("write", "nope"),
            RateLimitedError(10),
            DatabaseUnavailableError(),
        ):
            assert isinstance(exc, PowerLinkError)
            assert 400 <= exc.http_status_code < 600

    def test_permission_denied_names_capability(self):
        exc = PermissionDeniedError("export", "no export")
        assert exc.http_status_code == 403
        assert exc.to_dict()["error"]["details"] == {"capability": "export"}

    def test_email_in_use_is_conflict(self):
        exc = EmailInUseError("a@b.c")
        assert exc.http_status_code == 409
        assert exc.error_code == "EMAIL_IN_USE"

    def test_invalid_credentials_message_is_generic(self):
        assert InvalidCredentialsError().message == "Invalid credentials"


# ═══════════════════════════════════════════════════════════════════════════════
# pagination.py
# ═══════════════════════════════════════════════════════════════════════════════


class TestListParams:
    def test_defaults(self):
        params = ListParams()
        assert params.page == 1
        assert params.page_size == 10
        assert params.offset == 0
        assert params.sort_dir == "desc"

    def test_page_size_clamped(self):
        assert ListParams(page_size=1000).page_size == MAX_PAGE_SIZE
        assert ListParams(page_size=0).page_size == 1

    def test_page_floor(self):
        assert ListParams(page=-3).page == 1

    def test_offset(self):
        assert ListParams(page=3, page_size=20).offset == 40

    def test_blank_query_dropped(self):
        assert ListParams(q="   ").q is None
        assert ListParams(q=" ram ").q == "ram"

    def test_unknown_sort_dir_means_descending(self):
        assert ListParams(sort_dir="sideways").sort_dir == "desc"
        assert ListParams(sort_dir="asc").sort_dir == "asc"


# ═══════════════════════════════════════════════════════════════════════════════
# cache/rate_limit.py
# ═══════════════════════════════════════════════════════════════════════════════


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = FixedWindowRateLimiter(3, 60, redis_client=InMemoryRedis())
        assert [limiter.hit("1.2.3.4") for _ in range(3)] == [1, 2, 3]

    def test_rejects_over_limit(self):
        limiter = FixedWindowRateLimiter(2, 60, redis_client=InMemoryRedis())
        limiter.hit("ip")
        limiter.hit("ip")
        with pytest.raises(RateLimitedError) as info:
            limiter.hit("ip")
        assert 0 < info.value.retry_after <= 60

    def test_keys_are_independent(self):
        limiter = FixedWindowRateLimiter(1, 60, redis_client=InMemoryRedis())
        limiter.hit("a")
        assert limiter.hit("b") == 1

    def test_reset(self):
        limiter = FixedWindowRateLimiter(1, 60, redis_client=InMemoryRedis())
        limiter.hit("ip")
        limiter.reset("ip")
        assert limiter.hit("ip") == 1

    def test_window_expiry(self):
        store = InMemoryRedis()
        limiter = FixedWindowRateLimiter(1, 60, redis_client=store)
        limiter.hit("ip")
        store.expire("ratelimit:auth:ip", 0)
        assert limiter.hit("ip") == 1

    def test_window_is_set_when_key_is_created(self):
        class NoExpire(InMemoryRedis):
            def expire(self, key, seconds):
                raise AssertionError("TTL must come with key creation")

        store = NoExpire()
        limiter = FixedWindowRateLimiter(5, 60, redis_client=store)
        limiter.hit("ip")
        limiter.hit("ip")
        assert 0 < store.ttl("ratelimit:auth:ip") <= 60
        assert store.get("ratelimit:auth:ip") == "2"

    def test_set_nx_keeps_existing_value(self):
        store = InMemoryRedis()
        assert store.set("k", 0, ex=60, nx=True) is True
        store.incr("k")
        assert store.set("k", 0, ex=60, nx=True) is False
        assert store.get("k") == "1"

    def test_in_memory_store_is_thread_safe(self):
        store = InMemoryRedis()

        def bump():
            for _ in range(200):
                store.incr("k")

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get("k") == "1600"


# ═══════════════════════════════════════════════════════════════════════════════
# database.py: connection manager
# ═══════════════════════════════════════════════════════════════════════════════


class TestDatabaseManager:
    def test_starts_disconnected(self):
        manager = DatabaseManager("sqlite:///:memory:")
        assert manager.state is ConnectionState.DISCONNECTED

    def test_connects_once(self):
        manager = DatabaseManager("sqlite:///:memory:")
        first = manager.ensure_connected()
        assert manager.state is ConnectionState.CONNECTED
        assert manager.ensure_connected() is first
        manager.dispose()
        assert manager.state is ConnectionState.DISCONNECTED

    def test_concurrent_cold_start_builds_one_factory(self):
        manager = DatabaseManager("sqlite:///:memory:")
        factories = []

        def connect():
            factories.append(manager.ensure_connected())

        threads = [threading.Thread(target=connect) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(f) for f in factories}) == 1
        manager.dispose()

    def test_engine_missing_after_connect_raises(self, monkeypatch):
        manager = DatabaseManager("sqlite:///:memory:")
        # simulates a dispose() racing between connect and read
        monkeypatch.setattr(manager, "ensure_connected", lambda: None)
        with pytest.raises(DatabaseUnavailableError):
            manager.engine

    def test_unreachable_store_raises_and_resets(self, tmp_path):
        missing = tmp_path / "no-such-dir" / "db.sqlite"
        manager = DatabaseManager(f"sqlite:///{missing}", connect_timeout=1)
        with pytest.raises(DatabaseUnavailableError):
            manager.ensure_connected()
        assert manager.state is ConnectionState.DISCONNECTED


# ═══════════════════════════════════════════════════════════════════════════════
# services/rbac.py
# ═══════════════════════════════════════════════════════════════════════════════


def _user(role="viewer", status="approved", **perms):
    return CurrentUser(
        user_id="u1",
        role=role,
        token_version=0,
        permissions=perms,
        account_status=status,
        raw_claims={},
    )


class TestRBACService:
    def test_admin_passes_everything(self):
        admin = _user(role="admin", status="pending")
        assert all(rbac.has_permission(admin, cap) for cap in CAPABILITIES)

    def test_flag_grants_capability(self):
        assert rbac.has_permission(_user(can_write=True), "write")
        assert not rbac.has_permission(_user(can_write=True), "delete")

    def test_unapproved_account_denied_despite_flag(self):
        assert not rbac.has_permission(_user(status="pending", can_write=True), "write")

    def test_denial_names_capability(self):
        with pytest.raises(PermissionDeniedError) as info:
            rbac.check(_user(), "export")
        assert "export" in info.value.message

    def test_unknown_capability(self):
        with pytest.raises(ValueError):
            rbac.check(_user(), "launch")
