"""Tests for token, cookie and session models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from axiomtrade.models import (
    AuthCookies,
    AuthSession,
    AuthTokens,
    Credentials,
    SessionMetadata,
    TurnkeySession,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _tokens(minutes_left: float | None = 60) -> AuthTokens:
    expires = None if minutes_left is None else NOW + timedelta(minutes=minutes_left)
    return AuthTokens(access_token="access-1", refresh_token="refresh-1", expires_at=expires)


# --- Credentials ---


def test_credentials_repr_hides_password():
    creds = Credentials(email="me@example.com", password="hunter2")
    assert "hunter2" not in repr(creds)
    assert "me@example.com" in repr(creds)


# --- AuthTokens ---


def test_fresh_token_is_neither_expired_nor_due():
    tokens = _tokens(60)
    assert not tokens.is_expired(NOW)
    assert not tokens.needs_refresh(NOW)


def test_token_inside_refresh_buffer_needs_refresh_only():
    tokens = _tokens(10)
    assert tokens.needs_refresh(NOW)
    assert not tokens.is_expired(NOW)


def test_token_inside_expiry_buffer_counts_as_expired():
    tokens = _tokens(4)
    assert tokens.is_expired(NOW)
    assert tokens.needs_refresh(NOW)


def test_expiry_buffer_boundary_is_inclusive():
    assert _tokens(5).is_expired(NOW)
    assert _tokens(15).needs_refresh(NOW)


def test_token_without_expiry_never_expires():
    tokens = _tokens(None)
    assert not tokens.is_expired(NOW + timedelta(days=365))
    assert not tokens.needs_refresh(NOW + timedelta(days=365))


def test_refreshed_extends_expiry_and_keeps_refresh_token():
    tokens = _tokens(2)
    new = tokens.refreshed("access-2", timedelta(hours=1), now=NOW)
    assert new.access_token == "access-2"
    assert new.refresh_token == "refresh-1"
    assert new.expires_at == NOW + timedelta(hours=1)


def test_refreshed_never_moves_expiry_backwards():
    tokens = _tokens(120)
    new = tokens.refreshed("access-2", timedelta(minutes=30), now=NOW)
    assert new.expires_at == tokens.expires_at


def test_refreshed_rotates_refresh_token_when_given():
    new = _tokens().refreshed("a2", timedelta(hours=1), refresh_token="r2", now=NOW)
    assert new.refresh_token == "r2"


def test_refreshed_keeps_missing_expiry():
    assert _tokens(None).refreshed("a2", timedelta(hours=1), now=NOW).expires_at is None


# --- AuthCookies ---


def test_parse_set_cookie_headers():
    cookies = AuthCookies.from_set_cookie_headers(
        [
            "auth-access-token=AAA; Path=/; HttpOnly; Secure",
            "auth-refresh-token=RRR; Path=/",
            "cf_clearance=xyz; Domain=.axiom.trade",
            "garbage-without-equals",
        ]
    )
    assert cookies.auth_access_token == "AAA"
    assert cookies.auth_refresh_token == "RRR"
    assert cookies.g_state is None
    assert cookies.additional_cookies == {"cf_clearance": "xyz"}


def test_parse_keeps_equals_inside_value():
    cookies = AuthCookies.from_set_cookie_headers(["auth-otp-login-token=a.b=c; Path=/"])
    assert cookies.additional_cookies["auth-otp-login-token"] == "a.b=c"


def test_header_value_order():
    cookies = AuthCookies(
        auth_access_token="A",
        auth_refresh_token="R",
        additional_cookies={"x": "1"},
    )
    assert cookies.header_value() == 'g_state={"i_l":0}; auth-refresh-token=R; auth-access-token=A; x=1'


def test_header_value_skips_absent_values():
    assert AuthCookies(g_state=None, auth_access_token="A").header_value() == "auth-access-token=A"


def test_merge_prefers_other_values():
    base = AuthCookies(auth_access_token="A1", auth_refresh_token="R1", additional_cookies={"x": "1", "y": "1"})
    other = AuthCookies(g_state=None, auth_access_token="A2", additional_cookies={"y": "2"})
    merged = base.merge_with(other)
    assert merged.auth_access_token == "A2"
    assert merged.auth_refresh_token == "R1"
    assert merged.g_state == '{"i_l":0}'
    assert merged.additional_cookies == {"x": "1", "y": "2"}
    assert base.auth_access_token == "A1"


def test_has_auth_tokens_needs_both():
    assert AuthCookies(auth_access_token="A", auth_refresh_token="R").has_auth_tokens()
    assert not AuthCookies(auth_access_token="A").has_auth_tokens()


# --- AuthSession ---


def _session(minutes_left: float = 60) -> AuthSession:
    tokens = _tokens(minutes_left)
    return AuthSession(tokens=tokens, cookies=AuthCookies.from_tokens(tokens))


def test_session_valid_requires_unexpired_tokens_and_cookies():
    assert _session(60).is_valid(NOW)
    assert not _session(3).is_valid(NOW)
    no_cookies = AuthSession(tokens=_tokens(60), cookies=AuthCookies())
    assert not no_cookies.is_valid(NOW)


def test_session_needs_refresh_when_turnkey_is_due():
    session = _session(60).with_turnkey_session(
        TurnkeySession(
            organization_id="org",
            user_id="user",
            username="u",
            client_secret="cs",
            expires_at=NOW + timedelta(minutes=30),
        )
    )
    assert session.turnkey_needs_refresh(NOW)
    assert session.needs_refresh(NOW)


def test_with_tokens_updates_cookies_and_metadata():
    session = _session()
    new_tokens = AuthTokens(access_token="access-2", refresh_token="refresh-2", expires_at=NOW)
    updated = session.with_tokens(new_tokens)
    assert updated.tokens == new_tokens
    assert updated.cookies.auth_access_token == "access-2"
    assert updated.cookies.auth_refresh_token == "refresh-2"
    assert updated.session_metadata.last_refreshed_at is not None
    assert session.tokens.access_token == "access-1"
    assert session.session_metadata.last_refreshed_at is None


def test_with_api_call_records_server():
    updated = _session().with_api_call("https://api6.axiom.trade")
    assert updated.session_metadata.current_api_server == "https://api6.axiom.trade"
    assert updated.session_metadata.last_api_call_at is not None


def test_cookie_header_includes_tokens():
    header = _session().cookie_header()
    assert "auth-access-token=access-1" in header
    assert "auth-refresh-token=refresh-1" in header


def test_session_round_trips_through_json():
    session = _session()
    restored = AuthSession.model_validate_json(session.model_dump_json())
    assert restored == session


# --- Metadata / Turnkey ---


def test_metadata_ages():
    meta = SessionMetadata(created_at=NOW - timedelta(minutes=42), last_api_call_at=NOW - timedelta(seconds=150))
    assert meta.session_age_minutes(NOW) == 42
    assert meta.minutes_since_last_api_call(NOW) == 2
    assert SessionMetadata().minutes_since_last_api_call() is None


def test_turnkey_session_refresh_buffer():
    session = TurnkeySession(
        organization_id="o", user_id="u", username="n", client_secret="s", expires_at=NOW + timedelta(hours=2)
    )
    assert not session.needs_refresh(NOW)
    assert session.needs_refresh(NOW + timedelta(minutes=61))
    assert "client_secret" not in repr(session)
