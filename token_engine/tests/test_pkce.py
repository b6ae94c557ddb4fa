"""Tests for PKCE and authorize URL building."""
import re

from token_engine.pkce import build_authorize_url, generate_nonce, generate_pkce, generate_state


def test_generate_state_length():
    s = generate_state()
    assert len(s) >= 32
    assert re.match(r"^[A-Za-z0-9_-]+$", s)


def test_generate_nonce_is_random():
    assert generate_nonce() != generate_nonce()


def test_generate_pkce_returns_verifier_and_challenge():
    verifier, challenge = generate_pkce()
    assert 43 <= len(verifier) <= 128
    assert re.match(r"^[A-Za-z0-9_-]+$", challenge)
    assert len(challenge) == 43  # base64url(SHA256 digest) no padding


def test_build_authorize_url_includes_required_params():
    url = build_authorize_url(
        issuer="https://id.example",
        client_id="client1",
        redirect_uri="http://127.0.0.1:8765/callback",
        scope="openid offline_access email",
        audience="api/audience",
        state="mystate",
        code_challenge="challenge123",
        nonce="mynonce",
    )
    assert url.startswith("https://id.example/authorize?")
    assert "response_type=code" in url
    assert "client_id=client1" in url
    assert "audience=api%2Faudience" in url
    assert "state=mystate" in url
    assert "code_challenge=challenge123" in url
    assert "code_challenge_method=S256" in url
    assert "nonce=mynonce" in url
    assert "prompt=" not in url


def test_build_authorize_url_force_login():
    url = build_authorize_url(
        issuer="https://id.example",
        client_id="c",
        redirect_uri="http://127.0.0.1/cb",
        scope="openid",
        audience="a",
        state="s",
        code_challenge="ch",
        force_login=True,
    )
    assert "prompt=login" in url
    assert "nonce=" not in url
