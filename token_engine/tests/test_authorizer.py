"""Tests for the loopback authorizer and the cancellable authorization session."""
import asyncio
import socket

import httpx
import pytest
from fastapi.testclient import TestClient

from token_engine.authorizer import AuthorizationSession, LoopbackAuthorizer, NavigationStatus


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_session_cancel_sets_event():
    async def run():
        async with AuthorizationSession() as session:
            assert not session.cancelled
            session.cancel()
            return session.cancelled

    assert asyncio.run(run()) is True


def test_session_timeout_cancels():
    async def run():
        async with AuthorizationSession(timeout=0.01) as session:
            await asyncio.wait_for(session.cancel_event.wait(), timeout=2)
            return session.cancelled

    assert asyncio.run(run()) is True


def test_callback_page_reports_error():
    authorizer = LoopbackAuthorizer(port=0)
    client = TestClient(authorizer.app)
    r = client.get("/callback", params={"error": "access_denied", "error_description": "User <denied>"})
    assert r.status_code == 400
    assert "User &lt;denied&gt;" in r.text


def test_callback_page_success():
    authorizer = LoopbackAuthorizer(port=0)
    client = TestClient(authorizer.app)
    r = client.get("/callback", params={"code": "c", "state": "s"})
    assert r.status_code == 200
    assert "complete" in r.text.lower()


def test_navigate_returns_redirect_url():
    port = _free_port()
    opened = []

    def fake_browser(url):
        # Plays the provider: send the user agent straight back to the loopback redirect
        opened.append(url)
        httpx.get(f"http://127.0.0.1:{port}/callback", params={"code": "abc", "state": "xyz"}, timeout=5)

    async def run():
        async with LoopbackAuthorizer(port, open_browser=fake_browser) as authorizer:
            return await authorizer.navigate("https://id.example/authorize?x=1", asyncio.Event())

    result = asyncio.run(run())
    assert opened == ["https://id.example/authorize?x=1"]
    assert result.status is NavigationStatus.COMPLETED
    assert "code=abc" in result.redirect_url
    assert "state=xyz" in result.redirect_url


def test_navigate_cancelled_by_event():
    port = _free_port()

    async def run():
        event = asyncio.Event()
        async with LoopbackAuthorizer(port, open_browser=lambda url: None) as authorizer:
            asyncio.get_running_loop().call_later(0.05, event.set)
            return await authorizer.navigate("https://id.example/authorize", event)

    result = asyncio.run(run())
    assert result.status is NavigationStatus.CANCELLED
    assert result.redirect_url is None


def test_browser_failure_does_not_abort_navigation():
    port = _free_port()

    def broken_browser(url):
        raise RuntimeError("no display")

    async def run():
        event = asyncio.Event()
        async with LoopbackAuthorizer(port, open_browser=broken_browser) as authorizer:
            asyncio.get_running_loop().call_later(0.05, event.set)
            return await authorizer.navigate("https://id.example/authorize", event)

    assert asyncio.run(run()).status is NavigationStatus.CANCELLED


def test_port_released_after_exit():
    port = _free_port()

    async def run():
        async with LoopbackAuthorizer(port, open_browser=lambda url: None):
            pass
        async with LoopbackAuthorizer(port, open_browser=lambda url: None):
            pass

    asyncio.run(run())


def test_navigate_requires_context():
    authorizer = LoopbackAuthorizer(port=0)
    with pytest.raises(RuntimeError):
        asyncio.run(authorizer.navigate("https://id.example/authorize", asyncio.Event()))
