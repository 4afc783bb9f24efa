"""
Zoho mail relay adapter tests.

All provider traffic goes through httpx.MockTransport.

Coverage:
  - TokenCache refresh margin and minimum lifetime
  - token refresh: happy path, HTML page, OAuth error, missing token
  - account discovery across response shapes
  - forward: payload shape, token reuse, 404 -> RelayNotFoundError,
    401 -> cache invalidated, other failures -> RelayTransportError
"""

import json
import os
import pytest
import httpx
from datetime import datetime, timezone
from unittest.mock import patch
from urllib.parse import parse_qs

from app.models.mail import MessageEnvelope, MessageMetadata
from app.services.errors import RelayNotFoundError, RelayTransportError, UnconfiguredError
from app.services.mail_relay import (
    MIN_TOKEN_LIFETIME_SECONDS,
    TokenCache,
    ZohoMailRelay,
    _first_account,
)

API = "https://mail.zoho.test"
ACCOUNTS = "https://accounts.zoho.test"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _make_envelope(subject: str = "hello") -> MessageEnvelope:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return MessageEnvelope(
        id="1772323200000-deadbeef",
        sender="someone@example.com",
        recipient="alpha@nftmail.box",
        subject=subject,
        content="body text",
        timestamp=now,
        received_at=now,
        **MessageMetadata.relay("alpha").model_dump(),
    )


class ZohoStub:
    """Records calls and serves canned provider responses."""

    def __init__(
        self,
        send_status: int = 200,
        accounts_body=None,
        token_response: httpx.Response | None = None,
    ):
        self.send_status = send_status
        self.accounts_body = accounts_body or {
            "data": [{"accountId": "123", "primaryEmailAddress": "relay@nftmail.box"}]
        }
        self.token_response = token_response
        self.token_calls = 0
        self.account_calls = 0
        self.sent: list[dict] = []
        self.auth_headers: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/oauth/v2/token":
            self.token_calls += 1
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            if self.token_response is not None:
                return self.token_response
            return httpx.Response(
                200, json={"access_token": f"tok-{self.token_calls}", "expires_in": 3600}
            )
        if path == "/api/accounts":
            self.account_calls += 1
            return httpx.Response(200, json=self.accounts_body)
        if path.startswith("/api/accounts/") and path.endswith("/messages"):
            self.auth_headers.append(request.headers["Authorization"])
            self.sent.append(json.loads(request.content))
            return httpx.Response(self.send_status, json={"status": {"code": self.send_status}})
        return httpx.Response(500)


def _make_relay(stub: ZohoStub, **kwargs) -> ZohoMailRelay:
    return ZohoMailRelay(
        client_id="cid",
        client_secret="secret",
        refresh_token="refresh",
        api_domain=API,
        accounts_domain=ACCOUNTS,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
        mail_domain="nftmail.box",
        **kwargs,
    )


class TestTokenCache:
    def test_empty_cache(self):
        assert TokenCache().get() is None

    def test_token_valid_until_refresh_margin(self):
        clock = FakeClock()
        cache = TokenCache(clock=clock)
        cache.store("tok", 3600)

        clock.now += 3600 - 61
        assert cache.get() == "tok"
        clock.now += 1
        assert cache.get() is None

    def test_short_lifetime_raised_to_minimum(self):
        clock = FakeClock()
        cache = TokenCache(clock=clock)
        cache.store("tok", 10)
        assert cache.expires_at == clock.now + MIN_TOKEN_LIFETIME_SECONDS

    def test_invalidate(self):
        cache = TokenCache()
        cache.store("tok", 3600)
        cache.invalidate()
        assert cache.get() is None


class TestFirstAccount:
    @pytest.mark.parametrize(
        "body",
        [
            [{"accountId": "1"}],
            {"data": [{"accountId": "1"}]},
            {"data": {"accounts": [{"accountId": "1"}]}},
            {"accounts": [{"accountid": "1"}]},
            {"data": [{"id": 1}]},
        ],
    )
    def test_shapes(self, body):
        assert _first_account(body) is not None

    def test_no_account(self):
        assert _first_account({"data": []}) is None


class TestConfiguration:
    def test_missing_credentials_unconfigured(self):
        with pytest.raises(UnconfiguredError):
            ZohoMailRelay(client_id="", client_secret="s", refresh_token="r")

    def test_from_env_without_credentials_returns_none(self):
        with patch.dict(os.environ, {}, clear=True):
            assert ZohoMailRelay.from_env() is None

    def test_from_env_reads_domains(self):
        env = {
            "ZOHO_CLIENT_ID": "cid",
            "ZOHO_CLIENT_SECRET": "secret",
            "ZOHO_REFRESH_TOKEN": "refresh",
            "ZOHO_API_DOMAIN": "https://mail.zoho.eu/",
            "ZOHO_ACCOUNT_ID": "999",
        }
        with patch.dict(os.environ, env, clear=True):
            relay = ZohoMailRelay.from_env()
        assert relay.api_domain == "https://mail.zoho.eu"
        assert relay._account_id == "999"


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_html_response_rejected(self):
        stub = ZohoStub(
            token_response=httpx.Response(
                200, text="<html>wrong datacenter</html>", headers={"content-type": "text/html"}
            )
        )
        with pytest.raises(RelayTransportError):
            await _make_relay(stub).refresh_access_token()

    @pytest.mark.asyncio
    async def test_oauth_error_rejected(self):
        stub = ZohoStub(token_response=httpx.Response(200, json={"error": "invalid_code"}))
        with pytest.raises(RelayTransportError):
            await _make_relay(stub).refresh_access_token()

    @pytest.mark.asyncio
    async def test_missing_access_token_rejected(self):
        stub = ZohoStub(token_response=httpx.Response(200, json={"expires_in": 3600}))
        with pytest.raises(RelayTransportError):
            await _make_relay(stub).refresh_access_token()


class TestForward:
    @pytest.mark.asyncio
    async def test_forward_payload(self):
        stub = ZohoStub()
        relay = _make_relay(stub)

        to_address = await relay.forward("alpha", _make_envelope())

        assert to_address == "alpha@nftmail.box"
        [sent] = stub.sent
        assert sent["fromAddress"] == "relay@nftmail.box"
        assert sent["toAddress"] == "alpha@nftmail.box"
        assert sent["subject"] == "[FWD] hello"
        assert sent["content"] == "From: someone@example.com\nTo: alpha@nftmail.box\n\nbody text"
        assert stub.auth_headers == ["Zoho-oauthtoken tok-1"]

    @pytest.mark.asyncio
    async def test_subject_override_and_full_address(self):
        stub = ZohoStub()
        relay = _make_relay(stub)

        await relay.forward("quarantine@nftmail.box", _make_envelope(), subject="[QUARANTINE] hello")

        assert stub.sent[0]["toAddress"] == "quarantine@nftmail.box"
        assert stub.sent[0]["subject"] == "[FWD] [QUARANTINE] hello"

    @pytest.mark.asyncio
    async def test_token_and_account_reused(self):
        stub = ZohoStub()
        relay = _make_relay(stub)

        await relay.forward("alpha", _make_envelope())
        await relay.forward("beta", _make_envelope())

        assert stub.token_calls == 1
        assert stub.account_calls == 1

    @pytest.mark.asyncio
    async def test_missing_mailbox_is_not_found(self):
        relay = _make_relay(ZohoStub(send_status=404))
        with pytest.raises(RelayNotFoundError):
            await relay.forward("ghost", _make_envelope())

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self):
        stub = ZohoStub(send_status=401)
        relay = _make_relay(stub)

        with pytest.raises(RelayTransportError):
            await relay.forward("alpha", _make_envelope())
        assert relay.token_cache.get() is None

    @pytest.mark.asyncio
    async def test_server_error(self):
        relay = _make_relay(ZohoStub(send_status=500))
        with pytest.raises(RelayTransportError):
            await relay.forward("alpha", _make_envelope())

    @pytest.mark.asyncio
    async def test_undiscoverable_account(self):
        relay = _make_relay(ZohoStub(accounts_body={"data": []}))
        with pytest.raises(RelayTransportError):
            await relay.forward("alpha", _make_envelope())

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        relay = ZohoMailRelay(
            client_id="cid",
            client_secret="secret",
            refresh_token="refresh",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(RelayTransportError):
            await relay.forward("alpha", _make_envelope())
