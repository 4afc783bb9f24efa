"""
Mail relay adapter for the hosted provider (Zoho Mail).

Used for premium-tier delivery, human mailboxes, and quarantine. Three calls:

  1. POST {accounts}/oauth/v2/token   refresh-token grant -> access token + expiry
  2. GET  {api}/api/accounts          account discovery   -> accountId + primary address
  3. POST {api}/api/accounts/{id}/messages   send

Token and account id are cached on the adapter instance. The token cache is
a separate object injected through the constructor so its lifetime is the
adapter's, not the process's.

Environment variables
---------------------
ZOHO_CLIENT_ID / ZOHO_CLIENT_SECRET / ZOHO_REFRESH_TOKEN   OAuth client (required)
ZOHO_API_DOMAIN        Mail API base   (default https://mail.zoho.com.au)
ZOHO_ACCOUNTS_DOMAIN   OAuth base      (default https://accounts.zoho.com.au)
ZOHO_ACCOUNT_ID        Pre-seeds the account id and skips discovery
"""

import logging
import os
import time
from typing import Callable, Optional

import httpx

from app.models.mail import MessageEnvelope
from app.services.errors import RelayNotFoundError, RelayTransportError, UnconfiguredError
from app.services.identity import get_mail_domain

logger = logging.getLogger(__name__)

DEFAULT_API_DOMAIN = "https://mail.zoho.com.au"
DEFAULT_ACCOUNTS_DOMAIN = "https://accounts.zoho.com.au"

# Refresh when the cached token is this close to expiry
TOKEN_REFRESH_MARGIN_SECONDS = 60
# Provider-reported lifetimes below this are treated as this
MIN_TOKEN_LIFETIME_SECONDS = 300

REQUEST_TIMEOUT_SECONDS = 10.0


class TokenCache:
    """Access token with an absolute expiry (epoch seconds)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.token: Optional[str] = None
        self.expires_at: float = 0.0

    def get(self) -> Optional[str]:
        """The cached token, or None when absent or inside the refresh margin."""
        if not self.token:
            return None
        if self.expires_at - self._clock() <= TOKEN_REFRESH_MARGIN_SECONDS:
            return None
        return self.token

    def store(self, token: str, expires_in: float) -> None:
        self.token = token
        self.expires_at = self._clock() + max(MIN_TOKEN_LIFETIME_SECONDS, expires_in)

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = 0.0


def _first_account(body) -> Optional[dict]:
    """
    Pick the sending account out of an /api/accounts response.

    Zoho has returned the list at the top level, under ``data``, and under
    ``data.accounts``/``accounts`` depending on the datacenter.
    """
    candidates: list = []
    if isinstance(body, list):
        candidates.extend(body)
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            candidates.extend(data)
        if isinstance(data, dict) and isinstance(data.get("accounts"), list):
            candidates.extend(data["accounts"])
        if isinstance(body.get("accounts"), list):
            candidates.extend(body["accounts"])

    for id_field in ("accountId", "accountid", "id"):
        for candidate in candidates:
            if isinstance(candidate, dict) and isinstance(candidate.get(id_field), (str, int)):
                return candidate
    return None


class ZohoMailRelay:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        api_domain: str = DEFAULT_API_DOMAIN,
        accounts_domain: str = DEFAULT_ACCOUNTS_DOMAIN,
        account_id: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        mail_domain: Optional[str] = None,
    ):
        if not client_id or not client_secret or not refresh_token:
            raise UnconfiguredError(
                "ZOHO_CLIENT_ID, ZOHO_CLIENT_SECRET and ZOHO_REFRESH_TOKEN are required"
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.api_domain = api_domain.rstrip("/")
        self.accounts_domain = accounts_domain.rstrip("/")
        self.token_cache = token_cache or TokenCache()
        self.mail_domain = mail_domain or get_mail_domain()
        self._account_id: Optional[str] = account_id
        self._from_address: Optional[str] = None
        self._http_client = http_client

    @classmethod
    def from_env(cls) -> Optional["ZohoMailRelay"]:
        """Build from the environment, or None when the OAuth client is not configured."""
        client_id = os.getenv("ZOHO_CLIENT_ID")
        client_secret = os.getenv("ZOHO_CLIENT_SECRET")
        refresh_token = os.getenv("ZOHO_REFRESH_TOKEN")
        if not client_id or not client_secret or not refresh_token:
            return None
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            api_domain=os.getenv("ZOHO_API_DOMAIN") or DEFAULT_API_DOMAIN,
            accounts_domain=os.getenv("ZOHO_ACCOUNTS_DOMAIN") or DEFAULT_ACCOUNTS_DOMAIN,
            account_id=os.getenv("ZOHO_ACCOUNT_ID") or None,
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method, url, timeout=REQUEST_TIMEOUT_SECONDS, **kwargs
                )
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"Zoho request {method} {url} failed: {exc!r}")
            raise RelayTransportError(f"Zoho request failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token and cache it."""
        response = await self._request(
            "POST",
            f"{self.accounts_domain}/oauth/v2/token",
            data={
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
            headers={"Accept": "application/json"},
        )

        content_type = response.headers.get("content-type", "")
        text = response.text
        # Wrong-datacenter errors come back as HTML pages
        if "text/html" in content_type.lower() or text.lstrip().startswith("<"):
            raise RelayTransportError(
                f"Zoho OAuth returned HTML (status {response.status_code}): {text[:300]}"
            )
        try:
            body = response.json()
        except ValueError:
            raise RelayTransportError(
                f"Zoho OAuth non-JSON response (status {response.status_code}): {text[:300]}"
            )
        if not isinstance(body, dict):
            raise RelayTransportError(f"Zoho OAuth unexpected response: {text[:300]}")
        if body.get("error"):
            raise RelayTransportError(
                f"Zoho OAuth error: {response.status_code} {body['error']}"
            )

        token = str(body.get("access_token") or "").strip()
        if not token:
            raise RelayTransportError(f"Zoho OAuth error: missing access_token in {text[:300]}")

        self.token_cache.store(token, float(body.get("expires_in") or 3600))
        logger.info("Refreshed Zoho access token")
        return token

    async def get_access_token(self) -> str:
        """Cached token, refreshed proactively near expiry."""
        cached = self.token_cache.get()
        if cached:
            return cached
        return await self.refresh_access_token()

    async def _auth_headers(self) -> dict:
        token = await self.get_access_token()
        return {
            "Authorization": f"Zoho-oauthtoken {token}",
            "Accept": "application/json",
        }

    async def discover_account(self) -> tuple[str, Optional[str]]:
        """Return (account_id, primary from-address), discovering once per instance."""
        if self._account_id and self._from_address:
            return self._account_id, self._from_address

        response = await self._request(
            "GET", f"{self.api_domain}/api/accounts", headers=await self._auth_headers()
        )
        if response.status_code == 401:
            self.token_cache.invalidate()
        if response.status_code != 200:
            raise RelayTransportError(f"Zoho accounts error: {response.status_code}")

        try:
            account = _first_account(response.json())
        except ValueError:
            account = None
        if account is None and not self._account_id:
            raise RelayTransportError("Zoho accounts error: could not determine accountId")

        if account is not None:
            discovered_id = str(
                account.get("accountId") or account.get("accountid") or account.get("id")
            ).strip()
            self._account_id = self._account_id or discovered_id
            primary = str(
                account.get("primaryEmailAddress") or account.get("mailboxAddress") or ""
            ).strip()
            if primary:
                self._from_address = primary

        return self._account_id, self._from_address

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def _recipient_address(self, destination: str) -> str:
        # A bare local part is a mailbox in our own domain
        return destination if "@" in destination else f"{destination}@{self.mail_domain}"

    async def forward(
        self,
        destination: str,
        envelope: MessageEnvelope,
        subject: Optional[str] = None,
    ) -> str:
        """
        Relay ``envelope`` to ``destination`` (local part or full address).

        Returns the recipient address used. Raises RelayNotFoundError when the
        provider reports the mailbox missing, RelayTransportError otherwise.
        """
        account_id, from_address = await self.discover_account()
        if not from_address:
            raise RelayTransportError("Zoho accounts error: could not determine fromAddress")

        to_address = self._recipient_address(destination)
        body = {
            "fromAddress": from_address,
            "toAddress": to_address,
            "subject": f"[FWD] {subject if subject is not None else envelope.subject}",
            "content": f"From: {envelope.sender}\nTo: {envelope.recipient}\n\n{envelope.content}",
        }
        headers = await self._auth_headers()
        headers["Content-Type"] = "application/json"

        response = await self._request(
            "POST",
            f"{self.api_domain}/api/accounts/{account_id}/messages",
            json=body,
            headers=headers,
        )

        if response.status_code == 404:
            logger.warning(f"Zoho reports no mailbox for {to_address!r}")
            raise RelayNotFoundError(f"No mailbox for {to_address}")
        if response.status_code == 401:
            # Stale token: drop it so the next call refreshes
            self.token_cache.invalidate()
        if response.status_code >= 300:
            raise RelayTransportError(
                f"Zoho API error: {response.status_code}\n{response.text[:300]}"
            )

        logger.info(f"Relayed message {envelope.id} to {to_address!r}")
        return to_address
