"""
Reputation oracle client.

Two read-only ``eth_call`` operations against a JSON-RPC endpoint:

  get_balance(address)      ERC20 balanceOf on the $SURGE token -> int (wei)
  get_identity_state(name)  Ghost registry lookup               -> IdentityState

Calls are single-shot with a bounded timeout. Any failure (network, timeout,
non-2xx, JSON-RPC error object, unparseable result) raises
OracleTransportError. Callers must never read a failure as "no balance" or
"unknown identity": quarantine and deny decisions need verified absence.
"""

import logging
import os
from typing import Optional

import httpx

from app.models.mail import IdentityState
from app.services.errors import OracleTransportError, UnconfiguredError
from app.services.identity import is_hex_address

logger = logging.getLogger(__name__)

# Function selectors
SIG_BALANCE_OF = "0x70a08231"
SIG_GET_IDENTITY = "0x4f5c3a99"

DEFAULT_RPC_URL = "https://rpc.gnosis.gateway.fm"
DEFAULT_TIMEOUT_SECONDS = 5.0

_STATE_BY_CODE = {
    0: IdentityState.NONE,
    1: IdentityState.AGENT,
    2: IdentityState.HUMAN,
}


def encode_balance_of(address: str) -> str:
    """Calldata for balanceOf(address): selector + address left-padded to 32 bytes."""
    return SIG_BALANCE_OF + address[2:].lower().rjust(64, "0")


def encode_identity_lookup(name: str) -> str:
    """Calldata for the registry lookup: selector + UTF-8 hex of the name, left-padded."""
    return SIG_GET_IDENTITY + name.encode("utf-8").hex().rjust(64, "0")


def decode_uint(result: str) -> int:
    """Decode an ``eth_call`` hex result. ``0x`` (empty return data) decodes as 0."""
    if not isinstance(result, str) or not result.startswith("0x"):
        raise ValueError(f"not a hex result: {result!r}")
    digits = result[2:]
    return int(digits, 16) if digits else 0


class ReputationOracleClient:
    """
    Reads $SURGE balances and identity states from the chain.

    ``http_client`` may be injected (tests pass one built on
    httpx.MockTransport); otherwise a short-lived AsyncClient is opened per
    call with ``timeout_seconds`` as the deadline.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        token_address: Optional[str] = None,
        registry_address: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.token_address = token_address
        self.registry_address = registry_address
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_env(cls) -> "ReputationOracleClient":
        return cls(
            rpc_url=os.getenv("CHAIN_RPC_URL") or DEFAULT_RPC_URL,
            token_address=os.getenv("SURGE_TOKEN_ADDRESS") or None,
            registry_address=os.getenv("GHOST_REGISTRY_ADDRESS") or None,
            timeout_seconds=float(os.getenv("ORACLE_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS),
        )

    async def _post(self, payload: dict) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(
                self.rpc_url, json=payload, timeout=self.timeout_seconds
            )
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self.rpc_url, json=payload)

    async def eth_call(self, to: str, data: str) -> str:
        """Run one ``eth_call`` at the latest block and return the raw hex result."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        }
        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            logger.error(f"Chain RPC request failed: {exc!r}")
            raise OracleTransportError(f"Chain RPC request failed: {exc}") from exc

        if response.status_code != 200:
            raise OracleTransportError(
                f"Chain RPC returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise OracleTransportError("Chain RPC returned non-JSON body") from exc

        if not isinstance(body, dict):
            raise OracleTransportError("Chain RPC returned an unexpected body")
        if body.get("error"):
            raise OracleTransportError(f"Chain RPC error: {body['error']}")

        result = body.get("result")
        if result is None:
            raise OracleTransportError("Chain RPC response has no result")
        return result

    async def get_balance(self, address: str) -> int:
        """Raw $SURGE balance (wei) of ``address``."""
        if not is_hex_address(address):
            raise ValueError(f"not an on-chain address: {address!r}")
        if not self.token_address:
            raise UnconfiguredError("SURGE_TOKEN_ADDRESS is not configured")

        result = await self.eth_call(self.token_address, encode_balance_of(address))
        try:
            return decode_uint(result)
        except ValueError as exc:
            raise OracleTransportError(f"Unparseable balance result: {result!r}") from exc

    async def get_identity_state(self, name: str) -> IdentityState:
        """Registry classification of ``name``; unknown codes map to NONE."""
        if not self.registry_address:
            raise UnconfiguredError("GHOST_REGISTRY_ADDRESS is not configured")

        result = await self.eth_call(self.registry_address, encode_identity_lookup(name))
        try:
            code = decode_uint(result)
        except ValueError as exc:
            raise OracleTransportError(f"Unparseable identity result: {result!r}") from exc

        state = _STATE_BY_CODE.get(code, IdentityState.NONE)
        logger.info(f"Identity state for {name!r}: {state.value}")
        return state
