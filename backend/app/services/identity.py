"""
Identity classifier.

Derives the canonical identity name and a syntactic kind hint from an address.

  alpha_@nftmail.box   -> canonical "alpha", agent hint
  alpha@nftmail.box    -> canonical "alpha", human hint

The hint is only a hint: anything that grants trust beyond the Ghost-Wire
fast path re-checks the identity on chain (see mail_router).
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

AGENT_SUFFIX = "_"
DEFAULT_MAIL_DOMAIN = "nftmail.box"

_LOCAL_PART_RE = re.compile(r"^[a-z0-9-]+_?$")
_HEX_ADDRESS_RE = re.compile(r"^0x[a-f0-9]{40}$", re.IGNORECASE)
_DISPLAY_NAME_RE = re.compile(r"<([^>]+)>")


def get_mail_domain() -> str:
    """Mail domain served by this deployment (MAIL_DOMAIN, default nftmail.box)."""
    return (os.getenv("MAIL_DOMAIN") or DEFAULT_MAIL_DOMAIN).strip().lower()


@dataclass(frozen=True)
class ParsedAddress:
    address: str          # bare lowercase address
    local_part: str       # as written, suffix included
    domain: str
    canonical_name: str   # local part without the agent suffix
    is_agent: bool        # syntactic: suffix present and in our domain
    in_domain: bool
    is_valid: bool        # local part matches the mailbox naming rules


def extract_address(raw: str) -> str:
    """
    Strip a display-name wrapper and normalize case.

    "Alpha <Alpha_@NFTMail.box>" -> "alpha_@nftmail.box"
    """
    match = _DISPLAY_NAME_RE.search(raw or "")
    addr = match.group(1) if match else (raw or "")
    return addr.strip().lower()


def parse_address(raw: str, domain: Optional[str] = None) -> ParsedAddress:
    domain = (domain or get_mail_domain()).lower()
    address = extract_address(raw)
    local_part, _, addr_domain = address.rpartition("@")
    if not local_part:
        # No "@" at all; treat the whole string as a bare local part
        local_part, addr_domain = address, ""

    in_domain = addr_domain == domain
    is_valid = bool(_LOCAL_PART_RE.match(local_part))
    has_suffix = local_part.endswith(AGENT_SUFFIX)
    canonical = local_part[: -len(AGENT_SUFFIX)] if has_suffix else local_part

    return ParsedAddress(
        address=address,
        local_part=local_part,
        domain=addr_domain,
        canonical_name=canonical,
        is_agent=has_suffix and in_domain and is_valid,
        in_domain=in_domain,
        is_valid=is_valid,
    )


def agent_name(raw: str, domain: Optional[str] = None) -> Optional[str]:
    """Canonical name when ``raw`` is a syntactic agent address, else None."""
    parsed = parse_address(raw, domain)
    return parsed.canonical_name if parsed.is_agent else None


def normalize_identity(name_or_address: str, domain: Optional[str] = None) -> str:
    """
    Accept either a bare identity name or a full address and return the
    canonical lowercase name ("Beta_@nftmail.box" and "beta" both -> "beta").
    """
    value = extract_address(name_or_address)
    if "@" in value:
        return parse_address(value, domain).canonical_name
    return value[: -len(AGENT_SUFFIX)] if value.endswith(AGENT_SUFFIX) else value


def is_hex_address(name: str) -> bool:
    """True for names shaped like an on-chain account (0x + 40 hex chars)."""
    return bool(_HEX_ADDRESS_RE.match(name or ""))


def agent_address(name: str, domain: Optional[str] = None) -> str:
    return f"{name}{AGENT_SUFFIX}@{domain or get_mail_domain()}"


def human_address(name: str, domain: Optional[str] = None) -> str:
    return f"{name}@{domain or get_mail_domain()}"
