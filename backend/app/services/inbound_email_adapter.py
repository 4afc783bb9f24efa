"""
Inbound email adapter service.

Normalizes provider-specific inbound webhook payloads into a single
provider-agnostic InboundMessage.

Supported providers:
  - worker    (default) the mail worker's native JSON:
              {from, to, subject, content, timestamp}
  - postmark  PascalCase: From, To, Subject, TextBody / HtmlBody
  - resend    snake_case: from, to, subject, text / html

Adding a new provider:
  1. Write a normalize_<provider>(payload: dict) -> InboundMessage function.
  2. Register it in _NORMALIZERS.
  3. Set EMAIL_PROVIDER=<provider> in the environment.

Timestamps: the worker sends epoch milliseconds; ISO-8601 strings are also
accepted. Anything else is dropped and the router stamps ingestion time.
"""

import os
from datetime import datetime, timezone
from typing import Callable, Optional

from app.models.inbound_email import InboundMessage


def _first_address(value) -> str:
    """Providers send ``to`` as a string, a comma list, or a list of strings."""
    if isinstance(value, list):
        value = value[0] if value else ""
    value = str(value or "")
    return value.split(",")[0].strip()


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Worker (native) normalizer
# ---------------------------------------------------------------------------

def normalize_worker(payload: dict) -> InboundMessage:
    """Convert the mail worker's native payload to InboundMessage."""
    return InboundMessage(
        sender=payload.get("from", ""),
        recipient=_first_address(payload.get("to", "")),
        subject=payload.get("subject") or "",
        content=payload.get("content") or "",
        timestamp=_parse_timestamp(payload.get("timestamp")),
    )


# ---------------------------------------------------------------------------
# Postmark normalizer
# ---------------------------------------------------------------------------

def normalize_postmark(payload: dict) -> InboundMessage:
    """
    Convert a Postmark inbound webhook payload to InboundMessage.

    Postmark uses PascalCase keys: From, To, Subject, TextBody, HtmlBody, Date.
    The plain-text body is preferred over HTML.
    """
    return InboundMessage(
        sender=payload.get("From", ""),
        recipient=_first_address(payload.get("To", "")),
        subject=payload.get("Subject") or "",
        content=payload.get("TextBody") or payload.get("HtmlBody") or "",
        timestamp=_parse_timestamp(payload.get("Date")),
    )


# ---------------------------------------------------------------------------
# Resend normalizer
# ---------------------------------------------------------------------------

def normalize_resend(payload: dict) -> InboundMessage:
    """
    Convert a Resend inbound webhook payload to InboundMessage.

    Resend uses snake_case keys: from, to, subject, text, html, created_at.
    ``to`` may be a list.
    """
    return InboundMessage(
        sender=payload.get("from", ""),
        recipient=_first_address(payload.get("to", "")),
        subject=payload.get("subject") or "",
        content=payload.get("text") or payload.get("html") or "",
        timestamp=_parse_timestamp(payload.get("created_at")),
    )


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict], InboundMessage]] = {
    "worker": normalize_worker,
    "postmark": normalize_postmark,
    "resend": normalize_resend,
}


def normalize_webhook(payload: dict, provider: str | None = None) -> InboundMessage:
    """
    Route to the correct normalizer based on the provider argument or the
    EMAIL_PROVIDER environment variable.

    Priority:
      1. provider argument (explicit, used in tests and the webhook endpoint)
      2. EMAIL_PROVIDER env var
      3. Default: "worker"

    Raises ValueError for unknown provider names.
    """
    resolved = provider or os.getenv("EMAIL_PROVIDER", "worker")
    resolved = resolved.lower().strip()

    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_NORMALIZERS)}"
        )

    return normalizer(payload)
