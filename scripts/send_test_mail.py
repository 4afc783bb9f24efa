#!/usr/bin/env python3
"""
Dev helper: send a test inbound message to the local NFTMail router.

Builds a webhook payload in the chosen provider format and POSTs it to
/api/mail/inbound, then prints the routing result.

Usage
-----
# Agent-to-agent (Ghost-Wire fast path)
python scripts/send_test_mail.py --from alpha_@nftmail.box --to beta_@nftmail.box

# External sender into a swarm agent inbox
python scripts/send_test_mail.py --to alpha_@nftmail.box

# Human mailbox, Postmark payload shape
python scripts/send_test_mail.py --to carol@nftmail.box --provider postmark

# Print the payload without sending
python scripts/send_test_mail.py --dry-run

The server must run with the same EMAIL_PROVIDER as --provider.

Environment / .env
------------------
INBOUND_WEBHOOK_SECRET   Shared webhook secret (required unless --dry-run).
EMAIL_PROVIDER           Payload format (default: worker). Overridden by --provider.
"""

import argparse
import json
import os
import sys
import textwrap
import time
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _build_worker_payload(sender: str, recipient: str, subject: str, content: str) -> dict:
    """Mail worker native shape; timestamp is epoch milliseconds."""
    return {
        "from": sender,
        "to": recipient,
        "subject": subject,
        "content": content,
        "timestamp": int(time.time() * 1000),
    }


def _build_postmark_payload(sender: str, recipient: str, subject: str, content: str) -> dict:
    return {"From": sender, "To": recipient, "Subject": subject, "TextBody": content}


def _build_resend_payload(sender: str, recipient: str, subject: str, content: str) -> dict:
    return {"from": sender, "to": [recipient], "subject": subject, "text": content}


_PAYLOAD_BUILDERS = {
    "worker": _build_worker_payload,
    "postmark": _build_postmark_payload,
    "resend": _build_resend_payload,
}


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_mail.py",
        description="Send a test inbound message to the NFTMail router.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_mail.py --from alpha_@nftmail.box --to beta_@nftmail.box
              python scripts/send_test_mail.py --to carol@nftmail.box --provider resend
        """),
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Router base URL")
    parser.add_argument(
        "--provider",
        default=os.getenv("EMAIL_PROVIDER", "worker"),
        choices=list(_PAYLOAD_BUILDERS),
        help="Webhook payload format (default: worker)",
    )
    parser.add_argument("--from", dest="sender", default="someone@example.com")
    parser.add_argument("--to", dest="recipient", default="alpha_@nftmail.box")
    parser.add_argument("--subject", default="Test message")
    parser.add_argument("--content", default="Hello from send_test_mail.py")
    parser.add_argument("--secret", default=None, help="Override INBOUND_WEBHOOK_SECRET")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload only")

    args = parser.parse_args()

    secret = args.secret or os.getenv("INBOUND_WEBHOOK_SECRET") or ""
    if not secret and not args.dry_run:
        print(
            "ERROR: No webhook secret found.\n"
            "Set INBOUND_WEBHOOK_SECRET in your environment or .env file, "
            "or pass --secret.",
            file=sys.stderr,
        )
        return 1

    payload = _PAYLOAD_BUILDERS[args.provider](
        args.sender, args.recipient, args.subject, args.content
    )
    endpoint = f"{args.url.rstrip('/')}/api/mail/inbound"

    print(f"Provider : {args.provider}")
    print(f"Endpoint : {endpoint}")
    print(f"From     : {args.sender}")
    print(f"To       : {args.recipient}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    try:
        response = httpx.post(
            endpoint,
            json=payload,
            headers={"X-Webhook-Secret": secret},
            timeout=30,
        )
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the router running? Start it with:\n"
            "  cd backend && uvicorn app.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
