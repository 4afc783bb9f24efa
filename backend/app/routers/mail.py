"""
Mail router: ingestion, inbox views, agent status and sovereign purge.

The webhook endpoint is provider-agnostic: it normalises the raw payload via
the inbound_email_adapter service, so switching providers only requires
changing the EMAIL_PROVIDER env var.

Environment variables
---------------------
EMAIL_PROVIDER            Which normaliser to use (default: "worker").
                          Supported values: "worker", "postmark", "resend".
INBOUND_WEBHOOK_SECRET    Shared secret checked in X-Webhook-Secret header.

Endpoints:
  POST /inbound                   : provider webhook (auth: X-Webhook-Secret)
  POST /send                      : direct JSON ingestion (auth: X-Webhook-Secret)
  POST /a2a                       : agent-to-agent Ghost-Wire delivery
  POST /waku-route                : Ghost-Wire delivery + Waku topic/envelope
  GET  /inbox/{identity}          : decay inbox, newest first
  GET  /status/{identity}         : inbox + calendar + score + heartbeat
  POST /inbox/{identity}/purge    : sovereign erasure (requires a signature)

Routing failures (RoutingError subclasses) are rendered by the exception
handler in app.main as {"detail": {"code", "message"}} with the mapped status.
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from app.dependencies import (
    get_decay_store,
    get_mail_router,
    get_scheduler,
    get_scorer,
    get_tier_selector,
)
from app.models.inbound_email import InboundMessage
from app.models.mail import (
    A2ARequest,
    AgentStatus,
    InboxResponse,
    PurgeRequest,
    PurgeResponse,
    RoutingResult,
    SendMessageRequest,
)
from app.services.decay_store import DecayStore
from app.services.identity import normalize_identity
from app.services.inbound_email_adapter import normalize_webhook
from app.services.mail_router import MailRouter
from app.services.scheduler import Scheduler
from app.services.scorer import ReputationScorer
from app.services.status_report import build_status
from app.services.tiers import TierSelector
from app.services.waku import build_direct_message_topic, create_waku_envelope

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _get_webhook_secret() -> str:
    """Return the configured inbound webhook secret ("" when unset)."""
    return os.getenv("INBOUND_WEBHOOK_SECRET") or ""


def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
) -> None:
    """
    Verify that an ingestion request carries the shared secret.

    Raises 401 if the secret is missing, unconfigured, or does not match.
    """
    expected = _get_webhook_secret()
    if not expected:
        logger.warning(
            "No webhook secret configured (INBOUND_WEBHOOK_SECRET); "
            "all ingestion requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    if not x_webhook_secret or x_webhook_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


def _identity_param(identity: str) -> str:
    """Path identities may be bare names or full addresses."""
    name = normalize_identity(identity)
    if not name:
        raise HTTPException(status_code=400, detail="Missing identity name")
    return name


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@router.post("/inbound")
async def receive_inbound_email(
    payload: dict,
    _: None = Depends(_verify_webhook_secret),
    mail_router: MailRouter = Depends(get_mail_router),
):
    """
    Provider-agnostic inbound email webhook receiver.

    Normalizes the payload with the adapter selected by EMAIL_PROVIDER and
    routes the message. An unsupported provider is acknowledged with
    processed=False so the provider does not retry forever.
    """
    provider = os.getenv("EMAIL_PROVIDER", "worker")
    try:
        message = normalize_webhook(payload, provider=provider)
    except ValueError as exc:
        logger.error(f"Webhook normalization failed: {exc}")
        return {"received": True, "processed": False, "reason": "unsupported_provider"}

    result = await mail_router.route(message)
    logger.info(f"Inbound message for {result.identity!r}: {result.status}")
    return result


@router.post("/send", response_model=RoutingResult)
async def send_message(
    body: SendMessageRequest,
    _: None = Depends(_verify_webhook_secret),
    mail_router: MailRouter = Depends(get_mail_router),
) -> RoutingResult:
    """Route a message posted directly as {from, to, subject, content, timestamp?}."""
    message = InboundMessage(
        sender=body.sender,
        recipient=body.recipient,
        subject=body.subject,
        content=body.content,
        timestamp=body.timestamp,
    )
    return await mail_router.route(message)


@router.post("/a2a", response_model=RoutingResult)
async def send_agent_to_agent(
    body: A2ARequest,
    mail_router: MailRouter = Depends(get_mail_router),
) -> RoutingResult:
    """Ghost-Wire: agent-to-agent delivery straight into the recipient's inbox."""
    if not body.from_agent or not body.to_agent:
        raise HTTPException(status_code=400, detail="Missing from_agent or to_agent")
    return await mail_router.send_a2a(body.from_agent, body.to_agent, body.subject, body.content)


@router.post("/waku-route")
async def waku_route(
    body: A2ARequest,
    mail_router: MailRouter = Depends(get_mail_router),
) -> dict:
    """
    Return the Waku content topic and envelope for an A2A message, and store
    the message over Ghost-Wire for offline retrieval.
    """
    if not body.from_agent or not body.to_agent:
        raise HTTPException(status_code=400, detail="Missing from_agent or to_agent")

    sender = normalize_identity(body.from_agent)
    recipient = normalize_identity(body.to_agent)
    topic = build_direct_message_topic(sender, recipient)
    envelope = create_waku_envelope(sender, recipient, body.content)
    stored = await mail_router.send_a2a(sender, recipient, body.subject, body.content)
    return {
        "topic": topic,
        "envelope": envelope.model_dump(),
        "stored": stored.status == "stored",
        "message_id": stored.message_id,
    }


# ---------------------------------------------------------------------------
# Inbox and status
# ---------------------------------------------------------------------------

@router.get("/inbox/{identity}", response_model=InboxResponse)
async def get_inbox(
    identity: str,
    decay_store: DecayStore = Depends(get_decay_store),
    tier_selector: TierSelector = Depends(get_tier_selector),
) -> InboxResponse:
    """Decay inbox for ``identity``, newest first. Expired messages are simply absent."""
    name = _identity_param(identity)
    messages = await decay_store.list_messages(name)
    return InboxResponse(
        identity=name,
        tier=tier_selector.select(name).value,
        messages=messages,
        count=len(messages),
        decay_days=decay_store.decay_days,
    )


@router.get("/status/{identity}", response_model=AgentStatus)
async def get_agent_status(
    identity: str,
    decay_store: DecayStore = Depends(get_decay_store),
    scheduler: Scheduler = Depends(get_scheduler),
    scorer: ReputationScorer = Depends(get_scorer),
    tier_selector: TierSelector = Depends(get_tier_selector),
) -> AgentStatus:
    name = _identity_param(identity)
    return await build_status(name, decay_store, scheduler, scorer, tier_selector)


@router.post("/inbox/{identity}/purge", response_model=PurgeResponse)
async def purge_inbox(
    identity: str,
    body: Optional[PurgeRequest] = None,
    decay_store: DecayStore = Depends(get_decay_store),
) -> PurgeResponse:
    """
    Sovereign kill-switch: erase every stored message for ``identity``.

    The owner signature is verified by the caller before this endpoint is
    reached; here it only has to be present.
    """
    name = _identity_param(identity)
    if body is None or not body.signature:
        raise HTTPException(
            status_code=403,
            detail="Missing signature: sovereign purge requires owner authorization",
        )

    deleted = await decay_store.purge(name)
    return PurgeResponse(identity=name, purged=True, deleted=deleted)
