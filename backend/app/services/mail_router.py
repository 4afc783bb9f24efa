"""
Mail router: decides where an inbound message goes.

  recipient local part ends in "_"  -> agent path
  otherwise                         -> human path

Agent path
  - sender AND recipient are agent addresses -> Ghost-Wire fast path: straight
    into the recipient's decay inbox, marked internal + verified. No oracle,
    no relay. Trust comes from the mutual suffix convention alone.
  - otherwise the tier selector decides:
      swarm               -> decay inbox, marked external + unverified
      standard/executive  -> on-chain identity check, reputation gate for
                             hex-address names (quarantine below threshold),
                             then the premium backend (zoho relay or ipfs)

Human path
  - a "_" local part is forbidden here (defense in depth)
  - a name the registry classifies as AGENT is forbidden without its suffix
  - forward to the existing provider mailbox; if the provider has none,
    deliver only when the registry confirms HUMAN, else identity not found

Quarantine is a successful outcome (status "quarantined"), not an error.
"""

import logging
import os
from typing import Optional

from app.models.inbound_email import InboundMessage
from app.models.mail import (
    Channel,
    IdentityState,
    MessageEnvelope,
    MessageMetadata,
    RoutingResult,
    utcnow,
)
from app.services.decay_store import DecayStore, generate_message_id
from app.services.errors import (
    ForbiddenAddressError,
    IdentityNotFoundError,
    InvalidAddressError,
    RelayNotFoundError,
    UnconfiguredError,
)
from app.services.identity import (
    AGENT_SUFFIX,
    agent_address,
    agent_name,
    get_mail_domain,
    is_hex_address,
    normalize_identity,
    parse_address,
)
from app.services.scorer import ReputationScorer
from app.services.tiers import Tier, TierSelector

logger = logging.getLogger(__name__)

QUARANTINE_PREFIX = "[QUARANTINE] "
PREMIUM_BACKENDS = ("zoho", "ipfs")


def get_quarantine_address() -> str:
    return os.getenv("QUARANTINE_ADDRESS") or f"quarantine@{get_mail_domain()}"


class MailRouter:
    def __init__(
        self,
        decay_store: DecayStore,
        oracle=None,
        relay=None,
        content_store=None,
        scorer: Optional[ReputationScorer] = None,
        tier_selector: Optional[TierSelector] = None,
        quarantine_address: Optional[str] = None,
        premium_backend: str = "zoho",
        mail_domain: Optional[str] = None,
    ):
        self.decay_store = decay_store
        self.oracle = oracle
        self.relay = relay
        self.content_store = content_store
        self.scorer = scorer or (ReputationScorer(oracle) if oracle is not None else None)
        self.tier_selector = tier_selector or TierSelector()
        self.quarantine_address = quarantine_address or get_quarantine_address()
        self.premium_backend = premium_backend.lower()
        self.mail_domain = mail_domain or get_mail_domain()

    # ------------------------------------------------------------------
    # Collaborator guards
    # ------------------------------------------------------------------

    def _require_oracle(self):
        if self.oracle is None or self.scorer is None:
            raise UnconfiguredError("Reputation oracle is not configured")
        return self.oracle

    def _require_relay(self):
        if self.relay is None:
            raise UnconfiguredError("Mail relay is not configured")
        return self.relay

    def _require_content_store(self):
        if self.content_store is None:
            raise UnconfiguredError("Content-addressed store is not configured")
        return self.content_store

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _store(
        self,
        identity: str,
        message: InboundMessage,
        metadata: MessageMetadata,
        tier: Tier = Tier.SWARM,
    ) -> RoutingResult:
        envelope = await self.decay_store.append(identity, message, metadata)
        return RoutingResult(
            status="stored",
            tier=tier.value,
            identity=identity,
            message_id=envelope.id,
            decay_days=self.decay_store.decay_days,
            channel=envelope.channel,
            is_internal=envelope.is_internal,
            is_verified=envelope.is_verified,
            sender_identity=envelope.sender_identity,
            recipient_identity=envelope.recipient_identity,
        )

    def _relay_envelope(self, identity: str, message: InboundMessage) -> MessageEnvelope:
        now = utcnow()
        return MessageEnvelope(
            id=generate_message_id(),
            sender=message.sender,
            recipient=message.recipient,
            subject=message.subject,
            content=message.content,
            timestamp=message.timestamp or now,
            received_at=now,
            **MessageMetadata.relay(identity).model_dump(),
        )

    async def _relay(
        self,
        identity: str,
        destination: str,
        message: InboundMessage,
        tier: Optional[Tier] = None,
        status: str = "relayed",
        subject: Optional[str] = None,
    ) -> RoutingResult:
        envelope = self._relay_envelope(identity, message)
        delivered_to = await self._require_relay().forward(destination, envelope, subject=subject)
        return RoutingResult(
            status=status,
            tier=tier.value if tier else None,
            identity=identity,
            message_id=envelope.id,
            channel=Channel.RELAY,
            recipient_identity=identity,
            destination=delivered_to,
        )

    async def _forward_if_mailbox_exists(
        self,
        identity: str,
        local_part: str,
        message: InboundMessage,
        tier: Optional[Tier] = None,
    ) -> Optional[RoutingResult]:
        """Relay to an existing provider mailbox; None when the provider has none."""
        try:
            return await self._relay(identity, local_part, message, tier=tier)
        except RelayNotFoundError:
            return None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def route(self, message: InboundMessage) -> RoutingResult:
        parsed = parse_address(message.recipient, self.mail_domain)
        if not parsed.in_domain or not parsed.is_valid:
            raise InvalidAddressError(f"Invalid recipient address: {message.recipient!r}")

        if parsed.local_part.endswith(AGENT_SUFFIX):
            return await self.handle_agent_mail(parsed.local_part, message)
        return await self.handle_human_mail(parsed.local_part, message)

    async def handle_agent_mail(self, local_part: str, message: InboundMessage) -> RoutingResult:
        identity = local_part[: -len(AGENT_SUFFIX)]

        sender_agent = agent_name(message.sender, self.mail_domain)
        recipient_agent = agent_name(message.recipient, self.mail_domain)
        if sender_agent and recipient_agent:
            logger.info(f"Ghost-Wire: {sender_agent!r} -> {recipient_agent!r}")
            return await self._store(
                identity, message, MessageMetadata.fast_path(sender_agent, recipient_agent)
            )

        tier = self.tier_selector.select(identity)
        if tier == Tier.SWARM:
            return await self._store(identity, message, MessageMetadata.external(identity), tier)

        oracle = self._require_oracle()
        state = await oracle.get_identity_state(identity)
        if state != IdentityState.AGENT:
            logger.warning(f"Agent address {local_part!r} is not registered as AGENT ({state.value})")
            forwarded = await self._forward_if_mailbox_exists(identity, local_part, message, tier)
            if forwarded:
                return forwarded
            raise IdentityNotFoundError("Identity Not Found")

        if is_hex_address(identity) and not await self.scorer.has_reputation(identity):
            logger.warning(f"Reputation below threshold for {identity!r}; quarantining")
            return await self._relay(
                identity,
                self.quarantine_address,
                message,
                tier=tier,
                status="quarantined",
                subject=f"{QUARANTINE_PREFIX}{message.subject}",
            )

        if self.premium_backend == "ipfs":
            envelope = self._relay_envelope(identity, message)
            cid = await self._require_content_store().add(identity, envelope)
            return RoutingResult(
                status="pinned",
                tier=tier.value,
                identity=identity,
                message_id=envelope.id,
                channel=Channel.RELAY,
                recipient_identity=identity,
                cid=cid,
            )
        if self.premium_backend == "zoho":
            return await self._relay(identity, identity, message, tier=tier)

        raise UnconfiguredError(
            f"Unknown premium backend {self.premium_backend!r}. Supported: {list(PREMIUM_BACKENDS)}"
        )

    async def handle_human_mail(self, local_part: str, message: InboundMessage) -> RoutingResult:
        if local_part.endswith(AGENT_SUFFIX):
            raise ForbiddenAddressError("Underscore addresses are reserved for agents.")

        oracle = self._require_oracle()
        self._require_relay()

        state = await oracle.get_identity_state(local_part)
        if state == IdentityState.AGENT:
            raise ForbiddenAddressError(
                f"{local_part!r} is an agent identity; address it as {local_part}{AGENT_SUFFIX}@{self.mail_domain}"
            )

        forwarded = await self._forward_if_mailbox_exists(local_part, local_part, message)
        if forwarded:
            return forwarded

        if state == IdentityState.HUMAN:
            logger.info(f"No provider mailbox for {local_part!r}; registry confirms HUMAN")
            return await self._relay(local_part, local_part, message)

        raise IdentityNotFoundError("Identity Not Found")

    async def send_a2a(
        self,
        from_agent: str,
        to_agent: str,
        subject: str = "",
        content: str = "",
    ) -> RoutingResult:
        """Agent-to-agent delivery by name, always over the fast path."""
        sender = normalize_identity(from_agent, self.mail_domain)
        recipient = normalize_identity(to_agent, self.mail_domain)
        message = InboundMessage(
            sender=agent_address(sender, self.mail_domain),
            recipient=agent_address(recipient, self.mail_domain),
            subject=subject,
            content=content,
        )
        for name, address in ((sender, message.sender), (recipient, message.recipient)):
            if not parse_address(address, self.mail_domain).is_agent:
                raise InvalidAddressError(f"Invalid agent name: {name!r}")

        return await self._store(recipient, message, MessageMetadata.fast_path(sender, recipient))
