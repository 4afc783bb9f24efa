"""
FastAPI dependency providers.

Each collaborator is built once per process from the environment. Providers
that need a missing collaborator raise UnconfiguredError, which the routers
turn into 503. Tests replace providers via ``app.dependency_overrides``.
"""

import os
from functools import lru_cache
from typing import Optional

from app import db
from app.services.content_store import IpfsContentStore
from app.services.decay_store import DecayStore
from app.services.kv_store import KVStore, PrefixedKVStore, build_kv_store
from app.services.mail_relay import ZohoMailRelay
from app.services.mail_router import MailRouter
from app.services.reputation_oracle import ReputationOracleClient
from app.services.scheduler import Scheduler, get_calendar_ttl_seconds
from app.services.scorer import ReputationScorer, get_min_reputation_wei
from app.services.tiers import TierSelector

INBOX_NAMESPACE = "inbox"
CALENDAR_NAMESPACE = "calendar"


@lru_cache
def get_kv_backend() -> KVStore:
    return build_kv_store(
        db.KV_BACKEND,
        supabase_client=db.supabase_admin,
        redis_client=db.redis_client,
        table=db.KV_TABLE,
    )


def get_inbox_kv() -> KVStore:
    return PrefixedKVStore(get_kv_backend(), INBOX_NAMESPACE)


def get_calendar_kv() -> KVStore:
    return PrefixedKVStore(get_kv_backend(), CALENDAR_NAMESPACE)


@lru_cache
def get_oracle() -> ReputationOracleClient:
    return ReputationOracleClient.from_env()


@lru_cache
def get_relay() -> Optional[ZohoMailRelay]:
    # One instance per process so its token cache and account id survive requests
    return ZohoMailRelay.from_env()


@lru_cache
def get_content_store() -> Optional[IpfsContentStore]:
    return IpfsContentStore.from_env()


def get_tier_selector() -> TierSelector:
    return TierSelector()


def get_scorer() -> ReputationScorer:
    return ReputationScorer(get_oracle(), min_reputation_wei=get_min_reputation_wei())


def get_decay_store() -> DecayStore:
    return DecayStore.from_env(get_inbox_kv())


def get_mail_router() -> MailRouter:
    return MailRouter(
        decay_store=get_decay_store(),
        oracle=get_oracle(),
        relay=get_relay(),
        content_store=get_content_store(),
        scorer=get_scorer(),
        tier_selector=get_tier_selector(),
        premium_backend=os.getenv("PREMIUM_BACKEND") or "zoho",
    )


def get_scheduler() -> Scheduler:
    return Scheduler(
        kv=get_calendar_kv(),
        scorer=get_scorer(),
        mail_router=get_mail_router(),
        ttl_seconds=get_calendar_ttl_seconds(),
    )
