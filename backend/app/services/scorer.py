"""
$SURGE reputation scoring.

Converts a raw token balance into a bounded score:

    score = clamp(1, 100, 1 + ln(1 + balance / 10^18) * 20)

Reference points:
    0 SURGE   -> 1
    1 SURGE   -> ~14.9
    10 SURGE  -> ~49.0
    100 SURGE -> ~93.3
    ~140 SURGE and above -> 100

Only names shaped like on-chain accounts are scored from a live balance;
human-readable names get the minimum score without an oracle call.
"""

import asyncio
import math
import os

from app.models.calendar import SurgeMetadata, SurgeScore
from app.services.identity import is_hex_address

SURGE_DECIMALS = 18
MIN_SCORE = 1.0
MAX_SCORE = 100.0
DEFAULT_MIN_REPUTATION_WEI = 10 ** SURGE_DECIMALS  # 1 whole SURGE

_WEI_PER_SURGE = 10 ** SURGE_DECIMALS
_LN_WEI_PER_SURGE = math.log(_WEI_PER_SURGE)


def surge_score(balance_wei: int) -> float:
    """Bounded logarithmic score for a balance in wei. Monotonic in the balance."""
    if balance_wei < 0:
        raise ValueError("balance cannot be negative")
    # ln(1 + b/D) == ln(D + b) - ln(D); math.log accepts arbitrarily large ints
    growth = math.log(_WEI_PER_SURGE + balance_wei) - _LN_WEI_PER_SURGE
    return min(MAX_SCORE, max(MIN_SCORE, 1 + growth * 20))


def event_priority(scores: list[float]) -> float:
    """
    Priority of an event from its participants' scores.

    50% highest score, 30% average score, 20% participant bonus
    (10 points per participant, capped at 100).
    """
    if not scores:
        return 0.0
    max_score = max(scores)
    avg_score = sum(scores) / len(scores)
    participant_bonus = min(100, len(scores) * 10)
    return max_score * 0.5 + avg_score * 0.3 + participant_bonus * 0.2


def get_min_reputation_wei() -> int:
    return int(os.getenv("MIN_REPUTATION_WEI") or DEFAULT_MIN_REPUTATION_WEI)


class ReputationScorer:
    """Scores identities through a ReputationOracleClient."""

    def __init__(self, oracle, min_reputation_wei: int = DEFAULT_MIN_REPUTATION_WEI):
        self.oracle = oracle
        self.min_reputation_wei = min_reputation_wei

    async def score_identity(self, name: str) -> float:
        if not is_hex_address(name):
            return MIN_SCORE
        balance = await self.oracle.get_balance(name)
        return surge_score(balance)

    async def has_reputation(self, address: str) -> bool:
        balance = await self.oracle.get_balance(address)
        return balance >= self.min_reputation_wei

    async def score_participants(self, names: list[str]) -> list[SurgeScore]:
        scores = await asyncio.gather(*(self.score_identity(n) for n in names))
        return [SurgeScore(identity=n, score=s) for n, s in zip(names, scores)]

    async def surge_metadata(self, names: list[str]) -> SurgeMetadata:
        participant_scores = await self.score_participants(names)
        values = [p.score for p in participant_scores]
        return SurgeMetadata(
            participant_scores=participant_scores,
            average_score=sum(values) / len(values) if values else 0.0,
            max_score=max(values) if values else 0.0,
            priority=event_priority(values),
        )
