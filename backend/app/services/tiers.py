"""
Storage tier selection for agent mail.

  swarm      zero-cost decay inbox (every agent today)
  standard   hosted provider / content-addressed store, reputation gated
  executive  same path as standard; reserved for per-namespace upgrades

The selector is a lookup keyed by namespace (the text after the last "." of
the canonical name, "" for plain names). With no namespace entries every
name resolves to the default tier.
"""

from enum import Enum
from typing import Optional


class Tier(str, Enum):
    SWARM = "swarm"
    STANDARD = "standard"
    EXECUTIVE = "executive"


def namespace_of(name: str) -> str:
    _, dot, namespace = name.rpartition(".")
    return namespace if dot else ""


class TierSelector:
    def __init__(
        self,
        default: Tier = Tier.SWARM,
        by_namespace: Optional[dict[str, Tier]] = None,
    ):
        self.default = default
        self.by_namespace = dict(by_namespace or {})

    def select(self, name: str) -> Tier:
        return self.by_namespace.get(namespace_of(name), self.default)
