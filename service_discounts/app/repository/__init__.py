"""
Storage collaborators of the discount engine.

- base: RuleRepository and CartSnapshotProvider interfaces.
- memory: In-memory implementations used by the service and tests.
"""

from .base import RuleRepository, CartSnapshotProvider
from .memory import InMemoryRuleRepository, InMemoryCartStore

__all__ = [
    "RuleRepository",
    "CartSnapshotProvider",
    "InMemoryRuleRepository",
    "InMemoryCartStore",
]
