"""
Flag distribution: the in-process cache serving SDK reads and its refresh scheduler.
"""

from .cache import DistributedFlag, DistributionCache
from .scheduler import CacheRefreshScheduler

__all__ = ["DistributedFlag", "DistributionCache", "CacheRefreshScheduler"]
