"""
KairOS -- Offline Key Cache
"""

from kairos.systems.cache.offline import OfflineKeyCache

__all__ = ["OfflineKeyCache"]
