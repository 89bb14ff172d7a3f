"""
KairOS -- Pendant Identity

Deterministic NFC pendant identities, challenge-response authentication,
and public-key discovery across centralized, on-chain, and peer-to-peer
registries.
"""

__version__ = "0.4.0"
