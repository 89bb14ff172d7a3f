"""
KairOS -- Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of derivation, registries, discovery, and the
offline cache lives here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class IdentityConfig(BaseModel):
    min_pin_length: int = 4
    session_token_prefix: str = "kairos"
    auth_base_url: str = "https://kair-os.vercel.app/auth"


class ChallengeConfig(BaseModel):
    # Issued challenges are single-use and expire after this window
    validity_window_s: float = 60.0
    enforce_single_use: bool = True
    max_outstanding: int = 10_000
    # Verification attempts per chipUID; 0 disables the limit
    max_attempts: int = 20
    attempt_window_s: float = 300.0


class CentralRegistryConfig(BaseModel):
    enabled: bool = True
    api_url: str = "https://kair-os.vercel.app/api"
    timeout_s: float = 5.0

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class P2PConfig(BaseModel):
    enabled: bool = True
    peer_id: str = ""  # generated on start when empty
    endpoint: str = ""  # this node's public base URL, announced to peers
    gateways: list[str] = Field(
        default_factory=lambda: [
            "https://ipfs.io/ipfs/",
            "https://gateway.ipfs.io/ipfs/",
            "https://cloudflare-ipfs.com/ipfs/",
            "https://cf-ipfs.com/ipfs/",
            "https://dweb.link/ipfs/",
        ]
    )
    gateway_timeout_s: float = 5.0
    local_node_url: str = "http://localhost:5001"
    local_node_timeout_s: float = 3.0
    peer_timeout_s: float = 5.0
    broadcast_timeout_s: float = 10.0
    announce_interval_s: float = 30.0
    peer_ttl_s: float = 300.0
    inbox_size: int = 500
    # Inbound gossip throttling and table bounds
    max_messages_per_origin: int = 50
    origin_window_s: float = 60.0
    dedupe_size: int = 1_000
    max_peers: int = 256
    max_announced: int = 10_000
    max_records: int = 10_000


class CacheConfig(BaseModel):
    max_size: int = 1_000
    max_age_hours: float = 24.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"  # "json" | "console"


# ─── Root Configuration ──────────────────────────────────────────


class KairosConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="KAIROS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    node_id: str = "kairos-default"

    server: ServerConfig = Field(default_factory=ServerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    challenge: ChallengeConfig = Field(default_factory=ChallengeConfig)
    central: CentralRegistryConfig = Field(default_factory=CentralRegistryConfig)
    p2p: P2PConfig = Field(default_factory=P2PConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> KairosConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    if overrides:
        raw = _deep_merge(raw, overrides)

    # Shorthand variables used by deployment scripts
    if api_url := os.environ.get("KAIROS_REGISTRY_URL"):
        raw.setdefault("central", {})["api_url"] = api_url
    if endpoint := os.environ.get("KAIROS_P2P_ENDPOINT"):
        raw.setdefault("p2p", {})["endpoint"] = endpoint
    if gateways := os.environ.get("KAIROS_P2P_GATEWAYS"):
        raw.setdefault("p2p", {})["gateways"] = [
            g.strip() for g in gateways.split(",") if g.strip()
        ]
    if node_id := os.environ.get("KAIROS_NODE_ID"):
        raw["node_id"] = node_id

    return KairosConfig(**raw)
