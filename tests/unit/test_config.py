"""
Unit tests for configuration loading.
"""

from __future__ import annotations

from pathlib import Path

from kairos.config import KairosConfig, load_config

DEFAULT_YAML = Path(__file__).resolve().parents[2] / "config" / "default.yaml"


class TestLoadConfig:
    def test_defaults(self):
        config = KairosConfig()
        assert config.identity.min_pin_length == 4
        assert config.challenge.validity_window_s == 60
        assert config.cache.max_size == 1_000
        assert config.p2p.broadcast_timeout_s == 10
        assert len(config.p2p.gateways) == 5
        assert config.challenge.max_attempts == 20
        assert config.p2p.max_messages_per_origin == 50

    def test_default_yaml_matches_model(self):
        config = load_config(DEFAULT_YAML)
        assert config.central.api_url == "https://kair-os.vercel.app/api"
        assert config.p2p.peer_ttl_s == 300
        assert config.cache.max_age_hours == 24
        assert config.challenge.attempt_window_s == 300
        assert config.p2p.max_peers == 256

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.node_id == "kairos-default"

    def test_overrides_merge(self, tmp_path):
        path = tmp_path / "node.yaml"
        path.write_text("p2p:\n  broadcast_timeout_s: 2\n")
        config = load_config(path, overrides={"p2p": {"peer_ttl_s": 60}})
        assert config.p2p.broadcast_timeout_s == 2
        assert config.p2p.peer_ttl_s == 60
        assert config.p2p.announce_interval_s == 30

    def test_env_shorthands(self, monkeypatch):
        monkeypatch.setenv("KAIROS_REGISTRY_URL", "https://registry.example/api/")
        monkeypatch.setenv("KAIROS_P2P_GATEWAYS", "https://a.example/ipfs/, https://b.example/ipfs/")
        config = load_config()
        assert config.central.api_url == "https://registry.example/api"
        assert config.p2p.gateways == ["https://a.example/ipfs/", "https://b.example/ipfs/"]

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("KAIROS_CACHE__MAX_SIZE", "50")
        assert KairosConfig().cache.max_size == 50
