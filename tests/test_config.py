"""
Tests for configuration resolution.
"""

from __future__ import annotations

from comfylink.config import ComfyConfig, load_env


def test_defaults(monkeypatch):
    for key in ("COMFYLINK_BASE_URL", "COMFYLINK_API_PREFIX", "COMFYLINK_WS_HEARTBEAT_S"):
        monkeypatch.delenv(key, raising=False)
    config = ComfyConfig()

    assert config.resolve_base_url() == "http://127.0.0.1:3000"
    assert config.api_url("/prompt") == "http://127.0.0.1:3000/api-comfy/prompt"
    assert config.ws_url() == "ws://127.0.0.1:3000/api-comfy/ws"
    assert config.resolve_ws_heartbeat_s() == 30.0


def test_secure_base_url_gives_secure_websocket():
    config = ComfyConfig(base_url="https://studio.example.com/", api_prefix="api-comfy/")

    assert config.ws_url() == "wss://studio.example.com/api-comfy/ws"
    assert config.api_url("/queue") == "https://studio.example.com/api-comfy/queue"


def test_direct_backend_without_prefix():
    config = ComfyConfig(base_url="http://127.0.0.1:8188", api_prefix="")

    assert config.ws_url() == "ws://127.0.0.1:8188/ws"
    assert config.api_url("/system_stats") == "http://127.0.0.1:8188/system_stats"


def test_env_and_overrides(monkeypatch):
    monkeypatch.setenv("COMFYLINK_BASE_URL", "http://gateway:9000")
    monkeypatch.setenv("COMFYLINK_WS_HEARTBEAT_S", "0")

    assert ComfyConfig().resolve_base_url() == "http://gateway:9000"
    assert ComfyConfig().resolve_ws_heartbeat_s() is None
    assert ComfyConfig(base_url="http://override").resolve_base_url() == "http://override"


def test_load_env(tmp_path, monkeypatch):
    monkeypatch.setenv("COMFYLINK_ORIGIN", "unset")
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\nCOMFYLINK_ORIGIN="http://127.0.0.1:8188"\n')

    load_env(env_file)

    assert ComfyConfig().resolve_origin() == "http://127.0.0.1:8188"
