import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from wgboot_core.config import KeepaliveTiming, Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.port == 8081
    assert s.token == ""
    assert s.peer_name == "peer1"
    assert s.wg_interface == "wg0"
    assert s.endpoint_host == ""
    assert s.endpoint_port == "51820"
    assert s.keepalive_enabled is True
    assert s.keepalive_url == ""
    assert s.timing == KeepaliveTiming(interval=30, startup_window=120, max_idle=300, ping_timeout=5)
    assert s.peer_config_path == Path("/config/peer1/peer1.conf")
    assert s.done_path == Path("/config/bootstrap_done")


def test_fly_app_name_derives_host_and_url():
    s = Settings.from_env({"FLY_APP_NAME": "myvpn", "SERVERPORT": "51999"})
    assert s.endpoint_host == "myvpn.fly.dev"
    assert s.endpoint_port == "51999"
    assert s.keepalive_url == "https://myvpn.fly.dev"


def test_explicit_overrides():
    s = Settings.from_env({
        "FLY_APP_NAME": "myvpn",
        "BOOTSTRAP_ENDPOINT_HOST": "vpn.example.org",
        "BOOTSTRAP_ENDPOINT_PORT": "443",
        "SERVERPORT": "51999",
        "KEEPALIVE_URL": "https://wake.example.org/ping",
        "BOOTSTRAP_PEER_NAME": "phone",
        "BOOTSTRAP_CONFIG_DIR": "/srv/wg",
        "BOOTSTRAP_TOKEN": "s3cret",
        "BOOTSTRAP_PORT": "9000",
        "KEEPALIVE_MAX_IDLE": "600",
    })
    assert s.endpoint_host == "vpn.example.org"
    assert s.endpoint_port == "443"
    assert s.keepalive_url == "https://wake.example.org/ping"
    assert s.peer_config_path == Path("/srv/wg/phone/phone.conf")
    assert s.token == "s3cret"
    assert s.port == 9000
    assert s.timing.max_idle == 600


def test_keepalive_disabled_flag():
    assert Settings.from_env({"KEEPALIVE_ENABLED": "False"}).keepalive_enabled is False
    assert Settings.from_env({"KEEPALIVE_ENABLED": "no"}).keepalive_enabled is True


def test_invalid_timing_raises():
    with pytest.raises(ValueError, match="KEEPALIVE_INTERVAL"):
        Settings.from_env({"KEEPALIVE_INTERVAL": "soon"})
    with pytest.raises(ValueError, match="KEEPALIVE_PING_TIMEOUT"):
        Settings.from_env({"KEEPALIVE_PING_TIMEOUT": "-1"})


def test_invalid_port_raises():
    with pytest.raises(ValueError, match="BOOTSTRAP_PORT"):
        Settings.from_env({"BOOTSTRAP_PORT": "http"})


def test_zero_interval_raises():
    with pytest.raises(ValueError, match="KEEPALIVE_INTERVAL"):
        Settings.from_env({"KEEPALIVE_INTERVAL": "0"})


def test_zero_ping_timeout_raises():
    with pytest.raises(ValueError, match="KEEPALIVE_PING_TIMEOUT"):
        Settings.from_env({"KEEPALIVE_PING_TIMEOUT": "0"})


def test_zero_startup_window_and_max_idle_allowed():
    s = Settings.from_env({"KEEPALIVE_STARTUP_WINDOW": "0", "KEEPALIVE_MAX_IDLE": "0"})
    assert s.timing.startup_window == 0
    assert s.timing.max_idle == 0
