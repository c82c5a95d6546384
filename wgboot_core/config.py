import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULTS = {
    "port": 8081,
    "peer_name": "peer1",
    "config_dir": "/config",
    "wg_interface": "wg0",
    "endpoint_port": "51820",
    "keepalive_enabled": True,
}

DONE_MARKER_NAME = "bootstrap_done"
PUBLIC_HOST_SUFFIX = ".fly.dev"

KEEPALIVE_INTERVAL = 30
KEEPALIVE_STARTUP_WINDOW = 120
KEEPALIVE_MAX_IDLE = 300
KEEPALIVE_PING_TIMEOUT = 5
CONFIG_WAIT_TIMEOUT = 300


def _env_float(environ, key, default, positive=False):
    raw = environ.get(key, "")
    if not raw:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number of seconds, got {raw!r}")
    if positive and value <= 0:
        raise ValueError(f"{key} must be greater than zero, got {raw!r}")
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {raw!r}")
    return value


def _env_int(environ, key, default):
    raw = environ.get(key, "")
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class KeepaliveTiming:
    """Time constants for the keep-alive loop, all in seconds."""

    interval: float = KEEPALIVE_INTERVAL
    startup_window: float = KEEPALIVE_STARTUP_WINDOW
    max_idle: float = KEEPALIVE_MAX_IDLE
    ping_timeout: float = KEEPALIVE_PING_TIMEOUT

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        return cls(
            interval=_env_float(env, "KEEPALIVE_INTERVAL", KEEPALIVE_INTERVAL, positive=True),
            startup_window=_env_float(env, "KEEPALIVE_STARTUP_WINDOW", KEEPALIVE_STARTUP_WINDOW),
            max_idle=_env_float(env, "KEEPALIVE_MAX_IDLE", KEEPALIVE_MAX_IDLE),
            ping_timeout=_env_float(env, "KEEPALIVE_PING_TIMEOUT", KEEPALIVE_PING_TIMEOUT, positive=True),
        )


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULTS["port"]
    token: str = ""
    peer_name: str = DEFAULTS["peer_name"]
    config_dir: str = DEFAULTS["config_dir"]
    wg_interface: str = DEFAULTS["wg_interface"]
    endpoint_host: str = ""
    endpoint_port: str = DEFAULTS["endpoint_port"]
    keepalive_enabled: bool = DEFAULTS["keepalive_enabled"]
    keepalive_url: str = ""
    config_wait: float = CONFIG_WAIT_TIMEOUT
    timing: KeepaliveTiming = field(default_factory=KeepaliveTiming)

    @property
    def peer_config_path(self) -> Path:
        return Path(self.config_dir) / self.peer_name / f"{self.peer_name}.conf"

    @property
    def done_path(self) -> Path:
        return Path(self.config_dir) / DONE_MARKER_NAME

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ

        app_name = env.get("FLY_APP_NAME", "")
        endpoint_host = env.get("BOOTSTRAP_ENDPOINT_HOST", "")
        if not endpoint_host and app_name:
            endpoint_host = f"{app_name}{PUBLIC_HOST_SUFFIX}"

        keepalive_url = env.get("KEEPALIVE_URL", "")
        if not keepalive_url and endpoint_host:
            keepalive_url = f"https://{endpoint_host}"

        return cls(
            port=_env_int(env, "BOOTSTRAP_PORT", DEFAULTS["port"]),
            token=env.get("BOOTSTRAP_TOKEN", ""),
            peer_name=env.get("BOOTSTRAP_PEER_NAME", "") or DEFAULTS["peer_name"],
            config_dir=env.get("BOOTSTRAP_CONFIG_DIR", "") or DEFAULTS["config_dir"],
            wg_interface=env.get("WG_INTERFACE", "") or DEFAULTS["wg_interface"],
            endpoint_host=endpoint_host,
            endpoint_port=(
                env.get("BOOTSTRAP_ENDPOINT_PORT", "")
                or env.get("SERVERPORT", "")
                or DEFAULTS["endpoint_port"]
            ),
            keepalive_enabled=env.get("KEEPALIVE_ENABLED", "true").strip().lower() != "false",
            keepalive_url=keepalive_url,
            config_wait=_env_float(env, "BOOTSTRAP_CONFIG_WAIT", CONFIG_WAIT_TIMEOUT),
            timing=KeepaliveTiming.from_env(env),
        )
