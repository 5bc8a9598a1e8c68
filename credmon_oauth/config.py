"""
Credential monitor configuration.
Settings come from the batch scheduler's configuration (HTCondor) or, for development,
from the process environment. The snapshot is memoized in a ConfigCache that the
daemon invalidates on reload.
"""
import logging
import os
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from credmon_oauth.errors import ConfigError, OAuthDirError

logger = logging.getLogger(__name__)

# Root of the credential tree: <root>/<owner>/<provider>[_<handle>].top
CREDENTIAL_DIR_KEY = "SEC_CREDENTIAL_DIRECTORY_OAUTH"

# Scan interval (seconds); falls back to half of TOKEN_MINIMUM, then DEFAULT_REFRESH_INTERVAL
TOKEN_REFRESH_KEY = "CREDMON_OAUTH_TOKEN_REFRESH"

# Minimum remaining access token lifetime (seconds) before renewal is forced
TOKEN_MINIMUM_KEY = "CREDMON_OAUTH_TOKEN_MINIMUM"

DEFAULT_REFRESH_INTERVAL = 60
DEFAULT_MINIMUM_LIFETIME = 60

Config = Mapping[str, Any]
ConfigLoader = Callable[[], Mapping[str, Any]]


def condor_loader() -> dict[str, Any]:
    """Read the full HTCondor configuration through the Python bindings."""
    try:
        import htcondor
    except ImportError as e:
        raise ConfigError(f"HTCondor Python bindings are not installed: {e}") from e

    htcondor.reload_config()
    return {k: v for k, v in htcondor.param.items()}


def environ_loader() -> dict[str, Any]:
    """Use the process environment as the configuration source."""
    return dict(os.environ)


LOADERS: dict[str, ConfigLoader] = {
    "condor": condor_loader,
    "env": environ_loader,
}


class ConfigCache:
    """
    Process-wide configuration snapshot.
    get() loads once and returns the same read-only mapping until invalidate() drops it.
    Snapshots are replaced whole, so a reader sees either the old or the new one.
    """

    def __init__(self, loader: ConfigLoader = condor_loader):
        self._loader = loader
        self._snapshot: Config | None = None

    def get(self) -> Config:
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = MappingProxyType(dict(self._loader()))
            self._snapshot = snapshot
            logger.debug("Loaded configuration (%d keys)", len(snapshot))
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None


def coerce_to_int(value: Any, key: str = "") -> int:
    """Accept an int or a decimal string (HTCondor hands out strings)."""
    if isinstance(value, bool):
        raise ConfigError(f"{key} is not an integer: {value!r}", key=key)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"{key} is not an integer: {value!r}", key=key)


def get_string(config: Config, key: str) -> str:
    """Required non-empty string value. Raises ConfigError naming the key."""
    value = config.get(key)
    if value is None:
        raise ConfigError(f"missing {key} in config", key=key)
    if not isinstance(value, str):
        raise ConfigError(f"{key} is not a string", key=key)
    value = value.strip()
    if not value:
        raise ConfigError(f"{key} is empty", key=key)
    return value


def get_int(config: Config, key: str, default: int) -> int:
    value = config.get(key)
    if value is None:
        return default
    return coerce_to_int(value, key)


def refresh_interval(config: Config) -> int:
    """Seconds between scans: explicit setting, else half the token minimum, else the default."""
    if config.get(TOKEN_REFRESH_KEY) is not None:
        return coerce_to_int(config[TOKEN_REFRESH_KEY], TOKEN_REFRESH_KEY)
    if config.get(TOKEN_MINIMUM_KEY) is not None:
        return coerce_to_int(config[TOKEN_MINIMUM_KEY], TOKEN_MINIMUM_KEY) // 2
    return DEFAULT_REFRESH_INTERVAL


def minimum_lifetime(config: Config) -> int:
    return get_int(config, TOKEN_MINIMUM_KEY, DEFAULT_MINIMUM_LIFETIME)


def credential_root(config: Config) -> str:
    """Root credential directory. A missing key is a directory-structure error."""
    value = config.get(CREDENTIAL_DIR_KEY)
    if value is None:
        raise OAuthDirError(f"missing {CREDENTIAL_DIR_KEY} in config")
    if not isinstance(value, str) or not value.strip():
        raise OAuthDirError(f"{CREDENTIAL_DIR_KEY} is not a string")
    return value.strip()
