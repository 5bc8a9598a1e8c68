"""
Provider connection settings.
A provider "foo" is configured by foo_ISSUER, foo_CLIENT_ID and foo_CLIENT_SECRET_FILE.
A credential named "foo_bar" uses foo_bar_* when fully configured, else falls back to foo_*.
"""
import logging
from dataclasses import dataclass, field

import httpx

from credmon_oauth.config import Config, get_string
from credmon_oauth.errors import ConfigError, CredmonError, IssuerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionInfo:
    provider: str  # config key prefix that matched
    issuer: str
    client_id: str
    client_secret: str = field(repr=False)


def issuer_key(provider: str) -> str:
    return f"{provider}_ISSUER"


def client_id_key(provider: str) -> str:
    return f"{provider}_CLIENT_ID"


def client_secret_key(provider: str) -> str:
    return f"{provider}_CLIENT_SECRET_FILE"


def provider_configured(config: Config, provider: str) -> bool:
    """Whether any connection setting exists for this key prefix (cheap, no file access)."""
    return config.get(issuer_key(provider)) is not None


def _issuer(config: Config, provider: str) -> str:
    key = issuer_key(provider)
    value = get_string(config, key)
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as e:
        raise IssuerError(f"{key} is not a valid URL: {e}", key=key)
    if url.scheme not in ("http", "https") or not url.host:
        raise IssuerError(f"{key} is not an http(s) URL: {value}", key=key)
    return value


def _client_secret(config: Config, provider: str) -> str:
    key = client_secret_key(provider)
    path = get_string(config, key)
    try:
        with open(path, encoding="utf-8") as f:
            secret = f.read().strip()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read {key} ({path}): {e}", key=key)
    if not secret:
        raise ConfigError(f"{key} ({path}) is empty", key=key)
    return secret


def _connection_info(config: Config, provider: str) -> ConnectionInfo:
    issuer = _issuer(config, provider)
    client_id = get_string(config, client_id_key(provider))
    client_secret = _client_secret(config, provider)
    return ConnectionInfo(provider=provider, issuer=issuer, client_id=client_id, client_secret=client_secret)


def resolve_provider(identifier: str, config: Config) -> ConnectionInfo:
    """
    Connection info for 'provider' or 'provider_handle'.
    Exact match first; on any failure with an underscore in the identifier, retry with
    the part before the last underscore. If both fail the exact-match error is raised.
    """
    try:
        info = _connection_info(config, identifier)
    except CredmonError as exact_error:
        provider, sep, _handle = identifier.rpartition("_")
        if not sep or not provider:
            raise
        try:
            info = _connection_info(config, provider)
        except CredmonError:
            raise exact_error
        logger.debug("No complete settings for %s, using provider %s", identifier, provider)
    logger.info("  issuer = %s", info.issuer)
    logger.info("  client_id = %s", info.client_id)
    return info
