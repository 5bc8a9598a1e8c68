"""
One-shot credential creation for the current user.
Called with a single query-string argument, e.g.

    credmon-oauth-client 'options=myprovider&scopes=read:data,write:data&handle=analysis'

and writes <root>/<user>/<provider>[_<handle>].top and .use. Exit code 0 on success.
"""
import argparse
import logging
import os
import pwd
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qsl

from credmon_oauth.config import LOADERS, Config, ConfigCache, credential_root, minimum_lifetime
from credmon_oauth.errors import ArgumentError, CredmonError, GenericError, RecordError
from credmon_oauth.exchange import TokenExchangeClient
from credmon_oauth.log_config import LOG_FORMAT
from credmon_oauth.policy import needs_renewal, scope_changed
from credmon_oauth.providers import resolve_provider
from credmon_oauth.records import REFRESH_SUFFIX, RefreshRecord, access_path_for, load_access_record, write_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialRequest:
    provider: str
    scopes: str = ""
    handle: str | None = None

    @property
    def identifier(self) -> str:
        if self.handle:
            return f"{self.provider}_{self.handle}"
        return self.provider


def parse_request(query: str | None) -> CredentialRequest:
    """Parse 'options=<provider>&scopes=<a,b>&handle=<h>'. scopes become space-separated."""
    if not query:
        raise ArgumentError("need to specify scopes and options (provider)")
    args = dict(parse_qsl(query, keep_blank_values=True))
    provider = args.get("options", "").strip()
    if not provider:
        raise ArgumentError("need to specify provider in options")
    scopes = " ".join(s for s in args.get("scopes", "").replace(",", " ").split())
    handle = args.get("handle", "").strip() or None
    return CredentialRequest(provider=provider, scopes=scopes, handle=handle)


def current_username() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        raise GenericError("Cannot get username")


def credential_path(config: Config, username: str, request: CredentialRequest) -> Path:
    return Path(credential_root(config)) / username / f"{request.identifier}{REFRESH_SUFFIX}"


def create_credential(
    request: CredentialRequest,
    config: Config,
    client: TokenExchangeClient,
    username: str,
    now: float | None = None,
) -> Path:
    """
    Make sure username holds a credential for the request.
    An existing credential with the same scopes is refreshed (or left alone while its
    access token is fresh); otherwise a new one is issued through token exchange.
    """
    if now is None:
        now = time.time()
    path = credential_path(config, username, request)
    logger.info("Getting tokens")
    logger.info("  provider = %s", request.provider)
    info = resolve_provider(request.identifier, config)

    stored = None
    try:
        stored = RefreshRecord.from_file(path)
    except RecordError as e:
        if not e.missing:
            logger.warning("Replacing unusable refresh record: %s", e.detail)

    if stored is not None and not scope_changed(request.scopes, stored.scopes):
        access = load_access_record(access_path_for(path))
        if not needs_renewal(access, minimum_lifetime(config), now):
            logger.info("Existing credential at %s is current", path)
            return path
        try:
            response = client.renew(info, stored.refresh_token, stored.scopes)
            write_tokens(path, response, requested_scopes=stored.scopes, fallback_refresh_token=stored.refresh_token)
            return path
        except CredmonError as e:
            logger.warning("Refresh failed, issuing a new credential: %s", e)
    elif stored is not None:
        logger.info("Requested scopes differ from %s, issuing a new credential", path)

    response = client.issue(info, username, request.scopes)
    write_tokens(path, response, requested_scopes=request.scopes)
    return path


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
    parser = argparse.ArgumentParser(prog="credmon-oauth-client", description="Create an OAuth credential for the current user.")
    parser.add_argument("request", nargs="?", help="options=<provider>&scopes=<a,b>[&handle=<h>]")
    parser.add_argument("--config", choices=sorted(LOADERS), default="condor", help="Configuration source (default: condor)")
    args = parser.parse_args(argv)

    try:
        request = parse_request(args.request)
        config = ConfigCache(LOADERS[args.config]).get()
        username = current_username()
        logger.info("Running as username %s", username)
        with TokenExchangeClient() as client:
            create_credential(request, config, client, username)
    except CredmonError as e:
        logger.warning("Error getting tokens: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
