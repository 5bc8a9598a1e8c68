"""
One scan pass: renew every credential whose access token is missing or close to expiry.
Failures are contained per credential so one bad provider cannot stall the others.
"""
import logging
import time
from dataclasses import dataclass

from credmon_oauth.config import Config, credential_root, minimum_lifetime
from credmon_oauth.errors import CredmonError
from credmon_oauth.exchange import TokenExchangeClient
from credmon_oauth.policy import needs_renewal
from credmon_oauth.providers import resolve_provider
from credmon_oauth.records import RefreshRecord, load_access_record, write_tokens
from credmon_oauth.scanner import CredentialLocator, iter_credentials

logger = logging.getLogger(__name__)


@dataclass
class RefreshSummary:
    checked: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0


def refresh_credential(
    locator: CredentialLocator,
    config: Config,
    client: TokenExchangeClient,
    now: float | None = None,
) -> bool:
    """
    Renew one credential if its access record is missing or due.
    Returns True if new tokens were written, False if nothing was needed.
    Raises CredmonError on any failure.
    """
    if now is None:
        now = time.time()
    stored = RefreshRecord.from_file(locator.path)
    access = load_access_record(locator.access_path)
    if not needs_renewal(access, minimum_lifetime(config), now):
        logger.debug("Access token for %s still valid", locator.path)
        return False

    logger.info("Refreshing %s (owner=%s provider=%s handle=%s)", locator.path, locator.owner, locator.provider, locator.handle)
    info = resolve_provider(locator.identifier, config)
    response = client.renew(info, stored.refresh_token, stored.scopes)
    if response.refresh_token is None:
        logger.info("Provider did not rotate the refresh token for %s; keeping the stored one", locator.path)
    write_tokens(
        locator.path,
        response,
        requested_scopes=stored.scopes,
        now=time.time(),
        fallback_refresh_token=stored.refresh_token,
    )
    return True


def refresh_all(config: Config, client: TokenExchangeClient, now: float | None = None) -> RefreshSummary:
    """
    Scan the credential tree and renew what is due.
    Directory-structure errors (OAuthDirError from the root or an owner directory) propagate.
    """
    root = credential_root(config)
    summary = RefreshSummary()

    def on_scan_error(err: CredmonError) -> None:
        summary.failed += 1
        logger.error("Skipping entry: %s", err)

    for locator in iter_credentials(root, config, onerror=on_scan_error):
        summary.checked += 1
        try:
            if refresh_credential(locator, config, client, now=now):
                summary.refreshed += 1
            else:
                summary.skipped += 1
        except CredmonError as e:
            summary.failed += 1
            logger.warning("Error refreshing %s: %s", locator.path, e)
        except Exception:
            summary.failed += 1
            logger.exception("Unexpected error refreshing %s", locator.path)
    return summary
