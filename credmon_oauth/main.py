"""
OAuth credential monitor daemon.
Keeps every <root>/<owner>/<provider>[_<handle>].use access token fresh.

Usage:
    credmon-oauth                       # run forever, log to CREDMON_OAUTH_LOG
    credmon-oauth --log stderr          # log to stderr instead
    credmon-oauth --once                # single pass, then exit
    kill -HUP <pid>                     # reload configuration and rescan now
"""
import argparse
import logging
import sys
import threading

from credmon_oauth.config import LOADERS, ConfigCache, refresh_interval
from credmon_oauth.errors import CredmonError
from credmon_oauth.exchange import DEFAULT_TIMEOUT, TokenExchangeClient
from credmon_oauth.log_config import configure_logging, update_file_logging
from credmon_oauth.refresh import refresh_all
from credmon_oauth.scheduler import ReloadListener, RefreshScheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credmon-oauth",
        description="Keep OAuth access tokens in the credential directory fresh.",
    )
    parser.add_argument("--log", choices=["file", "stderr"], default="file", help="Log sink (default: file)")
    parser.add_argument(
        "--config",
        choices=sorted(LOADERS),
        default="condor",
        help="Configuration source: HTCondor settings or the process environment (default: condor)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single refresh pass and exit")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"HTTP timeout in seconds for provider requests (default: {DEFAULT_TIMEOUT})",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    cache = ConfigCache(LOADERS[args.config])
    config = cache.get()
    configure_logging(config, args.log)

    with TokenExchangeClient(timeout=args.timeout) as client:
        if args.once:
            summary = refresh_all(config, client)
            logger.info("Refreshed %d of %d credentials", summary.refreshed, summary.checked)
            return 1 if summary.failed else 0

        reload_event = threading.Event()
        ReloadListener(reload_event).start()
        logger.info("Credential monitor starting (refresh interval %ss)", refresh_interval(config))
        scheduler = RefreshScheduler(cache, client, reload_event=reload_event, on_reload=update_file_logging)
        scheduler.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        return 0
    except (CredmonError, OSError) as e:
        logger.error("Fatal error in credmon: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
