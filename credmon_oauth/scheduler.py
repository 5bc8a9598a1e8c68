"""
Daemon loop.
The scheduler thread scans when the interval has elapsed and otherwise waits in short ticks.
A separate listener thread turns SIGHUP into a reload request; the scheduler picks it up on
its next tick, reloads configuration and log sinks, and scans immediately.
"""
import logging
import signal
import threading
import time
from collections.abc import Callable, Iterable

from credmon_oauth.config import Config, ConfigCache, refresh_interval
from credmon_oauth.errors import CredmonError, OAuthDirError
from credmon_oauth.exchange import TokenExchangeClient
from credmon_oauth.refresh import RefreshSummary, refresh_all

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.1


class ReloadListener:
    """
    Waits for reload signals on its own thread and sets the shared event; does nothing else.
    start() must be called from the main thread: it blocks the signals there so that only
    the listener's sigwait() receives them.
    """

    def __init__(self, event: threading.Event, signals: Iterable[int] = (signal.SIGHUP,)):
        self.event = event
        self.signals = set(signals)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        signal.pthread_sigmask(signal.SIG_BLOCK, self.signals)
        self._thread = threading.Thread(target=self._listen, name="reload-listener", daemon=True)
        self._thread.start()

    def _listen(self) -> None:
        while True:
            sig = signal.sigwait(self.signals)
            self.notify(sig)

    def notify(self, sig: int = signal.SIGHUP) -> None:
        logger.warning("Received reload signal %s", signal.Signals(sig).name)
        self.event.set()


class RefreshScheduler:
    def __init__(
        self,
        config: ConfigCache,
        client: TokenExchangeClient,
        reload_event: threading.Event | None = None,
        on_reload: Callable[[Config], None] | None = None,
        clock: Callable[[], float] = time.time,
        tick: float = TICK_SECONDS,
    ):
        self.config = config
        self.client = client
        self.reload_event = reload_event if reload_event is not None else threading.Event()
        self.on_reload = on_reload
        self.clock = clock
        self.tick_seconds = tick
        self.interval = refresh_interval(config.get())
        # epoch: the first tick scans immediately
        self.last_scan = 0.0
        self.last_summary: RefreshSummary | None = None
        self._stop = threading.Event()

    def due(self, now: float) -> bool:
        return now - self.last_scan > self.interval

    def reload(self) -> None:
        """Drop the cached configuration, rebuild log sinks, recompute the interval, force a scan."""
        logger.info("Reloading configuration")
        self.config.invalidate()
        try:
            config = self.config.get()
            if self.on_reload is not None:
                self.on_reload(config)
            self.interval = refresh_interval(config)
        except CredmonError as e:
            logger.error("Error reloading configuration, keeping refresh interval %ss: %s", self.interval, e)
        except Exception:
            logger.exception("Error reloading configuration")
        self.last_scan = 0.0

    def scan(self) -> RefreshSummary | None:
        """One full pass. Never raises; last_scan is updated however the pass ends."""
        now = self.clock()
        logger.info("Checking for tokens to refresh")
        summary = None
        try:
            summary = refresh_all(self.config.get(), self.client, now=now)
            logger.info(
                "Done refreshing tokens: %d checked, %d refreshed, %d failed",
                summary.checked,
                summary.refreshed,
                summary.failed,
            )
        except OAuthDirError as e:
            logger.error("Abandoning scan: %s", e)
        except CredmonError as e:
            logger.warning("Error refreshing: %s", e)
        except Exception:
            logger.exception("Unexpected error during scan")
        self.last_scan = now
        self.last_summary = summary
        return summary

    def tick(self) -> bool:
        """One loop iteration: handle a pending reload, then scan if due. Returns True if it scanned."""
        if self.reload_event.is_set():
            self.reload_event.clear()
            self.reload()
        if self.due(self.clock()):
            self.scan()
            return True
        return False

    def run(self) -> None:
        logger.info("Starting refresh loop (interval %ss)", self.interval)
        while not self._stop.is_set():
            self.tick()
            # returns early when a reload is requested
            self.reload_event.wait(self.tick_seconds)

    def stop(self) -> None:
        self._stop.set()
        # wake run() out of its tick wait; the loop checks _stop before handling a reload
        self.reload_event.set()
