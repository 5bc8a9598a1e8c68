"""
When to renew.
Access tokens are renewed before they expire, not after: once the remaining lifetime
drops to the configured minimum the credential is due.
"""
import time
from collections.abc import Iterable

from credmon_oauth.records import AccessRecord


def needs_renewal(access: AccessRecord | None, min_remaining: float, now: float | None = None) -> bool:
    """True when there is no access record or it expires within min_remaining seconds."""
    if access is None:
        return True
    if now is None:
        now = time.time()
    return access.expires_at - min_remaining <= now


def scope_set(scopes: str | Iterable[str] | None) -> frozenset[str]:
    """Normalize a space-delimited scope string (or list of scopes) to a set."""
    if scopes is None:
        return frozenset()
    if isinstance(scopes, str):
        return frozenset(scopes.split())
    return frozenset(s for scope in scopes for s in str(scope).split())


def scope_changed(requested: str | Iterable[str] | None, stored: str | Iterable[str] | None) -> bool:
    """
    Order- and duplicate-insensitive comparison. A change means a refresh grant
    cannot serve the request and the credential must be issued again.
    """
    return scope_set(requested) != scope_set(stored)
