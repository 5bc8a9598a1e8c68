"""
Credential discovery.
Walks <root>/<owner>/*.top on every pass; nothing is cached between passes.
"""
import logging
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from credmon_oauth.config import Config
from credmon_oauth.errors import OAuthDirError
from credmon_oauth.providers import provider_configured
from credmon_oauth.records import REFRESH_SUFFIX, access_path_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialLocator:
    owner: str
    provider: str
    handle: str | None
    path: Path

    @property
    def identifier(self) -> str:
        """provider or provider_handle: the name the provider settings are resolved by."""
        if self.handle:
            return f"{self.provider}_{self.handle}"
        return self.provider

    @property
    def access_path(self) -> Path:
        return access_path_for(self.path)


def parse_locator(owner: str, path: str | os.PathLike, config: Config | None = None) -> CredentialLocator:
    """
    Split <provider>[_<handle>].top. A stem that is itself a configured provider has no handle.
    Otherwise the part after the last underscore is a handle when the part before it is a
    configured provider, and failing that the whole stem is the provider.
    """
    path = Path(path)
    stem = path.name[: -len(REFRESH_SUFFIX)] if path.name.endswith(REFRESH_SUFFIX) else path.stem
    left, sep, right = stem.rpartition("_")
    if config is not None and not provider_configured(config, stem):
        if sep and left and right and provider_configured(config, left):
            return CredentialLocator(owner=owner, provider=left, handle=right, path=path)
    return CredentialLocator(owner=owner, provider=stem, handle=None, path=path)


def _decodable(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _list_dir(path: str | os.PathLike) -> list[os.DirEntry]:
    try:
        with os.scandir(path) as it:
            return list(it)
    except OSError as e:
        raise OAuthDirError(f"cannot list {path}: {e}", path=str(path))


def iter_credentials(
    root: str | os.PathLike,
    config: Config | None = None,
    onerror: Callable[[OAuthDirError], None] | None = None,
) -> Iterator[CredentialLocator]:
    """
    Yield one locator per refresh record under a first-level owner directory of root.
    Listing failures raise OAuthDirError and end the pass. Undecodable names are
    passed to onerror (or logged) and skipped.
    """

    def report(err: OAuthDirError) -> None:
        if onerror is not None:
            onerror(err)
        else:
            logger.error("%s", err)

    for owner_entry in _list_dir(root):
        if not _decodable(owner_entry.name):
            report(OAuthDirError("Error decoding directory name", path=os.fsdecode(owner_entry.path)))
            continue
        try:
            is_dir = owner_entry.is_dir()
        except OSError as e:
            raise OAuthDirError(f"cannot stat {owner_entry.path}: {e}", path=owner_entry.path)
        if not is_dir:
            continue

        for entry in _list_dir(owner_entry.path):
            if not _decodable(entry.name):
                report(OAuthDirError("Error decoding filename", path=os.fsdecode(entry.path)))
                continue
            if not entry.name.endswith(REFRESH_SUFFIX) or entry.name == REFRESH_SUFFIX:
                continue
            try:
                if not entry.is_file():
                    continue
            except OSError as e:
                report(OAuthDirError(f"cannot stat {entry.path}: {e}", path=entry.path))
                continue
            yield parse_locator(owner_entry.name, entry.path, config)
