"""
On-disk token records.
<provider>[_<handle>].top holds the refresh token and granted scopes; the .use file next to it
holds the current access token. The .use file is a disposable cache: losing it only forces a renewal.
"""
import json
import logging
import math
import os
import stat
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import jwt

from credmon_oauth.errors import MissingRefreshToken, RecordError
from credmon_oauth.exchange import TokenResponse

logger = logging.getLogger(__name__)

REFRESH_SUFFIX = ".top"
ACCESS_SUFFIX = ".use"

# Lifetime assumed when the provider reports none and the token carries no exp claim
DEFAULT_EXPIRES_IN = 600


def access_path_for(refresh_path: str | os.PathLike) -> Path:
    """Same directory and stem as the refresh record, .use instead of .top."""
    return Path(refresh_path).with_suffix(ACCESS_SUFFIX)


def _read_json(path: str | os.PathLike) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise RecordError(f"{path} does not exist", path=str(path), missing=True)
    except (OSError, UnicodeDecodeError) as e:
        raise RecordError(f"cannot read {path}: {e}", path=str(path))
    except json.JSONDecodeError as e:
        raise RecordError(f"{path} is not valid JSON: {e}", path=str(path))
    if not isinstance(data, dict):
        raise RecordError(f"{path} does not hold a JSON object", path=str(path))
    return data


def _copy_ownership(path: Path, tmp_name: str) -> None:
    """Give the temp file the owner and mode of the record it replaces; new records get 0600."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        os.chmod(tmp_name, 0o600)
        return
    try:
        os.chown(tmp_name, st.st_uid, st.st_gid)
    except PermissionError as e:
        logger.warning("Cannot keep owner %d:%d of %s: %s", st.st_uid, st.st_gid, path, e)
    os.chmod(tmp_name, stat.S_IMODE(st.st_mode))


def _write_json(path: str | os.PathLike, data: dict[str, Any]) -> None:
    """Write via a temp file in the same directory and rename, so readers never see a partial record."""
    path = Path(path)
    fd = None
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            fd = None
            json.dump(data, f, indent=2)
            f.write("\n")
        _copy_ownership(path, tmp_name)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise RecordError(f"cannot write {path}: {e}", path=str(path))
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def _field(data: dict, name: str, kind: type | tuple[type, ...], path) -> Any:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, kind):
        raise RecordError(f"{path}: field {name!r} missing or of wrong type", path=str(path))
    return value


@dataclass
class RefreshRecord:
    refresh_token: str
    scopes: str

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "RefreshRecord":
        data = _read_json(path)
        return cls(
            refresh_token=_field(data, "refresh_token", str, path),
            scopes=_field(data, "scopes", str, path),
        )

    def write_to_file(self, path: str | os.PathLike) -> None:
        _write_json(path, asdict(self))


@dataclass
class AccessRecord:
    access_token: str
    token_type: str
    expires_in: int
    expires_at: float
    scope: list[str]

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "AccessRecord":
        data = _read_json(path)
        expires_in = _field(data, "expires_in", int, path)
        if expires_in < 0:
            raise RecordError(f"{path}: field 'expires_in' is negative", path=str(path))
        scope = _field(data, "scope", list, path)
        if not all(isinstance(s, str) for s in scope):
            raise RecordError(f"{path}: field 'scope' must be a list of strings", path=str(path))
        return cls(
            access_token=_field(data, "access_token", str, path),
            token_type=_field(data, "token_type", str, path),
            expires_in=expires_in,
            expires_at=float(_field(data, "expires_at", (int, float), path)),
            scope=scope,
        )

    def write_to_file(self, path: str | os.PathLike) -> None:
        _write_json(path, asdict(self))


def load_access_record(path: str | os.PathLike) -> AccessRecord | None:
    """Access record, or None when it is absent or unreadable (either way it needs renewing)."""
    try:
        return AccessRecord.from_file(path)
    except RecordError as e:
        if not e.missing:
            logger.info("Ignoring unusable access record: %s", e.detail)
        return None


def _jwt_expires_in(access_token: str, now: float) -> int | None:
    """Remaining lifetime from a JWT access token's exp claim (not verified; informational only)."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not math.isfinite(exp):
        return None
    return max(0, int(exp - now))


def records_from_response(
    response: TokenResponse,
    requested_scopes: str = "",
    now: float | None = None,
    fallback_refresh_token: str | None = None,
) -> tuple[RefreshRecord, AccessRecord]:
    """
    Build both records from a grant response.
    Granted scopes default to the requested ones when the provider omits 'scope'.
    fallback_refresh_token is kept when the provider does not rotate refresh tokens.
    """
    if now is None:
        now = time.time()
    refresh_token = response.refresh_token or fallback_refresh_token
    if not refresh_token:
        raise MissingRefreshToken("token response did not include a refresh token")

    if response.scope is not None:
        scopes = response.scope.split()
    else:
        scopes = requested_scopes.split()

    expires_in = response.expires_in
    if expires_in is None:
        expires_in = _jwt_expires_in(response.access_token, now)
    if expires_in is None:
        expires_in = DEFAULT_EXPIRES_IN

    refresh = RefreshRecord(refresh_token=refresh_token, scopes=" ".join(scopes))
    access = AccessRecord(
        access_token=response.access_token,
        token_type=response.token_type,
        expires_in=expires_in,
        expires_at=now + expires_in,
        scope=scopes,
    )
    return refresh, access


def write_tokens(
    refresh_path: str | os.PathLike,
    response: TokenResponse,
    requested_scopes: str = "",
    now: float | None = None,
    fallback_refresh_token: str | None = None,
) -> tuple[RefreshRecord, AccessRecord]:
    """Persist both records for a grant response; creates the owner directory if needed."""
    refresh_path = Path(refresh_path)
    refresh, access = records_from_response(
        response,
        requested_scopes=requested_scopes,
        now=now,
        fallback_refresh_token=fallback_refresh_token,
    )
    try:
        refresh_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RecordError(f"cannot create {refresh_path.parent}: {e}", path=str(refresh_path.parent))

    logger.info("Writing refresh token at %s", refresh_path)
    refresh.write_to_file(refresh_path)
    access_path = access_path_for(refresh_path)
    logger.info("Writing access token at %s", access_path)
    access.write_to_file(access_path)
    return refresh, access
