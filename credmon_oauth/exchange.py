"""
HTTP side of the credential monitor: OIDC discovery and the token grants.
Client credentials authenticate with HTTP Basic. Redirects are never followed and every
request has a timeout, since a hanging provider would otherwise stall the whole scan.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any

import httpx

from credmon_oauth.errors import DiscoveryError, GrantError, MissingRefreshToken
from credmon_oauth.providers import ConnectionInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_TOKEN_EXCHANGE = "urn:ietf:params:oauth:grant-type:token-exchange"
TOKEN_TYPE_ACCESS = "urn:ietf:params:oauth:token-type:access_token"
TOKEN_TYPE_REFRESH = "urn:ietf:params:oauth:token-type:refresh_token"


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    token_endpoint: str


@dataclass(frozen=True)
class TokenResponse:
    access_token: str = field(repr=False)
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = field(default=None, repr=False)
    scope: str | None = None
    issued_token_type: str | None = None

    @classmethod
    def from_json(cls, data: Any, grant_type: str) -> "TokenResponse":
        if not isinstance(data, dict):
            raise GrantError("token response is not a JSON object", grant_type=grant_type)
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise GrantError("token response has no access_token", grant_type=grant_type)
        token_type = data.get("token_type")
        if not isinstance(token_type, str) or not token_type:
            raise GrantError("token response has no token_type", grant_type=grant_type)

        expires_in = data.get("expires_in")
        if isinstance(expires_in, str) and expires_in.strip().isdigit():
            expires_in = int(expires_in)
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in < 0:
            expires_in = None
        elif not math.isfinite(expires_in):
            logger.warning("Ignoring non-finite expires_in in %s response", grant_type)
            expires_in = None

        refresh_token = data.get("refresh_token")
        scope = data.get("scope")
        if isinstance(scope, list):
            scope = " ".join(str(s) for s in scope)
        issued_token_type = data.get("issued_token_type")
        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_in=int(expires_in) if expires_in is not None else None,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            scope=scope if isinstance(scope, str) else None,
            issued_token_type=issued_token_type if isinstance(issued_token_type, str) else None,
        )


def _error_description(r: httpx.Response) -> str:
    """Provider's error / error_description if the body is OAuth error JSON, else the raw text."""
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            err = r.json()
        except ValueError:
            err = None
        if isinstance(err, dict):
            desc = err.get("error_description") or err.get("error")
            if desc:
                return str(desc)
    return r.text[:200] or r.reason_phrase


class TokenExchangeClient:
    """Blocking OAuth2/OIDC client. One instance can be reused across credentials and passes."""

    def __init__(self, http: httpx.Client | None = None, timeout: float = DEFAULT_TIMEOUT):
        if http is None:
            http = httpx.Client(timeout=timeout, follow_redirects=False, headers={"Accept": "application/json"})
        self._http = http

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "TokenExchangeClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def discover(self, issuer: str) -> ProviderMetadata:
        """Fetch <issuer>/.well-known/openid-configuration and check it belongs to this issuer."""
        url = issuer.rstrip("/") + "/.well-known/openid-configuration"
        try:
            r = self._http.get(url)
        except httpx.HTTPError as e:
            raise DiscoveryError(f"cannot fetch {url}: {e}", issuer=issuer)
        if r.status_code != 200:
            raise DiscoveryError(f"{url} returned HTTP {r.status_code}", issuer=issuer)
        try:
            data = r.json()
        except ValueError as e:
            raise DiscoveryError(f"{url} did not return JSON: {e}", issuer=issuer)
        if not isinstance(data, dict):
            raise DiscoveryError(f"{url} did not return a JSON object", issuer=issuer)

        advertised = data.get("issuer")
        if not isinstance(advertised, str) or advertised.rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(f"issuer mismatch: configured {issuer}, provider reports {advertised}", issuer=issuer)
        token_endpoint = data.get("token_endpoint")
        if not isinstance(token_endpoint, str) or not token_endpoint:
            raise DiscoveryError("token url not discovered", issuer=issuer)
        return ProviderMetadata(issuer=advertised, token_endpoint=token_endpoint)

    def _token_request(self, info: ConnectionInfo, metadata: ProviderMetadata, form: dict[str, str]) -> TokenResponse:
        grant_type = form["grant_type"]
        try:
            r = self._http.post(
                metadata.token_endpoint,
                data=form,
                auth=(info.client_id, info.client_secret),
            )
        except httpx.HTTPError as e:
            raise GrantError(f"{grant_type} request failed: {e}", grant_type=grant_type)
        if r.status_code >= 400:
            raise GrantError(
                f"{grant_type} rejected with HTTP {r.status_code}: {_error_description(r)}",
                grant_type=grant_type,
                status=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as e:
            raise GrantError(f"{grant_type} response is not JSON: {e}", grant_type=grant_type, status=r.status_code)
        return TokenResponse.from_json(data, grant_type)

    def client_credentials(self, info: ConnectionInfo, metadata: ProviderMetadata) -> TokenResponse:
        """Access token for the daemon's own service identity."""
        return self._token_request(info, metadata, {"grant_type": GRANT_CLIENT_CREDENTIALS})

    def token_exchange(
        self,
        info: ConnectionInfo,
        metadata: ProviderMetadata,
        subject_token: str,
        username: str,
        scopes: str,
    ) -> TokenResponse:
        """Trade the service token for a refresh token issued on behalf of username."""
        form = {
            "grant_type": GRANT_TOKEN_EXCHANGE,
            "audience": info.client_id,
            "subject_token": subject_token,
            "subject_token_type": TOKEN_TYPE_ACCESS,
            "requested_token_type": TOKEN_TYPE_REFRESH,
            "requested_subject": username,
            "scope": scopes,
        }
        response = self._token_request(info, metadata, form)
        if response.refresh_token is None:
            raise MissingRefreshToken("token exchange did not return a refresh token")
        if response.issued_token_type not in (None, TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH):
            raise GrantError(f"token exchange issued unexpected token type {response.issued_token_type}", grant_type=GRANT_TOKEN_EXCHANGE)
        return response

    def refresh(
        self,
        info: ConnectionInfo,
        metadata: ProviderMetadata,
        refresh_token: str,
        scopes: str = "",
    ) -> TokenResponse:
        form = {"grant_type": GRANT_REFRESH_TOKEN, "refresh_token": refresh_token}
        if scopes:
            form["scope"] = scopes
        return self._token_request(info, metadata, form)

    def issue(self, info: ConnectionInfo, username: str, scopes: str) -> TokenResponse:
        """Full issuance: discovery, client credentials, then token exchange for username."""
        metadata = self.discover(info.issuer)
        service = self.client_credentials(info, metadata)
        logger.debug("Obtained service token from %s, exchanging for %s", info.issuer, username)
        return self.token_exchange(info, metadata, service.access_token, username, scopes)

    def renew(self, info: ConnectionInfo, refresh_token: str, scopes: str = "") -> TokenResponse:
        """Discovery followed by a refresh grant."""
        metadata = self.discover(info.issuer)
        return self.refresh(info, metadata, refresh_token, scopes)
