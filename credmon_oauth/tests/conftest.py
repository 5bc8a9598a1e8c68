"""
Pytest fixtures for credmon_oauth. HTTP goes through httpx.MockTransport to an in-process
fake identity provider; credentials live under tmp_path. No network, no real signals.
"""
from urllib.parse import parse_qs

import httpx
import pytest

from credmon_oauth.exchange import GRANT_CLIENT_CREDENTIALS, GRANT_REFRESH_TOKEN, GRANT_TOKEN_EXCHANGE, TokenExchangeClient
from credmon_oauth.records import AccessRecord, RefreshRecord

ISSUER = "https://idp.example.org/realms/test"
DOWN_ISSUER = "https://down.example.org"


class FakeProvider:
    """Minimal OIDC provider: discovery plus the three grants, with per-grant overrides."""

    def __init__(self, issuer: str):
        self.issuer = issuer
        self.requests: list[dict] = []
        self.overrides: dict[str, tuple[int, dict | str]] = {}

    @property
    def host(self) -> str:
        return httpx.URL(self.issuer).host

    def grants(self) -> list[str]:
        return [r["form"].get("grant_type") for r in self.requests if r["path"].endswith("/token")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path.endswith("/.well-known/openid-configuration"):
            self.requests.append({"path": path, "form": {}})
            return httpx.Response(
                200,
                json={
                    "issuer": self.issuer,
                    "token_endpoint": f"{self.issuer}/protocol/openid-connect/token",
                    "jwks_uri": f"{self.issuer}/protocol/openid-connect/certs",
                },
            )
        if request.method == "POST" and path.endswith("/token"):
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            auth = request.headers.get("Authorization", "")
            self.requests.append({"path": path, "form": form, "auth": auth})
            grant = form.get("grant_type", "")
            if grant in self.overrides:
                status, body = self.overrides[grant]
                if isinstance(body, str):
                    return httpx.Response(status, text=body, headers={"content-type": "application/json"})
                return httpx.Response(status, json=body)
            return httpx.Response(200, json=self._grant(grant, form))
        return httpx.Response(404, json={"error": "not_found"})

    def _grant(self, grant: str, form: dict) -> dict:
        if grant == GRANT_CLIENT_CREDENTIALS:
            return {"access_token": "service-token", "token_type": "Bearer", "expires_in": 300}
        if grant == GRANT_TOKEN_EXCHANGE:
            return {
                "access_token": f"at-{form.get('requested_subject')}",
                "token_type": "Bearer",
                "expires_in": 1200,
                "refresh_token": "rt-issued",
                "scope": form.get("scope", ""),
                "issued_token_type": form.get("requested_token_type"),
            }
        if grant == GRANT_REFRESH_TOKEN:
            return {
                "access_token": "at-refreshed",
                "token_type": "Bearer",
                "expires_in": 1200,
                "refresh_token": "rt-rotated",
                "scope": form.get("scope", ""),
            }
        return {"error": "unsupported_grant_type"}


@pytest.fixture
def idp():
    return FakeProvider(ISSUER)


@pytest.fixture
def exchange_client(idp):
    """TokenExchangeClient wired to the fake provider; DOWN_ISSUER's host refuses connections."""

    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == idp.host:
            return idp.handle(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = TokenExchangeClient(http=httpx.Client(transport=httpx.MockTransport(route)))
    yield client
    client.close()


@pytest.fixture
def secret_file(tmp_path):
    p = tmp_path / "client_secret"
    p.write_text("s3cret\n")
    return p


@pytest.fixture
def cred_root(tmp_path):
    root = tmp_path / "oauth_credentials"
    root.mkdir()
    return root


@pytest.fixture
def config(cred_root, secret_file):
    """Config snapshot with a reachable provider 'test' and an unreachable provider 'down'."""
    return {
        "SEC_CREDENTIAL_DIRECTORY_OAUTH": str(cred_root),
        "CREDMON_OAUTH_TOKEN_MINIMUM": "60",
        "test_ISSUER": ISSUER,
        "test_CLIENT_ID": "credmon",
        "test_CLIENT_SECRET_FILE": str(secret_file),
        "down_ISSUER": DOWN_ISSUER,
        "down_CLIENT_ID": "credmon",
        "down_CLIENT_SECRET_FILE": str(secret_file),
    }


@pytest.fixture
def make_credential(cred_root):
    """Create <root>/<owner>/<name>.top (and .use when expires_at is given)."""

    def _make(owner: str, name: str, refresh_token: str = "rt-old", scopes: str = "read:data", expires_at: float | None = None):
        owner_dir = cred_root / owner
        owner_dir.mkdir(exist_ok=True)
        top = owner_dir / f"{name}.top"
        RefreshRecord(refresh_token=refresh_token, scopes=scopes).write_to_file(top)
        if expires_at is not None:
            AccessRecord(
                access_token="at-old",
                token_type="Bearer",
                expires_in=3600,
                expires_at=expires_at,
                scope=scopes.split(),
            ).write_to_file(top.with_suffix(".use"))
        return top

    return _make