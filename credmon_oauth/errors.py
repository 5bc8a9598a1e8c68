"""
Error types for the credential monitor.
Every failure the daemon or the one-shot client reports is one of these; each carries
the structured detail (key, path, issuer, ...) needed for logging and assertions.
"""


class CredmonError(Exception):
    """Base class. str() renders as '<VariantName>: <detail>'."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"{type(self).__name__}: {self.detail}"


class ArgumentError(CredmonError):
    """Malformed one-shot invocation."""


class ConfigError(CredmonError):
    """Missing or malformed configuration key."""

    def __init__(self, detail: str, key: str | None = None):
        super().__init__(detail)
        self.key = key


class OAuthDirError(CredmonError):
    """Credential directory missing from config, unreadable, or holding an undecodable name."""

    def __init__(self, detail: str, path: str | None = None):
        super().__init__(detail)
        self.path = path


class IssuerError(CredmonError):
    """Issuer key present but not a usable URL."""

    def __init__(self, detail: str, key: str | None = None):
        super().__init__(detail)
        self.key = key


class DiscoveryError(CredmonError):
    """Provider metadata could not be fetched or parsed."""

    def __init__(self, detail: str, issuer: str | None = None):
        super().__init__(detail)
        self.issuer = issuer


class GrantError(CredmonError):
    """Token endpoint rejected a grant or could not be reached."""

    def __init__(self, detail: str, grant_type: str | None = None, status: int | None = None):
        super().__init__(detail)
        self.grant_type = grant_type
        self.status = status


class MissingRefreshToken(CredmonError):
    """A grant response lacked a refresh token where one is required."""


class RecordError(CredmonError):
    """Refresh or access record could not be read or written."""

    def __init__(self, detail: str, path: str | None = None, missing: bool = False):
        super().__init__(detail)
        self.path = path
        self.missing = missing


class GenericError(CredmonError):
    pass
