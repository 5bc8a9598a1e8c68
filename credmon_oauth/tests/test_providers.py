"""Tests for provider resolution, including the provider_handle fallback."""
import pytest

from credmon_oauth.errors import ConfigError, IssuerError
from credmon_oauth.providers import provider_configured, resolve_provider


@pytest.fixture
def foo_config(secret_file):
    return {
        "foo_ISSUER": "https://foo.example.org",
        "foo_CLIENT_ID": "client",
        "foo_CLIENT_SECRET_FILE": str(secret_file),
    }


def test_resolve_exact(foo_config):
    info = resolve_provider("foo", foo_config)
    assert info.provider == "foo"
    assert info.issuer == "https://foo.example.org"
    assert info.client_id == "client"
    assert info.client_secret == "s3cret"


def test_secret_not_in_repr(foo_config):
    assert "s3cret" not in repr(resolve_provider("foo", foo_config))


def test_handle_falls_back_to_provider(foo_config):
    """foo_bar with only foo_* keys resolves exactly like foo."""
    assert resolve_provider("foo_bar", foo_config) == resolve_provider("foo", foo_config)


def test_handle_specific_settings_win(foo_config, tmp_path):
    other_secret = tmp_path / "other"
    other_secret.write_text("other-secret")
    config = dict(
        foo_config,
        foo_bar_ISSUER="https://bar.example.org",
        foo_bar_CLIENT_ID="bar-client",
        foo_bar_CLIENT_SECRET_FILE=str(other_secret),
    )
    info = resolve_provider("foo_bar", config)
    assert info.provider == "foo_bar"
    assert info.issuer == "https://bar.example.org"
    assert info.client_secret == "other-secret"


def test_partial_handle_settings_fall_back(foo_config):
    """An incomplete foo_bar_* set is treated as no match."""
    config = dict(foo_config, foo_bar_ISSUER="https://bar.example.org")
    assert resolve_provider("foo_bar", config).provider == "foo"


def test_fallback_splits_at_last_underscore(foo_config):
    config = {k.replace("foo", "my_idp"): v for k, v in foo_config.items()}
    assert resolve_provider("my_idp_work", config).provider == "my_idp"


def test_unknown_provider_names_missing_key(foo_config):
    with pytest.raises(ConfigError) as exc:
        resolve_provider("nope_bar", foo_config)
    assert exc.value.key == "nope_bar_ISSUER"


def test_missing_client_id(foo_config):
    del foo_config["foo_CLIENT_ID"]
    with pytest.raises(ConfigError) as exc:
        resolve_provider("foo", foo_config)
    assert exc.value.key == "foo_CLIENT_ID"


def test_unreadable_secret_file(foo_config, tmp_path):
    foo_config["foo_CLIENT_SECRET_FILE"] = str(tmp_path / "missing")
    with pytest.raises(ConfigError) as exc:
        resolve_provider("foo", foo_config)
    assert exc.value.key == "foo_CLIENT_SECRET_FILE"


def test_empty_secret_file(foo_config, tmp_path):
    empty = tmp_path / "empty"
    empty.write_text("\n")
    foo_config["foo_CLIENT_SECRET_FILE"] = str(empty)
    with pytest.raises(ConfigError):
        resolve_provider("foo", foo_config)


@pytest.mark.parametrize("issuer", ["not a url", "ftp://foo.example.org", "https://"])
def test_malformed_issuer(foo_config, issuer):
    foo_config["foo_ISSUER"] = issuer
    with pytest.raises(IssuerError) as exc:
        resolve_provider("foo", foo_config)
    assert exc.value.key == "foo_ISSUER"


def test_provider_configured(foo_config):
    assert provider_configured(foo_config, "foo") is True
    assert provider_configured(foo_config, "bar") is False
