"""Tests for the daemon entry point (single-pass mode)."""
import logging
from unittest.mock import patch

import pytest

from credmon_oauth import log_config
from credmon_oauth.main import build_parser, main


@pytest.fixture(autouse=True)
def env_config(monkeypatch, config):
    for key, value in config.items():
        monkeypatch.setenv(key, value)
    yield config
    if log_config._handler is not None:
        logging.getLogger().removeHandler(log_config._handler)
        log_config._handler = None


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.log == "file"
    assert args.config == "condor"
    assert args.once is False


def test_once_refreshes_and_exits(exchange_client, make_credential):
    top = make_credential("alice", "test")
    with patch("credmon_oauth.main.TokenExchangeClient", return_value=exchange_client):
        assert main(["--once", "--config", "env", "--log", "stderr"]) == 0
    assert top.with_suffix(".use").exists()


def test_once_reports_failed_credentials(exchange_client, make_credential):
    make_credential("alice", "down")
    with patch("credmon_oauth.main.TokenExchangeClient", return_value=exchange_client):
        assert main(["--once", "--config", "env", "--log", "stderr"]) == 1


def test_missing_credential_root_is_fatal(monkeypatch, exchange_client, tmp_path):
    monkeypatch.setenv("SEC_CREDENTIAL_DIRECTORY_OAUTH", str(tmp_path / "gone"))
    with patch("credmon_oauth.main.TokenExchangeClient", return_value=exchange_client):
        assert main(["--once", "--config", "env", "--log", "stderr"]) == 1
