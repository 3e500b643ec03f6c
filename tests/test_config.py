import logging

import pytest

from config import (
    DEFAULT_STORE_PATH,
    CustomFormatter,
    _env_float,
    _env_int,
    _VsRecorderConfig,
)


def test_env_int_falls_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("VSR_MAX_CONCURRENT_FETCHES", "not-an-int")
    assert _env_int("VSR_MAX_CONCURRENT_FETCHES", 3) == 3
    monkeypatch.setenv("VSR_MAX_CONCURRENT_FETCHES", "")
    assert _env_int("VSR_MAX_CONCURRENT_FETCHES", 3) == 3
    monkeypatch.setenv("VSR_MAX_CONCURRENT_FETCHES", "5")
    assert _env_int("VSR_MAX_CONCURRENT_FETCHES", 3) == 5


def test_env_float(monkeypatch):
    monkeypatch.setenv("VSR_FETCH_TIMEOUT_SEC", "2.5")
    assert _env_float("VSR_FETCH_TIMEOUT_SEC", 10.0) == 2.5
    monkeypatch.delenv("VSR_FETCH_TIMEOUT_SEC")
    assert _env_float("VSR_FETCH_TIMEOUT_SEC", 10.0) == 10.0


def test_configure_defaults(monkeypatch):
    for name in ("VSR_KNOWN_USERS", "VSR_MAX_CONCURRENT_FETCHES", "VSR_REQUEST_DELAY_MS",
                 "VSR_FETCH_TIMEOUT_SEC", "VSR_STORE_PATH", "VSR_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    config = _VsRecorderConfig()
    args = config.configure(["stats"])
    assert args.command == "stats"
    assert config.known_user_names == []
    assert config.max_concurrent_fetches == 3
    assert config.request_delay_sec == 0.25
    assert config.fetch_timeout_sec == 10.0
    assert config.store_path == DEFAULT_STORE_PATH
    config.validate_config()


def test_configure_reads_environment(monkeypatch):
    monkeypatch.setenv("VSR_KNOWN_USERS", "Ash, ash ketchum ,,")
    monkeypatch.setenv("VSR_MAX_CONCURRENT_FETCHES", "5")
    monkeypatch.setenv("VSR_REQUEST_DELAY_MS", "500")
    config = _VsRecorderConfig()
    config.configure(["inspect", "gen9ou-1"])
    assert config.known_user_names == ["Ash", "ash ketchum"]
    assert config.max_concurrent_fetches == 5
    assert config.request_delay_sec == 0.5


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("VSR_MAX_CONCURRENT_FETCHES", "5")
    config = _VsRecorderConfig()
    args = config.configure([
        "--known-users", "Red",
        "--max-concurrent-fetches", "2",
        "--team-id", "team-7",
        "import", "urls.txt",
    ])
    assert config.max_concurrent_fetches == 2
    assert config.known_user_names == ["Red"]
    assert config.team_id == "team-7"
    assert args.source == "urls.txt"


@pytest.mark.parametrize(
    "argv",
    [
        ["--max-concurrent-fetches", "0", "stats"],
        ["--request-delay-ms", "-1", "stats"],
        ["--fetch-timeout-sec", "0", "stats"],
    ],
)
def test_validate_config_rejects_bad_limits(argv):
    config = _VsRecorderConfig()
    config.configure(argv)
    with pytest.raises(ValueError):
        config.validate_config()


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        _VsRecorderConfig().configure([])


def test_formatter_pads_level_name():
    record = logging.LogRecord("vsr", logging.INFO, __file__, 1, "parsed %s", ("gen9ou-1",), None)
    assert CustomFormatter().format(record) == "INFO     parsed gen9ou-1"
