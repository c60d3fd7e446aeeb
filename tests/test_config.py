import os

import pytest

from shellhost.config import DEFAULT_PORT, EngineConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("SHELLHOST_"):
            monkeypatch.delenv(key)
    yield
    # load_dotenv writes straight into os.environ
    for key in list(os.environ):
        if key.startswith("SHELLHOST_"):
            del os.environ[key]


def test_defaults(tmp_path):
    config = EngineConfig.from_env(tmp_path / "missing.env")
    assert config.dialect == "powershell"
    assert config.candidates == ()
    assert config.poll_interval == 0.1
    assert config.stale_warning_after == 30.0
    assert config.cleanup_interval == 300.0
    assert config.port == DEFAULT_PORT


def test_reads_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "SHELLHOST_DIALECT=POSIX\n"
        "SHELLHOST_CANDIDATES=bash, /bin/sh ,\n"
        "SHELLHOST_DEFAULT_TIMEOUT=12.5\n"
        "SHELLHOST_SETTING_LANG=C\n"
    )
    config = EngineConfig.from_env(env_file)

    assert config.dialect == "posix"
    assert config.candidates == ("bash", "/bin/sh")
    assert config.default_timeout == 12.5
    assert config.capability_settings == {"LANG": "C"}


def test_environment_wins_over_dotenv(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("SHELLHOST_PORT=9000\n")
    monkeypatch.setenv("SHELLHOST_PORT", "9100")

    assert EngineConfig.from_env(env_file).port == 9100


@pytest.mark.parametrize("value", ["soon", "-1"])
def test_invalid_number(tmp_path, monkeypatch, value):
    monkeypatch.setenv("SHELLHOST_POLL_INTERVAL", value)
    with pytest.raises(ValueError, match="SHELLHOST_POLL_INTERVAL"):
        EngineConfig.from_env(tmp_path / "missing.env")
