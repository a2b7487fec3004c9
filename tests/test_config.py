import os

import pytest

from task_runner.config import DEFAULT_PORT, Config
from task_runner.log_buffer import DEFAULT_MAX_LOG_BYTES, MIN_LOG_BYTES


@pytest.fixture()
def clean_env(monkeypatch):
    env = {k: v for k, v in os.environ.items() if not k.startswith("TASK_RUNNER_")}
    monkeypatch.setattr(os, "environ", env)
    return env


def test_defaults(clean_env, tmp_path):
    config = Config.from_env(tmp_path / "missing.env")
    assert config.transport == "stdio"
    assert config.host == "127.0.0.1"
    assert config.port == 8902
    assert config.max_log_bytes == DEFAULT_MAX_LOG_BYTES
    assert config.stop_timeout_ms == 5000
    assert config.kill_grace_ms == 1000
    assert config.log_level == "INFO"


def test_env_file_values(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "TASK_RUNNER_TRANSPORT=http\n"
        "TASK_RUNNER_PORT=9100\n"
        "TASK_RUNNER_MAX_LOG_BYTES=2048\n"
        "TASK_RUNNER_LOG_LEVEL=debug\n"
    )
    config = Config.from_env(env_file)
    assert config.transport == "http"
    assert config.port == 9100
    assert config.max_log_bytes == 2048
    assert config.log_level == "DEBUG"


def test_process_env_wins_over_env_file(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("TASK_RUNNER_PORT=9100\n")
    clean_env["TASK_RUNNER_PORT"] = "9200"
    assert Config.from_env(env_file).port == 9200


def test_bad_values(clean_env, tmp_path):
    clean_env["TASK_RUNNER_PORT"] = "not-a-number"
    clean_env["TASK_RUNNER_MAX_LOG_BYTES"] = "12"
    config = Config.from_env(tmp_path / "missing.env")
    assert config.port == 8902
    assert config.max_log_bytes == MIN_LOG_BYTES


def test_unknown_transport(clean_env, tmp_path):
    clean_env["TASK_RUNNER_TRANSPORT"] = "carrier-pigeon"
    with pytest.raises(ValueError, match="TASK_RUNNER_TRANSPORT"):
        Config.from_env(tmp_path / "missing.env")


def test_server_and_config_share_default_port():
    from task_runner.server import create_server

    assert create_server().settings.port == Config().port == DEFAULT_PORT
