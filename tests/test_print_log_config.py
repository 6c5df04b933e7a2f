import json
import os

from tools import print_log_config


def test_log_config_reflects_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_JSON", "true")

    config = print_log_config.get_log_config()

    assert config["logger"] == "messenger_hub"
    assert config["log_level"] == "DEBUG"
    assert config["log_json"] is True
    assert config["files"]["relay"] == os.path.join(str(tmp_path), "relay.log")


def test_main_prints_json(monkeypatch, capsys):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    print_log_config.main()
    assert json.loads(capsys.readouterr().out)["log_level"] == "INFO"
