"""Tests for settings loading."""

import pytest

from config import load_settings_conf, SettingsError

def test_defaults_without_settings_file(tmp_path):
    """Without settings.conf or overrides the built-in defaults apply."""
    settings = load_settings_conf(str(tmp_path), environ={})
    assert settings["jwt_expiry_days"] == 7
    assert settings["max_value_difference_percent"] == 10.0
    assert settings["quick_trade_max_price_diff"] == 0.25
    assert settings["chat_retention_days"] == 3
    assert settings["cors_origins"] == ["http://localhost:5173", "http://127.0.0.1:5173"]

def test_settings_file_and_environment(tmp_path):
    """Environment variables override settings.conf, which overrides defaults."""
    (tmp_path / "settings.conf").write_text(
        "[DEFAULT]\n"
        "db_url = postgresql://cards@db:5432/cards\n"
        "jwt_secret = from-file\n"
        "api_port = 9000\n"
    )
    settings = load_settings_conf(str(tmp_path), environ={"JWT_SECRET": "from-env"})
    assert settings["db_url"] == "postgresql://cards@db:5432/cards"
    assert settings["jwt_secret"] == "from-env"
    assert settings["api_port"] == 9000

def test_empty_required_setting(tmp_path):
    with pytest.raises(SettingsError) as exc:
        load_settings_conf(str(tmp_path), environ={"JWT_SECRET": ""})
    assert "jwt_secret" in str(exc.value)

@pytest.mark.parametrize("key,value", [
    ("JWT_EXPIRY_DAYS", "0"),
    ("MAX_VALUE_DIFFERENCE_PERCENT", "150"),
    ("QUICK_TRADE_MAX_PRICE_DIFF", "2"),
    ("API_PORT", "eighty")
])
def test_invalid_values(tmp_path, key, value):
    """Out-of-range or non-numeric values are rejected."""
    with pytest.raises(SettingsError):
        load_settings_conf(str(tmp_path), environ={key: value})

def test_config_cli_masks_secret(tmp_path, monkeypatch, capsys):
    """The config CLI hides the signing secret and writes an example file."""
    from config.__main__ import main

    monkeypatch.chdir(tmp_path)
    main()

    output = capsys.readouterr().out
    assert "jwt_secret: ********" in output
    assert "db_url: " in output
    assert (tmp_path / "examples" / "settings.conf.example").exists()
