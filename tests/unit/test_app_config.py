"""Unit tests for the app_config module."""
import os
from unittest.mock import patch, mock_open, MagicMock

import pytest
import yaml

from termsync.app_config import SyncConfig, load_app_config, validate_config
from termsync.errors import ConfigurationError


class TestSyncConfig:
    """Test cases for the SyncConfig dataclass."""

    def test_defaults(self):
        config = SyncConfig(project_root="/test/root")

        assert config.api_url == "https://api.poeditor.com/v2"
        assert config.batch_size == 100
        assert config.rate_limit_delay == 20.0
        assert config.delete_extraneous is False
        assert config.failure_policy == "stop"
        assert config.max_attempts == 5

    @pytest.mark.parametrize("overrides", [
        {"batch_size": 0},
        {"rate_limit_delay": -1},
        {"failure_policy": "retry-forever"},
        {"max_attempts": 0},
        {"requests_per_minute": 0},
    ])
    def test_validate_rejects_out_of_range_values(self, overrides):
        config = SyncConfig(project_root="/test/root", **overrides)
        with pytest.raises(ConfigurationError):
            validate_config(config)


class TestLoadAppConfig:
    """Test cases for the load_app_config function."""

    def test_load_config_with_valid_yaml_file(self):
        mock_config = {
            "project_id": 12345,
            "include_langs": ["de", "fr"],
            "batch_size": 50,
            "rate_limit_delay": 30,
            "delete_extraneous": True,
            "machine_translate": ["de"],
            "failure_policy": "isolate",
            "logging": {"log_level": "DEBUG", "log_file_path": "test.log"},
        }

        with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
            with patch("os.path.exists", return_value=True):
                with patch("termsync.app_config.load_dotenv"):
                    with patch("termsync.app_config.setup_logger") as mock_logger:
                        mock_logger.return_value = MagicMock()
                        with patch.dict(os.environ, {}, clear=True):
                            config = load_app_config()

        assert config.project_id == "12345"
        assert config.include_langs == ["de", "fr"]
        assert config.batch_size == 50
        assert config.rate_limit_delay == 30.0
        assert config.delete_extraneous is True
        assert config.machine_translate == ["de"]
        assert config.failure_policy == "isolate"
        mock_logger.assert_called_once_with("DEBUG", "test.log", True, "WARNING")

    def test_load_config_with_missing_file_uses_defaults(self):
        with patch("termsync.app_config._load_yaml_config", return_value={}):
            with patch("os.path.exists", return_value=False):
                with patch("termsync.app_config.setup_logger") as mock_logger:
                    mock_logger.return_value = MagicMock()
                    with patch.dict(os.environ, {}, clear=True):
                        config = load_app_config()

        assert config.api_token is None
        assert config.project_id == ""
        assert config.include_langs == []
        assert config.batch_size == 100
        assert config.machine_translate is False
        mock_logger.return_value.warning.assert_called()

    def test_environment_overrides_file_values(self):
        mock_config = {"project_id": "1", "batch_size": 10, "include_langs": ["it"]}

        with patch("termsync.app_config._load_yaml_config", return_value=mock_config):
            with patch("termsync.app_config.load_dotenv"):
                with patch("termsync.app_config.setup_logger") as mock_logger:
                    mock_logger.return_value = MagicMock()
                    with patch.dict(os.environ, {
                        "POEDITOR_API_TOKEN": "secret",
                        "POEDITOR_PROJECT_ID": "99",
                        "POEDITOR_TARGET_LANGS": "de, fr",
                        "TERMSYNC_BATCH_SIZE": "25",
                        "TERMSYNC_RATE_LIMIT_DELAY": "2.5",
                    }, clear=True):
                        config = load_app_config()

        assert config.api_token == "secret"
        assert config.project_id == "99"
        assert config.include_langs == ["de", "fr"]
        assert config.batch_size == 25
        assert config.rate_limit_delay == 2.5

    def test_load_config_with_dotenv_file(self):
        with patch("termsync.app_config._load_yaml_config", return_value={"dry_run": True}):
            with patch("os.path.exists") as mock_exists:
                mock_exists.side_effect = lambda path: path.endswith("/.env")
                with patch("termsync.app_config.load_dotenv") as mock_load_dotenv:
                    with patch("termsync.app_config.setup_logger") as mock_logger:
                        mock_logger.return_value = MagicMock()
                        with patch.dict(os.environ, {}, clear=True):
                            load_app_config()

        mock_load_dotenv.assert_called_once()

    def test_non_numeric_batch_size_raises(self):
        with patch("termsync.app_config._load_yaml_config", return_value={"batch_size": "lots"}):
            with patch("termsync.app_config.load_dotenv"):
                with patch("termsync.app_config.setup_logger", return_value=MagicMock()):
                    with patch.dict(os.environ, {}, clear=True):
                        with pytest.raises(ConfigurationError):
                            load_app_config()

    def test_machine_translate_string_forms(self):
        for raw, expected in [("true", True), ("no", False), ("de,fr", ["de", "fr"]), (True, True)]:
            with patch("termsync.app_config._load_yaml_config", return_value={"machine_translate": raw}):
                with patch("termsync.app_config.load_dotenv"):
                    with patch("termsync.app_config.setup_logger", return_value=MagicMock()):
                        with patch.dict(os.environ, {}, clear=True):
                            assert load_app_config().machine_translate == expected

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("batch_size: [unclosed", encoding="utf-8")

        with patch("termsync.app_config.load_dotenv"):
            with patch("termsync.app_config.setup_logger", return_value=MagicMock()):
                with patch.dict(os.environ, {}, clear=True):
                    config = load_app_config(str(config_file))

        assert config.batch_size == 100
        assert "Invalid YAML" in capsys.readouterr().err

    def test_non_dict_yaml_falls_back_to_defaults(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n", encoding="utf-8")

        with patch("termsync.app_config.load_dotenv"):
            with patch("termsync.app_config.setup_logger", return_value=MagicMock()):
                with patch.dict(os.environ, {"TERMSYNC_CONFIG_FILE": "/ignored.yaml"}, clear=True):
                    config = load_app_config(str(config_file))

        assert config.include_langs == []
        assert "must contain a YAML dictionary" in capsys.readouterr().err
