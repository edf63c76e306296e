"""Application configuration for the POEditor term sync."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from termsync.errors import ConfigurationError
from termsync.logging_config import setup_logger
from termsync.poeditor_client import DEFAULT_API_URL

FAILURE_POLICIES = ("stop", "isolate")


@dataclass
class SyncConfig:
    """One sync session's configuration; passed explicitly to whatever needs it."""
    project_root: str

    # Remote project
    api_url: str = DEFAULT_API_URL
    api_token: Optional[str] = None
    project_id: str = ""
    source_lang: str = "en"
    include_langs: List[str] = field(default_factory=list)

    # Execution
    batch_size: int = 100
    rate_limit_delay: float = 20.0
    delete_extraneous: bool = False
    dry_run: bool = False
    machine_translate: Union[bool, List[str]] = False
    failure_policy: str = "stop"

    # Transport and retry
    request_timeout: float = 30.0
    requests_per_minute: int = 60
    max_attempts: int = 5
    max_jitter_ms: int = 5000

    # Files
    local_keys_file: str = "i18n-keys.json"
    plan_file: str = "sync-plan.json"


def _compute_project_root() -> str:
    """Compute the project root directory."""
    script_real_path = os.path.realpath(__file__)
    script_dir = os.path.dirname(script_real_path)
    return os.path.abspath(os.path.join(script_dir, os.pardir))


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str, config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to defaults on any problem."""
    # An explicit path wins, then TERMSYNC_CONFIG_FILE, then config.yaml in the project root.
    if config_file is None:
        config_file = os.environ.get('TERMSYNC_CONFIG_FILE', os.path.join(project_root, 'config.yaml'))
    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config: Dict[str, Any] = {}
    if not os.path.exists(config_file):
        print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
              file=sys.stderr)
        return config

    try:
        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}. Using default configuration.",
              file=sys.stderr)
        return config
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}. Using default configuration.",
              file=sys.stderr)
        return config

    if loaded_config is None:
        print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
              file=sys.stderr)
    elif isinstance(loaded_config, dict):
        config = loaded_config
    else:
        print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
              file=sys.stderr)
    return config


def _setup_logger_from_config(config: Dict[str, Any]) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging') or {}
    log_level_str = log_config.get('log_level', 'INFO').upper()
    log_file_path = log_config.get('log_file_path', 'logs/termsync.log')
    log_to_console = log_config.get('log_to_console', True)
    http_log_level = log_config.get('http_log_level', 'WARNING')
    return setup_logger(log_level_str, log_file_path, log_to_console, http_log_level)


def _parse_langs(value: Any) -> List[str]:
    """Accept a list or a comma-separated string of language codes."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [str(lang).strip() for lang in value if str(lang).strip()]


def _parse_machine_translate(value: Any) -> Union[bool, List[str]]:
    if isinstance(value, (list, tuple, str)) and not isinstance(value, bool):
        if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0', 'yes', 'no'):
            return value.lower() in ('true', '1', 'yes')
        return _parse_langs(value)
    return bool(value)


def validate_config(config: SyncConfig) -> None:
    """
    Check value ranges.

    Raises:
        ConfigurationError: On the first invalid value.
    """
    if config.batch_size < 1:
        raise ConfigurationError(f"batch_size must be a positive integer, got {config.batch_size}")
    if config.rate_limit_delay < 0:
        raise ConfigurationError(f"rate_limit_delay must not be negative, got {config.rate_limit_delay}")
    if config.failure_policy not in FAILURE_POLICIES:
        raise ConfigurationError(
            f"Invalid failure_policy: {config.failure_policy}. Valid options: {', '.join(FAILURE_POLICIES)}"
        )
    if config.max_attempts < 1:
        raise ConfigurationError(f"max_attempts must be at least 1, got {config.max_attempts}")
    if config.requests_per_minute < 1:
        raise ConfigurationError(f"requests_per_minute must be at least 1, got {config.requests_per_minute}")


def load_app_config(config_file: Optional[str] = None) -> SyncConfig:
    """
    Load configuration from the YAML file and environment variables.

    Environment variables (including those from a .env file) override the
    file: POEDITOR_API_TOKEN, POEDITOR_PROJECT_ID, POEDITOR_SOURCE_LANG,
    POEDITOR_TARGET_LANGS, TERMSYNC_BATCH_SIZE, TERMSYNC_RATE_LIMIT_DELAY.

    Args:
        config_file: Explicit path to a YAML file.

    Returns:
        SyncConfig: The validated configuration.

    Raises:
        ConfigurationError: If a value is out of range or not a number.
    """
    project_root = _compute_project_root()
    _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root, config_file)
    logger = _setup_logger_from_config(config)

    try:
        batch_size = int(os.environ.get('TERMSYNC_BATCH_SIZE', config.get('batch_size', 100)))
        rate_limit_delay = float(os.environ.get('TERMSYNC_RATE_LIMIT_DELAY', config.get('rate_limit_delay', 20)))
        request_timeout = float(config.get('request_timeout', 30))
        requests_per_minute = int(config.get('requests_per_minute', 60))
        max_attempts = int(config.get('max_attempts', 5))
        max_jitter_ms = int(config.get('max_jitter_ms', 5000))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid numeric configuration value: {e}") from e

    include_langs = _parse_langs(
        os.environ.get('POEDITOR_TARGET_LANGS') or config.get('include_langs') or config.get('target_langs')
    )

    sync_config = SyncConfig(
        project_root=project_root,
        api_url=config.get('api_url', DEFAULT_API_URL),
        api_token=os.environ.get('POEDITOR_API_TOKEN') or config.get('api_token') or None,
        project_id=str(os.environ.get('POEDITOR_PROJECT_ID') or config.get('project_id') or ''),
        source_lang=os.environ.get('POEDITOR_SOURCE_LANG') or config.get('source_lang', 'en'),
        include_langs=include_langs,
        batch_size=batch_size,
        rate_limit_delay=rate_limit_delay,
        delete_extraneous=bool(config.get('delete_extraneous', False)),
        dry_run=bool(config.get('dry_run', False)),
        machine_translate=_parse_machine_translate(config.get('machine_translate', False)),
        failure_policy=str(config.get('failure_policy', 'stop')).lower(),
        request_timeout=request_timeout,
        requests_per_minute=requests_per_minute,
        max_attempts=max_attempts,
        max_jitter_ms=max_jitter_ms,
        local_keys_file=config.get('local_keys_file', 'i18n-keys.json'),
        plan_file=config.get('plan_file', 'sync-plan.json'),
    )
    validate_config(sync_config)

    if not sync_config.api_token and not sync_config.dry_run:
        logger.warning("POEDITOR_API_TOKEN is not set; only dry runs will work.")
    if not sync_config.project_id:
        logger.warning("No POEditor project id configured (POEDITOR_PROJECT_ID or 'project_id').")

    return sync_config
