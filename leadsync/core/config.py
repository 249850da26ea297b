"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process settings loaded from environment"""

    environment: str = "development"
    debug: bool = False

    # Redis/Queue
    redis_url: Optional[str] = None

    # Master Supabase project (tenant credentials, leads, labels)
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Form project polled as the default tenant when no tenant config is stored
    forms_supabase_url: Optional[str] = None
    forms_supabase_anon_key: Optional[str] = None

    # Fernet keys protecting tenant credentials at rest
    credentials_encryption_key: Optional[str] = None
    credentials_encryption_keys_old: str = ""

    # Compliance provider
    compliance_api_url: Optional[str] = None
    compliance_api_token: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("queue.max_concurrent") -> 2
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value


@dataclass
class QueueSettings:
    """Tuning for one JobQueue instance."""
    name: str = "data-processing"
    max_concurrent: int = 5
    max_attempts: int = 3
    job_ttl_seconds: int = 3600
    index_ttl_seconds: int = 86400
    dead_letter_ttl_seconds: int = 86400
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    idle_delay_seconds: float = 1.0
    busy_delay_seconds: float = 0.1
    unavailable_delay_seconds: float = 30.0
    circuit_cooldown_seconds: float = 60.0
    circuit_failure_threshold: int = 1

    @classmethod
    def from_config(cls, config: ConfigManager) -> "QueueSettings":
        section = config.get("queue", {}) or {}
        known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class PollerSettings:
    """Tuning for the form submission poller."""
    page_size: int = 50
    interval_seconds: float = 60
    state_file: str = "data/form_submission_poller_state.json"
    stale_after_days: int = 7
    default_tenant_id: str = "default"

    @classmethod
    def from_config(cls, config: ConfigManager) -> "PollerSettings":
        section = config.get("poller", {}) or {}
        known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
        return cls(**known)
