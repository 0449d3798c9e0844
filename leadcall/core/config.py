"""
Configuration Management
Loads settings from environment variables and YAML files
"""
import yaml
import os
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ZohoSettings(BaseSettings):
    """Zoho CRM OAuth credentials and API endpoints"""

    model_config = SettingsConfigDict(env_prefix="ZOHO_", env_file=".env", extra="ignore")

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    api_domain: str = "https://www.zohoapis.in"
    accounts_url: str = "https://accounts.zoho.in"
    crm_scope: str = "ZohoCRM.modules.ALL"

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)


class TwilioSettings(BaseSettings):
    """Twilio Voice API settings"""

    model_config = SettingsConfigDict(env_prefix="TWILIO_", env_file=".env", extra="ignore")

    enabled: bool = False
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    phone_number: Optional[str] = None
    call_delay_seconds: float = 30.0
    max_retries: int = 3
    ring_timeout_seconds: int = 60


class ExotelSettings(BaseSettings):
    """Exotel Voice API settings"""

    model_config = SettingsConfigDict(env_prefix="EXOTEL_", env_file=".env", extra="ignore")

    enabled: bool = False
    account_sid: Optional[str] = None
    api_key: Optional[str] = None
    api_token: Optional[str] = None
    subdomain: str = "api.exotel.com"
    exophone: Optional[str] = None
    app_id: Optional[str] = None
    call_type: str = "trans"
    call_delay_seconds: float = 30.0
    max_retries: int = 3


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API Settings
    api_prefix: str = "/api/v1"
    base_url: str = "http://localhost:8000"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Token cache
    token_buffer_seconds: int = 60

    # Idempotency cache
    idempotency_ttl_seconds: int = 24 * 60 * 60
    idempotency_max_size: int = 10000
    idempotency_sweep_interval_seconds: int = 60 * 60

    # Retry backoff for outbound calls
    call_retry_base_seconds: float = 2.0
    call_retry_max_seconds: float = 30.0

    # Phone normalization
    default_country_code: str = "91"

    # Schedule an outbound call after a lead is created/updated
    auto_schedule_calls: bool = True

    zoho: ZohoSettings = Field(default_factory=ZohoSettings)
    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    exotel: ExotelSettings = Field(default_factory=ExotelSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        # Load default config if exists
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Load environment-specific config
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        # Substitute environment variables
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
        Example: config.get("ivr.digits.1.status") -> "Interested"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_field_ownership(self) -> Dict[str, list]:
        """Extra field ownership registrations, keyed by tier name"""
        ownership = self.get("field_ownership", {}) or {}
        return {tier: list(fields or []) for tier, fields in ownership.items()}
