"""Configuration management - loads lifecycle.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from office_lifecycle.models import LifecycleConfig
from office_lifecycle.utils.billing_period import parse_billing_period


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads lifecycle.yaml and provides validated access to:
    - Plan price and term
    - Billing retry policy
    - Renewal reminder buckets
    - Pub/Sub email topic
    - Webhook and cron secrets (environment overrides yaml)
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to lifecycle.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/lifecycle.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._lifecycle_config: Optional[LifecycleConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/lifecycle.yaml")

    def _load_config(self) -> None:
        """Load and validate lifecycle.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/lifecycle.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")

        try:
            self._lifecycle_config = LifecycleConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}")
        except TypeError as e:
            raise ConfigurationError(f"Unexpected configuration structure: {e}")

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Secrets come from the environment when set."""
        security = self._lifecycle_config.security

        webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        if webhook_secret:
            security.webhook_secret = webhook_secret

        cron_secret = os.getenv("CRON_SECRET")
        if cron_secret:
            security.cron_secret = cron_secret

    @property
    def lifecycle(self) -> LifecycleConfig:
        """Get validated lifecycle configuration."""
        if self._lifecycle_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._lifecycle_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def plan(self):
        """Plan name, price, currency and term."""
        return self.lifecycle.plan

    @property
    def term_millis(self) -> int:
        """Length of one service term in milliseconds."""
        return parse_billing_period(self.lifecycle.plan.term)

    @property
    def billing(self):
        """Retry threshold and ledger contention settings."""
        return self.lifecycle.billing

    @property
    def reminder_buckets(self) -> list[int]:
        """Renewal reminder buckets in days, largest first.

        Returns:
            e.g. [60, 30, 7]
        """
        return list(self.lifecycle.reminders.bucket_days)

    @property
    def admin_accounts(self):
        """Staff accounts seeded into the account directory."""
        return self.lifecycle.notifications.admins

    @property
    def pubsub_project_id(self) -> str:
        """Get Pub/Sub project ID."""
        return self.lifecycle.pubsub.project_id

    @property
    def pubsub_topic(self) -> str:
        """Get Pub/Sub topic name for outbound email."""
        return self.lifecycle.pubsub.topic

    @property
    def webhook_secret(self) -> Optional[str]:
        return self.lifecycle.security.webhook_secret

    @property
    def cron_secret(self) -> Optional[str]:
        return self.lifecycle.security.cron_secret

    @property
    def signature_tolerance_seconds(self) -> int:
        return self.lifecycle.security.signature_tolerance_seconds

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
