"""
Configuration module for the DDNS operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "ddns_operator"
    user: str = "operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "ddns_operator"),
            user=os.getenv("DB_USER", "operator"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class ControllerConfig:
    """Controller work-queue configuration."""

    poll_interval: int = 10  # seconds between scans for due hostnames
    max_concurrent_reconciles: int = 5
    reconcile_timeout: int = 120  # seconds before a pass is cancelled

    # Exponential backoff for failed passes
    backoff_base_delay: int = 60  # base delay in seconds
    backoff_max_delay: int = 3600  # max delay in seconds (1 hour)
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            poll_interval=int(os.getenv("POLL_INTERVAL", "10")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            reconcile_timeout=int(os.getenv("RECONCILE_TIMEOUT", "120")),
            backoff_base_delay=int(os.getenv("BACKOFF_BASE_DELAY", "60")),
            backoff_max_delay=int(os.getenv("BACKOFF_MAX_DELAY", "3600")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class ProviderConfig:
    """DNS provider and public IP detection configuration."""

    public_ip_url: str = "https://api.ipify.org?format=json"
    public_ip_timeout: int = 10
    http_timeout: int = 15
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"
    dyn_api_url: str = "https://members.dyndns.org/nic/update"
    noip_api_url: str = "https://dynupdate.no-ip.com/nic/update"
    ddns_api_url: str = "http://localhost:8080/nic/update"
    user_agent: str = "ddns-operator/0.1.0"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        defaults = cls()
        return cls(
            public_ip_url=os.getenv("PUBLIC_IP_URL", defaults.public_ip_url),
            public_ip_timeout=int(os.getenv("PUBLIC_IP_TIMEOUT", "10")),
            http_timeout=int(os.getenv("PROVIDER_HTTP_TIMEOUT", "15")),
            cloudflare_api_url=os.getenv(
                "CLOUDFLARE_API_URL", defaults.cloudflare_api_url
            ),
            dyn_api_url=os.getenv("DYN_API_URL", defaults.dyn_api_url),
            noip_api_url=os.getenv("NOIP_API_URL", defaults.noip_api_url),
            ddns_api_url=os.getenv("DDNS_API_URL", defaults.ddns_api_url),
            user_agent=os.getenv("PROVIDER_USER_AGENT", defaults.user_agent),
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    api: APIConfig
    providers: ProviderConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            providers=ProviderConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
            providers=ProviderConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
