"""
Configuration management for the Couchbase cache adapter.

This module provides:
- Pydantic-based configuration validation
- Secrets resolution (environment variables, dotenv files)
- Loading configuration from the environment
"""

import os
import logging
from typing import Any, Optional
from enum import Enum

from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from vertector_couchbasecache.exceptions import CacheConfigurationError

logger = logging.getLogger(__name__)

RESERVED_CHARACTERS = "{}()/\\@:"


# ============================================================================
# Secrets Management
# ============================================================================

class SecretsProvider(str, Enum):
    """Supported secrets providers."""
    ENV = "env"
    DOTENV = "dotenv"


class SecretsManager:
    """
    Retrieves secrets from the process environment or a dotenv file.
    """

    def __init__(self, provider: SecretsProvider = SecretsProvider.ENV, secrets_file: Optional[str] = None):
        self.provider = SecretsProvider(provider)
        self.secrets_file = secrets_file
        self._file_values: Optional[dict[str, Optional[str]]] = None

    def get_secret(self, secret_name: str, default: Optional[str] = None) -> str:
        """
        Retrieve a secret from the configured provider.

        Args:
            secret_name: Name/key of the secret
            default: Default value if secret not found

        Returns:
            Secret value or default

        Raises:
            CacheConfigurationError: If secret not found and no default provided
        """
        if self.provider == SecretsProvider.ENV:
            value = os.getenv(secret_name, default)
        else:
            value = self._load_file().get(secret_name) or default

        if value is None:
            raise CacheConfigurationError(
                f"Secret '{secret_name}' not found ({self.provider.value} provider)"
            )
        return value

    def _load_file(self) -> dict[str, Optional[str]]:
        if self._file_values is None:
            if not self.secrets_file or not os.path.exists(self.secrets_file):
                raise CacheConfigurationError(f"Secrets file not found: {self.secrets_file}")
            self._file_values = dotenv_values(self.secrets_file)
        return self._file_values


# ============================================================================
# Configuration Models
# ============================================================================

class CouchbaseCacheConfig(BaseModel):
    """
    Complete configuration for the Couchbase cache.

    Example usage:
        config = CouchbaseCacheConfig(
            servers=[
                "couchbase://cb1.example.com/cache",
                "couchbase://cb2.example.com/cache?enable_tracing=false",
            ],
            username="cache_user",
            password_secret_name="COUCHBASE_CACHE_PASSWORD",
            namespace="sessions",
            default_lifetime=3600,
        )
        config.resolve_secrets()

        pool = CachePool.from_config(config)
    """

    servers: list[str] = Field(
        description="Couchbase connection strings, merged in order"
    )

    username: Optional[str] = Field(
        default=None,
        description="Username, overridden by credentials embedded in a connection string"
    )

    password: Optional[str] = Field(
        default=None,
        description="Password (prefer password_secret_name)"
    )

    password_secret_name: Optional[str] = Field(
        default=None,
        description="Secret name holding the password"
    )

    options: dict[str, str] = Field(
        default_factory=dict,
        description="Connection options seeding the options given in connection strings"
    )

    namespace: str = Field(
        default="",
        description="Prefix applied to every cache key"
    )

    default_lifetime: int = Field(
        default=0,
        ge=0,
        description="TTL in seconds used when a caller gives none (0 = never expires)"
    )

    versioning: bool = Field(
        default=True,
        description="Invalidate the namespace on clear by bumping a version token"
    )

    tracing_enabled: bool = Field(
        default=False,
        description="Emit OpenTelemetry spans for cache operations"
    )

    metrics_enabled: bool = Field(
        default=True,
        description="Collect in-process cache metrics"
    )

    secrets_provider: SecretsProvider = Field(
        default=SecretsProvider.ENV,
        description="Secrets provider"
    )

    secrets_file: Optional[str] = Field(
        default=None,
        description="Dotenv file read by the dotenv secrets provider"
    )

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True
    )

    @field_validator('servers', mode='before')
    @classmethod
    def wrap_single_server(cls, v):
        """Accept a single connection string."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator('servers')
    @classmethod
    def validate_servers(cls, v):
        """Validate connection strings."""
        if not v:
            raise ValueError("At least one connection string required")
        for server in v:
            if not server.startswith(("couchbase:", "couchbases:")):
                raise ValueError(f"Connection string must start with 'couchbase:' or 'couchbases:', got {server[:20]!r}")
        return v

    @field_validator('namespace')
    @classmethod
    def validate_namespace(cls, v):
        """Validate namespace characters."""
        bad = [c for c in RESERVED_CHARACTERS if c in v]
        if bad:
            raise ValueError(f"Namespace contains reserved characters: {''.join(bad)}")
        return v

    @model_validator(mode='after')
    def validate_secrets_config(self):
        """Validate secrets configuration consistency."""
        if self.secrets_provider == SecretsProvider.DOTENV.value and not self.secrets_file:
            raise ValueError("The dotenv secrets provider requires 'secrets_file'")
        return self

    def get_secrets_manager(self) -> SecretsManager:
        """Get configured secrets manager instance."""
        return SecretsManager(provider=self.secrets_provider, secrets_file=self.secrets_file)

    def resolve_secrets(self) -> None:
        """
        Replace ``password_secret_name`` with the password it points to.
        """
        if self.password_secret_name:
            self.password = self.get_secrets_manager().get_secret(self.password_secret_name)
            self.password_secret_name = None

    def connection_options(self) -> dict[str, Any]:
        """Options map handed to the connection string resolver."""
        options: dict[str, Any] = dict(self.options)
        if self.username is not None:
            options["username"] = self.username
        if self.password is not None:
            options["password"] = self.password
        return options


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def load_config_from_env(dotenv_path: Optional[str] = None) -> CouchbaseCacheConfig:
    """
    Load configuration from environment variables.

    Environment variables:
        COUCHBASE_SERVERS: Comma-separated connection strings
        COUCHBASE_USERNAME: Username
        COUCHBASE_PASSWORD: Password (not recommended - use secret)
        COUCHBASE_PASSWORD_SECRET: Secret name for password
        COUCHBASE_CACHE_NAMESPACE: Key namespace
        COUCHBASE_CACHE_DEFAULT_LIFETIME: Default TTL in seconds
        COUCHBASE_CACHE_VERSIONING: Enable namespace versioning (true/false)
        COUCHBASE_CACHE_TRACING: Enable tracing (true/false)
        SECRETS_PROVIDER: Secrets provider (env, dotenv)
        SECRETS_FILE: Dotenv file for the dotenv provider

    Args:
        dotenv_path: Optional .env file loaded first; existing variables win

    Returns:
        Validated configuration
    """
    if dotenv_path:
        load_dotenv(dotenv_path, override=False)

    servers_str = os.getenv("COUCHBASE_SERVERS", "couchbase://127.0.0.1/cache")
    servers = [s.strip() for s in servers_str.split(",") if s.strip()]

    config = CouchbaseCacheConfig(
        servers=servers,
        username=os.getenv("COUCHBASE_USERNAME"),
        password=os.getenv("COUCHBASE_PASSWORD"),
        password_secret_name=os.getenv("COUCHBASE_PASSWORD_SECRET"),
        namespace=os.getenv("COUCHBASE_CACHE_NAMESPACE", ""),
        default_lifetime=int(os.getenv("COUCHBASE_CACHE_DEFAULT_LIFETIME", "0")),
        versioning=_env_flag("COUCHBASE_CACHE_VERSIONING", "true"),
        tracing_enabled=_env_flag("COUCHBASE_CACHE_TRACING", "false"),
        secrets_provider=SecretsProvider(os.getenv("SECRETS_PROVIDER", "env")),
        secrets_file=os.getenv("SECRETS_FILE"),
    )

    config.resolve_secrets()

    return config
