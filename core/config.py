"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for kvauth happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. store_url -> STORE_URL). Nested provider settings use a double
      underscore (AUTH_PROVIDER__USERS_PATH=accounts).

  ProviderConfig (pydantic BaseModel): the collection and field names the
      credential provider works with. Frozen and validated once, at
      construction, so the provider never re-reads or re-checks names per call.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or store/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("kvauth.config")

_DEFAULT_STORE_URL = f"sqlite:///{Path(__file__).parent.parent / 'store' / 'kvauth.db'}"


class ProviderConfig(BaseModel):
    """Collection and field names used by auth.provider.KVStoreProvider.

    Defaults match the suggested schema:

        users:      {id, username, password, ...}
        roles:      {id, role}
        user_roles: {user_id, role_id}

    connection_name selects a named store connection (see Settings.store_connections).
    None means the default STORE_URL connection.

    disable_roles turns role support off entirely, for deployments that only
    check for successful logins.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    connection_name: Optional[str] = None
    disable_roles: bool = False

    users_path: str = Field(default="users", min_length=1)
    roles_path: str = Field(default="roles", min_length=1)
    user_roles_path: str = Field(default="user_roles", min_length=1)

    users_id_key: str = Field(default="id", min_length=1)
    users_username_key: str = Field(default="username", min_length=1)
    users_password_key: str = Field(default="password", min_length=1)
    roles_id_key: str = Field(default="id", min_length=1)
    roles_role_key: str = Field(default="role", min_length=1)
    user_roles_user_id_key: str = Field(default="user_id", min_length=1)
    user_roles_role_id_key: str = Field(default="role_id", min_length=1)

    @field_validator("connection_name")
    @classmethod
    def blank_connection_is_default(cls, value: Optional[str]) -> Optional[str]:
        """An empty connection name means the default connection."""
        return value or None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Store connections
    # ------------------------------------------------------------------

    store_url: str = _DEFAULT_STORE_URL
    # Named connections, e.g. STORE_CONNECTIONS='{"replica": "sqlite:////var/lib/kvauth/replica.db"}'
    store_connections: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # bcrypt cost factor; 4 is the library minimum, 31 its maximum.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    auth_provider: ProviderConfig = ProviderConfig()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown LOG_LEVEL: {value!r}")
        return level

    @model_validator(mode="after")
    def validate_connections(self) -> "Settings":
        """Reject a provider connection_name that names no configured connection.

        Fails at startup rather than on the first login attempt.
        """
        name = self.auth_provider.connection_name
        if name is not None and name not in self.store_connections:
            raise ValueError(
                f"AUTH_PROVIDER__CONNECTION_NAME={name!r} is not defined in STORE_CONNECTIONS. "
                f"Known connections: {sorted(self.store_connections)!r}"
            )
        if self.bcrypt_rounds < 10 and not self.debug:
            logger.warning("BCRYPT_ROUNDS=%d is below 10 -- only suitable for tests", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
