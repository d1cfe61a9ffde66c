"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the Base App backend happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_secret -> SESSION_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the SESSION_SECRET policy: dev mode generates a key
      with a warning, production mode refuses to start without one.

Security notes:
  SESSION_SECRET shorter than 32 chars is rejected outright. The session
  cookie encryption key is derived from it, so a short secret weakens every
  session.

  INITIAL_SUPER_ADMIN_ADDRESS is normalised to lower case so comparisons with
  session addresses never depend on EIP-55 checksum casing.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("baseapp.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'baseapp.db'}"

# Default Optimism mainnet endpoint -- the Farcaster IdRegistry and KeyRegistry
# contracts live on OP mainnet.
_DEFAULT_FARCASTER_RPC = "https://mainnet.optimism.io"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, except SESSION_SECRET which the
    model_validator either generates (DEBUG) or demands (production).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_name: str = "Base App"
    app_url: str = "http://localhost:3100"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    session_secret: str = ""
    session_duration: int = 86400
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Sign-In-With-Ethereum / Farcaster
    # ------------------------------------------------------------------

    siwe_domain: str = "localhost"
    siwe_statement: str = "Sign in to this app"
    chain_id: int = 84532  # Base Sepolia
    farcaster_domain: str = ""  # empty = same as siwe_domain
    farcaster_rpc_url: str = _DEFAULT_FARCASTER_RPC
    # Optional. When set, SIWE verification falls back to EIP-1271 so
    # smart-contract wallets can sign in.
    eth_rpc_url: str = ""

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    initial_super_admin_address: str = ""
    role_cache_ttl_seconds: int = 60
    role_cache_max_entries: int = 1000

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    nonce_rate_limit: str = "20/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:3100", "http://127.0.0.1:3100"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_session_secret(self) -> "Settings":
        """Enforce SESSION_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SESSION_SECRET is missing.

        Both modes: reject secrets shorter than 32 characters.
        """
        if not self.session_secret:
            if self.debug:
                self.session_secret = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SESSION_SECRET. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SESSION_SECRET is required in production mode. "
                    "Generate one with: openssl rand -base64 32. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.session_secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters.")
        if not self.farcaster_domain:
            self.farcaster_domain = self.siwe_domain
        self.initial_super_admin_address = self.initial_super_admin_address.strip().lower()
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
