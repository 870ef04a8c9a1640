"""
core/config.py -- Lodestone settings, read from the environment by pydantic-settings.

Environment variables are read in this module only. Everything else receives
a Settings instance, normally through the AppContext.

Notes:
  get_settings() is cached with lru_cache, so the environment and .env file
      are parsed once per process. The lifespan in api/main.py builds the
      AppContext (auth/context.py) from that instance; session handlers never
      call get_settings() themselves.

  Each field maps to the upper-cased environment variable of the same name
      (invalidate_scope -> INVALIDATE_SCOPE). pydantic coerces and checks the
      values, so a bad INVALIDATE_SCOPE or a non-positive timeout stops
      startup instead of failing on the first request.

  validate_signing_key runs after all fields are resolved. It lets DEBUG
      mode start with an ephemeral key and refuses to start production
      without a key file.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lodestone.config")

APP_VERSION = "0.1.0"

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'lodestone.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (as long as DEBUG=true, see
    validate_signing_key).
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------

    # SQLite busy timeout: how long a connection waits on a locked database.
    store_timeout_seconds: float = Field(default=5.0, gt=0)
    # Upper bound on one protocol handler call, store round-trips included.
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # Session policy
    # ------------------------------------------------------------------

    # "user": /invalidate revokes every token pair of the owning user.
    # "pair": /invalidate revokes only the presented client token.
    invalidate_scope: Literal["user", "pair"] = "user"

    # ------------------------------------------------------------------
    # Server info
    # ------------------------------------------------------------------

    # PEM-encoded RSA private key. Empty string = generate an ephemeral key.
    signing_key_path: str = ""
    application_owner: str = "Lodestone"
    application_description: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_key(self) -> "Settings":
        """Enforce the signing key policy.

        Dev mode (DEBUG=true): a missing SIGNING_KEY_PATH is allowed. A fresh
            key is generated on each startup, so clients that cached the old
            public key will fail signature checks after a restart.

        Production mode: refuse to start without SIGNING_KEY_PATH. A key that
            changes on every restart breaks every client that verifies
            signed texture properties.

        Both modes: a configured path must point at an existing file.
        """
        if not self.signing_key_path:
            if self.debug:
                logger.warning(
                    "WARNING: No SIGNING_KEY_PATH set. An ephemeral key will be generated; "
                    "the advertised public key changes on every restart."
                )
            else:
                raise ValueError(
                    "SIGNING_KEY_PATH is required in production mode. "
                    "Set SIGNING_KEY_PATH in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        elif not Path(self.signing_key_path).is_file():
            raise ValueError(f"SIGNING_KEY_PATH does not point at a file: {self.signing_key_path!r}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
